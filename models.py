from sqlalchemy import (
    Column, Integer, String, Numeric, Boolean, Date, DateTime, Text, ForeignKey, UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship
from datetime import datetime

Base = declarative_base()

# Статусы и типы, которые хранятся строками
STATUS_ACTIVE = "active"
STATUS_INACTIVE = "inactive"

TASK_PENDING = "pending"
TASK_COMPLETED = "completed"

EVENT_ASSIGNMENT_DEBIT = "assignment_debit"
EVENT_SUBMISSION_CREDIT = "submission_credit"
EVENT_MANUAL_ADJUSTMENT = "manual_adjustment"
EVENT_DEPOSIT = "deposit"
EVENT_TYPES = (EVENT_ASSIGNMENT_DEBIT, EVENT_SUBMISSION_CREDIT, EVENT_MANUAL_ADJUSTMENT, EVENT_DEPOSIT)

WITHDRAWAL_PENDING = "pending"
WITHDRAWAL_APPROVED = "approved"
WITHDRAWAL_REJECTED = "rejected"

POPUP_PENDING = "pending"
POPUP_CLICKED = "clicked"
POPUP_DISMISSED = "dismissed"

Money = Numeric(12, 2)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(100), unique=True, index=True, nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    password = Column(String(255), nullable=False)
    is_admin = Column(Boolean, default=False, nullable=False)
    invitation_code = Column(String(32), nullable=True)
    level = Column(Integer, default=1, nullable=False)
    wallet_balance = Column(Money, default=0, nullable=False)  # может уходить в минус
    commission_earned = Column(Money, default=0, nullable=False)
    tasks_completed_at_level = Column(Integer, default=0, nullable=False)
    total_tasks_completed = Column(Integer, default=0, nullable=False)
    status = Column(String(20), default=STATUS_ACTIVE, nullable=False)
    credit_score = Column(Integer, default=100, nullable=False)
    payment_name = Column(String(150), nullable=True)
    crypto_wallet = Column(String(100), nullable=True)
    wallet_address = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    last_login = Column(DateTime, nullable=True)

    assignments = relationship("UserProduct", back_populates="user")


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(150), nullable=False)
    image_path = Column(String(500), nullable=False)
    level1_price = Column(Money, nullable=True)
    level2_price = Column(Money, nullable=True)
    level3_price = Column(Money, nullable=True)
    level4_price = Column(Money, nullable=True)
    level5_price = Column(Money, nullable=True)
    status = Column(String(20), default=STATUS_ACTIVE, nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    assignments = relationship("UserProduct", back_populates="product")


class UserProduct(Base):
    """Одно задание: пользователь + продукт + календарный день"""
    __tablename__ = "user_products"
    __table_args__ = (
        UniqueConstraint("user_id", "product_id", "assigned_date", name="uq_user_product_day"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    assigned_date = Column(Date, nullable=False, index=True)
    status = Column(String(20), default=TASK_PENDING, nullable=False)  # pending, completed
    amount_earned = Column(Money, default=0, nullable=False)
    commission_earned = Column(Money, default=0, nullable=False)
    manual_bonus = Column(Money, default=0, nullable=False)
    custom_price = Column(Money, nullable=True)
    is_manual = Column(Boolean, default=False, nullable=False)
    submitted_at = Column(DateTime, nullable=True)

    user = relationship("User", back_populates="assignments")
    product = relationship("Product", back_populates="assignments")


class BalanceEvent(Base):
    """Неизменяемая запись об изменении баланса"""
    __tablename__ = "balance_events"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    type = Column(String(32), nullable=False, index=True)
    amount = Column(Money, nullable=False)  # всегда положительная, знак задает type
    reference_date = Column(Date, nullable=True, index=True)
    details = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class Withdrawal(Base):
    __tablename__ = "withdrawals"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    username = Column(String(100), nullable=True)
    amount = Column(Money, nullable=False)
    wallet_address = Column(String(255), nullable=False)
    status = Column(String(20), default=WITHDRAWAL_PENDING, nullable=False, index=True)
    request_date = Column(DateTime, default=datetime.utcnow)
    processed_date = Column(DateTime, nullable=True)
    admin_notes = Column(Text, nullable=True)


class LevelSettings(Base):
    __tablename__ = "level_settings"

    level = Column(Integer, primary_key=True)
    daily_task_limit = Column(Integer, nullable=True)
    total_tasks_required = Column(Integer, nullable=True)
    min_withdrawal_balance = Column(Money, nullable=True)
    max_withdrawal_amount = Column(Money, nullable=True)


class CommissionRate(Base):
    __tablename__ = "commission_rates"

    level = Column(Integer, primary_key=True)
    rate = Column(Numeric(6, 4), nullable=False)


class Voucher(Base):
    __tablename__ = "vouchers"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(150), nullable=False)
    title = Column(String(150), nullable=True)
    description = Column(Text, nullable=True)
    image_path = Column(String(500), nullable=False)
    status = Column(String(20), default=STATUS_ACTIVE, nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class Popup(Base):
    __tablename__ = "popups"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String(150), nullable=False)
    message = Column(Text, nullable=False, default="")
    url = Column(String(500), nullable=True)
    image_path = Column(String(500), nullable=True)  # есть картинка = ваучер
    status = Column(String(20), default=POPUP_PENDING, nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    clicked_at = Column(DateTime, nullable=True)


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String(150), nullable=False)
    message = Column(Text, nullable=False)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
