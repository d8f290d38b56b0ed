"""Кошелек пользователя.

Любое изменение ``users.wallet_balance`` идет через :func:`apply_balance_delta`,
которая в той же транзакции пишет ровно одну запись ``BalanceEvent``.
Отрицательный баланс допустим: его проверяет только отправка задания.
"""
import logging
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Optional

from sqlalchemy.orm import Session

from config import DEFAULT_COMMISSION_RATE, MIN_LEVEL, MAX_LEVEL
from database import transaction
from errors import ValidationError, UserNotFound, NotFoundError, ConflictError
from models import (
    User, BalanceEvent, Withdrawal, LevelSettings, CommissionRate,
    EVENT_TYPES, EVENT_DEPOSIT, EVENT_MANUAL_ADJUSTMENT,
    WITHDRAWAL_PENDING, WITHDRAWAL_APPROVED, WITHDRAWAL_REJECTED,
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
# Разница меньше полкопейки считается нулем
DEADBAND = Decimal("0.005")
# Numeric(12, 2) хранит меньше 10 млрд
MAX_MONEY = Decimal("1e10")


def to_decimal(value, default: Optional[Decimal] = None) -> Optional[Decimal]:
    if value is None or value == "":
        return default
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return default


def in_money_range(value) -> bool:
    return value is not None and value.is_finite() and abs(value) < MAX_MONEY


def round_money(value) -> Decimal:
    """Округление до копеек, половина вверх"""
    try:
        return to_decimal(value, ZERO).quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValidationError("Invalid amount")


def parse_amount(value, field: str = "amount") -> Decimal:
    amount = to_decimal(value)
    if not in_money_range(amount) or amount <= 0:
        raise ValidationError(f"Invalid {field}")
    return round_money(amount)


def level_price(product, level) -> Decimal:
    """Цена продукта для уровня; пустая или нулевая цена берется с 1-го уровня"""
    price = None
    if level is not None and MIN_LEVEL <= level <= MAX_LEVEL:
        price = getattr(product, f"level{level}_price")
    if not price:
        price = product.level1_price
    return round_money(price or 0)


def commission_rate(db: Session, level) -> Decimal:
    row = db.query(CommissionRate).filter(CommissionRate.level == level).first()
    return to_decimal(row.rate) if row else DEFAULT_COMMISSION_RATE


def level_settings(db: Session, level) -> Optional[LevelSettings]:
    return db.query(LevelSettings).filter(LevelSettings.level == level).first()


def get_user(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise UserNotFound()
    return user


def apply_balance_delta(db: Session, user_id: int, delta, event_type: str,
                        reference_date: Optional[date] = None, details: Optional[str] = None) -> BalanceEvent:
    """Меняет баланс на ``delta`` (плюс = начисление) и пишет событие.

    Работает внутри транзакции вызывающего кода и ничего не коммитит.
    Сложение выполняется на стороне БД, поэтому параллельные начисления
    не теряются.
    """
    if event_type not in EVENT_TYPES:
        raise ValueError(f"Unknown balance event type: {event_type}")

    delta = round_money(delta)
    db.query(User).filter(User.id == user_id).update(
        {User.wallet_balance: User.wallet_balance + delta},
        synchronize_session="fetch",
    )
    event = BalanceEvent(
        user_id=user_id,
        type=event_type,
        amount=abs(delta),
        reference_date=reference_date or date.today(),
        details=details[:255] if details else None,
    )
    db.add(event)
    db.flush()
    logger.debug("Balance event %s user=%s delta=%s", event_type, user_id, delta)
    return event


def current_balance(db: Session, user_id: int) -> Decimal:
    return round_money(db.query(User.wallet_balance).filter(User.id == user_id).scalar())


def deposit(db: Session, user_id: int, amount) -> Decimal:
    """Пополнение кошелька, возвращает новый баланс"""
    amount = parse_amount(amount)
    with transaction(db):
        if not db.query(User.id).filter(User.id == user_id).first():
            raise UserNotFound()
        apply_balance_delta(db, user_id, amount, EVENT_DEPOSIT, details=f"Deposit of ${amount}")
        balance = current_balance(db, user_id)
    logger.info("User %s deposited %s, balance %s", user_id, amount, balance)
    return balance


def set_balance(db: Session, user_id: int, balance) -> Decimal:
    """Админ задает баланс напрямую; в журнал идет разница"""
    target = to_decimal(balance)
    if not in_money_range(target):
        raise ValidationError("Invalid balance")
    target = round_money(target)

    with transaction(db):
        user = db.query(User).filter(User.id == user_id).with_for_update().first()
        if not user:
            raise UserNotFound()
        delta = target - round_money(user.wallet_balance)
        if delta != 0:
            apply_balance_delta(db, user_id, delta, EVENT_MANUAL_ADJUSTMENT,
                                details=f"Admin balance override to ${target}")
    return target


def request_withdrawal(db: Session, user_id: int, amount, wallet_address: str) -> Withdrawal:
    amount = parse_amount(amount)
    if not wallet_address or not wallet_address.strip():
        raise ValidationError("Missing fields")

    with transaction(db):
        user = db.query(User).filter(User.id == user_id).first()
        if not user:
            raise UserNotFound()
        balance = round_money(user.wallet_balance)
        if balance < amount:
            raise ConflictError("Insufficient balance")

        settings = level_settings(db, user.level)
        if settings is not None:
            if settings.min_withdrawal_balance is not None and balance < round_money(settings.min_withdrawal_balance):
                raise ConflictError(
                    "Balance below minimum for withdrawal",
                    minWithdrawalBalance=float(settings.min_withdrawal_balance),
                )
            if settings.max_withdrawal_amount and amount > round_money(settings.max_withdrawal_amount):
                raise ConflictError(
                    "Amount exceeds maximum withdrawal",
                    maxWithdrawalAmount=float(settings.max_withdrawal_amount),
                )

        withdrawal = Withdrawal(
            user_id=user_id,
            username=user.username,
            amount=amount,
            wallet_address=wallet_address.strip(),
            status=WITHDRAWAL_PENDING,
        )
        db.add(withdrawal)
        db.flush()
    logger.info("Withdrawal %s requested by user %s for %s", withdrawal.id, user_id, amount)
    return withdrawal


def _pending_withdrawal(db: Session, withdrawal_id: int) -> Withdrawal:
    withdrawal = db.query(Withdrawal).filter(Withdrawal.id == withdrawal_id).with_for_update().first()
    if not withdrawal:
        raise NotFoundError()
    if withdrawal.status != WITHDRAWAL_PENDING:
        raise ConflictError(f"Withdrawal already {withdrawal.status}")
    return withdrawal


def approve_withdrawal(db: Session, withdrawal_id: int) -> Withdrawal:
    with transaction(db):
        withdrawal = _pending_withdrawal(db, withdrawal_id)
        apply_balance_delta(db, withdrawal.user_id, -round_money(withdrawal.amount), EVENT_MANUAL_ADJUSTMENT,
                            details=f"Withdrawal #{withdrawal.id} approved")
        withdrawal.status = WITHDRAWAL_APPROVED
        withdrawal.processed_date = datetime.utcnow()
    logger.info("Withdrawal %s approved", withdrawal_id)
    return withdrawal


def reject_withdrawal(db: Session, withdrawal_id: int, admin_notes: Optional[str] = None) -> Withdrawal:
    with transaction(db):
        withdrawal = _pending_withdrawal(db, withdrawal_id)
        withdrawal.status = WITHDRAWAL_REJECTED
        withdrawal.admin_notes = admin_notes or ""
        withdrawal.processed_date = datetime.utcnow()
    logger.info("Withdrawal %s rejected", withdrawal_id)
    return withdrawal
