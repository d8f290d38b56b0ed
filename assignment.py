"""Раздача заданий пользователям.

Массовая раздача работает по пользователю за раз: вставка заданий и списание
их стоимости для одного пользователя - одна транзакция. Если процесс упал
посередине, повторный запуск досписывает только тех, у кого за день еще нет
события ``assignment_debit``.
"""
import logging
import random
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy import insert
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from config import DEFAULT_DAILY_TASK_LIMIT
from database import transaction
from errors import (
    UserNotFound, ProductUnavailable, InvalidPrice, NoValidProducts, NoActiveProducts, ValidationError,
)
from ledger import (
    apply_balance_delta, in_money_range, level_price, level_settings, round_money, to_decimal, DEADBAND, ZERO,
)
from models import (
    User, Product, UserProduct, BalanceEvent,
    STATUS_ACTIVE, TASK_PENDING, EVENT_ASSIGNMENT_DEBIT, EVENT_MANUAL_ADJUSTMENT,
)

logger = logging.getLogger(__name__)


@dataclass
class AssignmentSummary:
    users_assigned: int
    assignments: int


@dataclass
class ManualAssignment:
    assignment_id: int
    base_amount: Decimal
    balance_change: Decimal  # со знаком: минус = списание
    created: bool


def daily_task_limit(db: Session, level) -> int:
    settings = level_settings(db, level)
    if settings is None or settings.daily_task_limit is None:
        return DEFAULT_DAILY_TASK_LIMIT
    return settings.daily_task_limit


def clean_product_ids(product_ids: Iterable) -> List[int]:
    cleaned = []
    for raw in product_ids:
        try:
            product_id = int(raw)
        except (TypeError, ValueError):
            continue
        if product_id > 0 and product_id not in cleaned:
            cleaned.append(product_id)
    return cleaned


def _product_pool(db: Session, product_ids=None) -> List[int]:
    query = db.query(Product.id).filter(Product.status == STATUS_ACTIVE)
    if product_ids is not None:
        cleaned = clean_product_ids(product_ids)
        if not cleaned:
            raise NoValidProducts()
        pool = [row.id for row in query.filter(Product.id.in_(cleaned)).order_by(Product.id)]
        if not pool:
            raise NoValidProducts()
        return pool

    pool = [row.id for row in query.order_by(Product.id)]
    if not pool:
        raise NoActiveProducts()
    return pool


def _insert_ignore(db: Session, **values) -> bool:
    """INSERT, который молча пропускает дубль (user, product, day)"""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = pg_insert(UserProduct).values(**values).on_conflict_do_nothing()
    elif dialect == "sqlite":
        stmt = sqlite_insert(UserProduct).values(**values).on_conflict_do_nothing()
    else:
        stmt = insert(UserProduct).values(**values).prefix_with("IGNORE")
    return db.execute(stmt).rowcount > 0


def _debit_assigned(db: Session, user_id: int, level: int, today: date) -> Optional[Decimal]:
    already_debited = db.query(BalanceEvent.id).filter(
        BalanceEvent.user_id == user_id,
        BalanceEvent.type == EVENT_ASSIGNMENT_DEBIT,
        BalanceEvent.reference_date == today,
    ).first()
    if already_debited:
        return None

    rows = db.query(UserProduct, Product).join(Product, UserProduct.product_id == Product.id).filter(
        UserProduct.user_id == user_id,
        UserProduct.assigned_date == today,
        UserProduct.is_manual == False,
    ).all()
    total = round_money(sum((level_price(product, level) for _, product in rows), ZERO))
    if total <= 0:
        return None

    apply_balance_delta(db, user_id, -total, EVENT_ASSIGNMENT_DEBIT, today, f"Assigned {len(rows)} tasks")
    return total


def assign_daily_tasks(db: Session, product_ids=None, rng: Optional[random.Random] = None,
                       today: Optional[date] = None) -> AssignmentSummary:
    """Раздает задания на день всем активным пользователям.

    Для каждого пользователя берется ``daily_task_limit`` его уровня и столько
    раз случайно выбирается продукт из пула. Совпавшие выборы не
    переигрываются, поэтому заданий может оказаться меньше лимита.
    Стоимость заданий списывается сразу, баланс может уйти в минус.
    """
    today = today or date.today()
    choose = (rng or random).choice

    users = db.query(User.id, User.level).filter(
        User.is_admin == False,
        User.status == STATUS_ACTIVE,
    ).order_by(User.id).all()
    if not users:
        return AssignmentSummary(users_assigned=0, assignments=0)

    pool = _product_pool(db, product_ids)

    total_assignments = 0
    for user_id, level in users:
        limit = daily_task_limit(db, level)
        if limit <= 0:
            continue

        with transaction(db):
            for _ in range(limit):
                inserted = _insert_ignore(
                    db,
                    user_id=user_id,
                    product_id=choose(pool),
                    assigned_date=today,
                    status=TASK_PENDING,
                    manual_bonus=ZERO,
                    is_manual=False,
                )
                if inserted:
                    total_assignments += 1
            debited = _debit_assigned(db, user_id, level, today)

        if debited is not None:
            logger.debug("User %s debited %s for daily tasks", user_id, debited)

    logger.info("Daily assignment for %s: %s users, %s new tasks", today, len(users), total_assignments)
    return AssignmentSummary(users_assigned=len(users), assignments=total_assignments)


def _manual_bonus(value) -> Decimal:
    bonus = to_decimal(value, ZERO)
    if not bonus.is_finite() or bonus <= 0:
        return ZERO
    if not in_money_range(bonus):
        raise ValidationError("Invalid manual bonus")
    return round_money(bonus)


def assign_single_task(db: Session, user_id: int, product_id: int, manual_bonus=None, custom_price=None,
                       today: Optional[date] = None) -> ManualAssignment:
    """Ручное назначение продукта пользователю на сегодня.

    Повторное назначение той же пары (user, product) за день обновляет
    существующую строку и списывает только разницу базовой суммы, так что
    одинаковые повторы не меняют баланс.
    """
    today = today or date.today()
    bonus = _manual_bonus(manual_bonus)

    with transaction(db):
        user = db.query(User).filter(User.id == user_id).with_for_update().first()
        if not user:
            raise UserNotFound()

        product = db.query(Product).filter(Product.id == product_id).first()
        if not product or product.status != STATUS_ACTIVE:
            raise ProductUnavailable()

        if custom_price is not None and custom_price != "":
            price = to_decimal(custom_price)
            if not in_money_range(price) or price < 0:
                raise InvalidPrice("Invalid custom price")
            price = round_money(price)
            stored_price = price
        else:
            price = level_price(product, user.level)
            if price <= 0:
                raise InvalidPrice()
            stored_price = None

        base_amount = round_money(price + bonus)

        existing = db.query(UserProduct).filter(
            UserProduct.user_id == user_id,
            UserProduct.product_id == product_id,
            UserProduct.assigned_date == today,
        ).with_for_update().first()

        if existing:
            if existing.custom_price is not None:
                previous_price = round_money(existing.custom_price)
            else:
                previous_price = level_price(product, user.level)
            previous_base = round_money(previous_price + round_money(existing.manual_bonus))
            difference = round_money(base_amount - previous_base)

            # Переназначение открывает задание заново
            existing.status = TASK_PENDING
            existing.manual_bonus = bonus
            existing.custom_price = stored_price
            existing.is_manual = True
            existing.amount_earned = ZERO
            existing.commission_earned = ZERO
            existing.submitted_at = None
            assignment = existing
        else:
            difference = base_amount
            assignment = UserProduct(
                user_id=user_id,
                product_id=product_id,
                assigned_date=today,
                status=TASK_PENDING,
                manual_bonus=bonus,
                custom_price=stored_price,
                is_manual=True,
            )
            db.add(assignment)
        db.flush()

        if abs(difference) < DEADBAND:
            difference = ZERO
        if difference != 0:
            if difference > 0:
                details = f"Manual assignment of {product.name}"
            else:
                details = f"Manual assignment adjustment refund for {product.name}"
            apply_balance_delta(db, user_id, -difference, EVENT_MANUAL_ADJUSTMENT, today, details)

        result = ManualAssignment(
            assignment_id=assignment.id,
            base_amount=base_amount,
            balance_change=-difference,
            created=existing is None,
        )

    logger.info("Manual assignment of product %s to user %s (base %s, balance change %s)",
                product_id, user_id, base_amount, result.balance_change)
    return result
