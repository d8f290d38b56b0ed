"""Сдача заданий: pending -> completed и начисление в кошелек.

Сумма за задание: цена (custom_price или цена уровня) + ручной бонус +
комиссия уровня от цены. Переход статуса делается условным UPDATE по
старому статусу, поэтому одно задание нельзя сдать дважды.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from database import transaction
from errors import AssignmentNotFound, AlreadyCompleted, InsufficientBalance, NoPendingTasks, UserNotFound
from ledger import apply_balance_delta, commission_rate, level_price, round_money, ZERO
from models import User, UserProduct, TASK_COMPLETED, EVENT_SUBMISSION_CREDIT

logger = logging.getLogger(__name__)


@dataclass
class SubmissionResult:
    earned: Decimal
    base_amount: Decimal
    commission: Decimal
    bonus: Decimal


@dataclass
class BatchSubmissionResult:
    tasks_submitted: int
    total_price: Decimal
    total_manual_bonus: Decimal
    total_commission: Decimal
    total_credit: Decimal


def task_price(assignment: UserProduct, level) -> Decimal:
    if assignment.custom_price is not None:
        return round_money(assignment.custom_price)
    return level_price(assignment.product, level)


def _complete(db: Session, assignment_id: int, base_amount: Decimal, commission: Decimal) -> bool:
    updated = db.query(UserProduct).filter(
        UserProduct.id == assignment_id,
        UserProduct.status != TASK_COMPLETED,
    ).update(
        {
            UserProduct.status: TASK_COMPLETED,
            UserProduct.amount_earned: base_amount,
            UserProduct.commission_earned: commission,
            UserProduct.submitted_at: datetime.utcnow(),
        },
        synchronize_session="fetch",
    )
    return updated == 1


def _credit(db: Session, user_id: int, credit: Decimal, commission: Decimal, tasks: int,
            today: date, details: str):
    if credit != 0:
        apply_balance_delta(db, user_id, credit, EVENT_SUBMISSION_CREDIT, today, details)
    db.query(User).filter(User.id == user_id).update(
        {
            User.commission_earned: User.commission_earned + commission,
            User.tasks_completed_at_level: User.tasks_completed_at_level + tasks,
            User.total_tasks_completed: User.total_tasks_completed + tasks,
        },
        synchronize_session="fetch",
    )


def submit_one(db: Session, user_id: int, assignment_id: int) -> SubmissionResult:
    """Сдать одно задание.

    Пока баланс отрицательный, сдавать задания нельзя, даже если цена
    конкретного задания покрывается.
    """
    with transaction(db):
        # Блокировки всегда в порядке users -> user_products
        user = db.query(User).filter(User.id == user_id).with_for_update().first()
        if not user:
            raise UserNotFound()

        assignment = db.query(UserProduct).filter(
            UserProduct.id == assignment_id,
            UserProduct.user_id == user_id,
        ).with_for_update().first()
        if not assignment:
            raise AssignmentNotFound()
        if assignment.status == TASK_COMPLETED:
            raise AlreadyCompleted()

        level = user.level or 1
        price = task_price(assignment, level)

        balance = round_money(user.wallet_balance)
        if balance < 0:
            raise InsufficientBalance(
                shortfall=float(-balance),
                required=float(price),
                currentBalance=float(balance),
            )

        rate = commission_rate(db, level)
        commission = round_money(price * rate)
        bonus = round_money(assignment.manual_bonus)
        base_amount = round_money(price + bonus)
        earned = round_money(base_amount + commission)

        if not _complete(db, assignment.id, base_amount, commission):
            raise AlreadyCompleted()
        _credit(db, user_id, earned, commission, 1, assignment.assigned_date,
                f"Submitted task #{assignment.id}")

    logger.info("User %s submitted task %s: earned %s", user_id, assignment_id, earned)
    return SubmissionResult(earned=earned, base_amount=base_amount, commission=commission, bonus=bonus)


def submit_all_today(db: Session, user_id: int, today: Optional[date] = None) -> BatchSubmissionResult:
    """Сдать все незавершенные задания за сегодня одним начислением.

    Проверки отрицательного баланса здесь нет: пакетная сдача закрывает
    дневное списание за раздачу.
    """
    today = today or date.today()

    with transaction(db):
        user = db.query(User).filter(User.id == user_id).with_for_update().first()
        if not user:
            raise UserNotFound()
        level = user.level or 1
        rate = commission_rate(db, level)

        rows = db.query(UserProduct).filter(
            UserProduct.user_id == user_id,
            UserProduct.assigned_date == today,
            UserProduct.status != TASK_COMPLETED,
        ).order_by(UserProduct.id).with_for_update().all()
        if not rows:
            raise NoPendingTasks()

        total_price = ZERO
        total_bonus = ZERO
        total_commission = ZERO
        submitted = 0
        for row in rows:
            price = task_price(row, level)
            bonus = round_money(row.manual_bonus)
            commission = round_money(price * rate)
            if not _complete(db, row.id, round_money(price + bonus), commission):
                continue
            total_price += price
            total_bonus += bonus
            total_commission += commission
            submitted += 1

        if not submitted:
            raise NoPendingTasks()

        total_price = round_money(total_price)
        total_bonus = round_money(total_bonus)
        total_commission = round_money(total_commission)
        total_credit = round_money(total_price + total_bonus + total_commission)

        _credit(db, user_id, total_credit, total_commission, submitted, today, f"Submitted {submitted} tasks")

    logger.info("User %s submitted %s tasks for %s: credit %s", user_id, submitted, today, total_credit)
    return BatchSubmissionResult(
        tasks_submitted=submitted,
        total_price=total_price,
        total_manual_bonus=total_bonus,
        total_commission=total_commission,
        total_credit=total_credit,
    )
