import random
from datetime import date
from decimal import Decimal

import pytest

from assignment import assign_daily_tasks, assign_single_task, clean_product_ids
from errors import NoValidProducts, NoActiveProducts, InvalidPrice, ProductUnavailable, UserNotFound, ValidationError
from models import (
    BalanceEvent, User, UserProduct, STATUS_INACTIVE, TASK_PENDING, TASK_COMPLETED,
    EVENT_ASSIGNMENT_DEBIT, EVENT_MANUAL_ADJUSTMENT,
)

TODAY = date(2025, 3, 14)


def _balance(db, user):
    db.expire_all()
    return db.query(User).filter(User.id == user.id).one().wallet_balance


def _events(db, user, event_type=None):
    query = db.query(BalanceEvent).filter(BalanceEvent.user_id == user.id)
    if event_type:
        query = query.filter(BalanceEvent.type == event_type)
    return query.order_by(BalanceEvent.id).all()


def test_clean_product_ids():
    assert clean_product_ids(["3", 3, "x", None, -1, 0, 7]) == [3, 7]


def test_bulk_duplicates_are_not_redrawn(db, make_user, make_product, set_level):
    user = make_user(level=2, balance="100.00")
    product = make_product(level1="5.00", level2="8.00")
    set_level(2, daily_task_limit=3)

    summary = assign_daily_tasks(db, rng=random.Random(1), today=TODAY)

    assert summary.users_assigned == 1
    assert summary.assignments == 1
    rows = db.query(UserProduct).filter(UserProduct.user_id == user.id).all()
    assert [(r.product_id, r.assigned_date, r.status) for r in rows] == [(product.id, TODAY, TASK_PENDING)]

    debits = _events(db, user, EVENT_ASSIGNMENT_DEBIT)
    assert len(debits) == 1
    assert debits[0].amount == Decimal("8.00")
    assert debits[0].reference_date == TODAY
    assert _balance(db, user) == Decimal("92.00")


def test_bulk_rerun_does_not_debit_twice(db, make_user, make_product):
    user = make_user(balance="0")
    make_product(level1="5.00")

    assign_daily_tasks(db, today=TODAY)
    second = assign_daily_tasks(db, today=TODAY)

    assert second.assignments == 0
    assert len(_events(db, user, EVENT_ASSIGNMENT_DEBIT)) == 1
    assert _balance(db, user) == Decimal("-5.00")


def test_bulk_skips_admins_inactive_and_zero_limit(db, make_user, make_product, set_level):
    make_user(is_admin=True)
    make_user(status=STATUS_INACTIVE)
    zero = make_user(level=3)
    set_level(3, daily_task_limit=0)
    make_product(level1="5.00")

    summary = assign_daily_tasks(db, today=TODAY)

    assert summary.users_assigned == 1
    assert summary.assignments == 0
    assert db.query(UserProduct).count() == 0
    assert _events(db, zero) == []


def test_bulk_without_users_needs_no_products(db):
    summary = assign_daily_tasks(db, today=TODAY)
    assert (summary.users_assigned, summary.assignments) == (0, 0)


def test_bulk_product_pool_errors(db, make_user, make_product):
    make_user()
    with pytest.raises(NoActiveProducts):
        assign_daily_tasks(db, today=TODAY)

    inactive = make_product(status=STATUS_INACTIVE, level1="5")
    with pytest.raises(NoValidProducts):
        assign_daily_tasks(db, product_ids=[inactive.id, "abc"], today=TODAY)
    with pytest.raises(NoValidProducts):
        assign_daily_tasks(db, product_ids=["abc"], today=TODAY)


def test_bulk_uses_selected_products_only(db, make_user, make_product, set_level):
    user = make_user()
    make_product(name="A", level1="1")
    chosen = make_product(name="B", level1="2")
    set_level(1, daily_task_limit=5)

    assign_daily_tasks(db, product_ids=[chosen.id], today=TODAY)

    rows = db.query(UserProduct).filter(UserProduct.user_id == user.id).all()
    assert {r.product_id for r in rows} == {chosen.id}


def test_manual_assignment_repeat_is_idempotent(db, make_user, make_product):
    user = make_user(balance="50.00")
    product = make_product(level1="10.00")

    first = assign_single_task(db, user.id, product.id, manual_bonus="2.5", today=TODAY)
    second = assign_single_task(db, user.id, product.id, manual_bonus="2.5", today=TODAY)

    assert first.created and not second.created
    assert first.assignment_id == second.assignment_id
    assert first.base_amount == Decimal("12.50")
    assert first.balance_change == Decimal("-12.50")
    assert second.balance_change == Decimal("0.00")
    assert _balance(db, user) == Decimal("37.50")
    assert len(_events(db, user, EVENT_MANUAL_ADJUSTMENT)) == 1


def test_manual_assignment_charges_and_refunds_difference(db, make_user, make_product):
    user = make_user(balance="0")
    product = make_product(level1="10.00")

    assign_single_task(db, user.id, product.id, custom_price="10.00", today=TODAY)
    lower = assign_single_task(db, user.id, product.id, custom_price="6.00", today=TODAY)

    assert lower.balance_change == Decimal("4.00")
    assert _balance(db, user) == Decimal("-6.00")
    refund = _events(db, user)[-1]
    assert refund.amount == Decimal("4.00")
    assert "refund" in refund.details


def test_manual_assignment_deadband(db, make_user, make_product):
    user = make_user(balance="0")
    product = make_product(level1="10.00")
    assign_single_task(db, user.id, product.id, custom_price="10.00", today=TODAY)

    assign_single_task(db, user.id, product.id, custom_price="10.004", today=TODAY)
    assert len(_events(db, user)) == 1

    assign_single_task(db, user.id, product.id, custom_price="10.006", today=TODAY)
    events = _events(db, user)
    assert len(events) == 2
    assert events[-1].amount == Decimal("0.01")


def test_manual_assignment_reopens_completed_row(db, make_user, make_product):
    user = make_user()
    product = make_product(level1="3.00")
    result = assign_single_task(db, user.id, product.id, today=TODAY)

    row = db.get(UserProduct, result.assignment_id)
    row.status = TASK_COMPLETED
    row.amount_earned = Decimal("3.00")
    db.commit()

    assign_single_task(db, user.id, product.id, manual_bonus="1", today=TODAY)

    db.expire_all()
    row = db.get(UserProduct, result.assignment_id)
    assert row.status == TASK_PENDING
    assert row.amount_earned == Decimal("0.00")
    assert row.manual_bonus == Decimal("1.00")
    assert row.is_manual


def test_manual_assignment_ignores_bad_bonus(db, make_user, make_product):
    user = make_user()
    product = make_product(level1="3.00")
    result = assign_single_task(db, user.id, product.id, manual_bonus="-4", today=TODAY)
    assert result.base_amount == Decimal("3.00")


@pytest.mark.parametrize("custom_price", ["-0.01", "abc"])
def test_manual_assignment_rejects_bad_custom_price(db, make_user, make_product, custom_price):
    user = make_user()
    product = make_product(level1="3.00")
    with pytest.raises(InvalidPrice):
        assign_single_task(db, user.id, product.id, custom_price=custom_price, today=TODAY)
    assert db.query(UserProduct).count() == 0


def test_manual_assignment_zero_custom_price_allowed(db, make_user, make_product):
    user = make_user()
    product = make_product(level1="3.00")
    result = assign_single_task(db, user.id, product.id, custom_price="0.00", today=TODAY)
    assert result.base_amount == Decimal("0.00")
    assert _events(db, user) == []


def test_manual_assignment_needs_priced_active_product(db, make_user, make_product):
    user = make_user()
    free = make_product(name="Free", level1=None)
    hidden = make_product(name="Hidden", status=STATUS_INACTIVE, level1="3")

    with pytest.raises(InvalidPrice):
        assign_single_task(db, user.id, free.id, today=TODAY)
    with pytest.raises(ProductUnavailable):
        assign_single_task(db, user.id, hidden.id, today=TODAY)
    with pytest.raises(UserNotFound):
        assign_single_task(db, 999, free.id, today=TODAY)


def test_manual_rows_are_excluded_from_bulk_debit(db, make_user, make_product):
    user = make_user(balance="0")
    product = make_product(level1="4.00")
    assign_single_task(db, user.id, product.id, today=TODAY)

    assign_daily_tasks(db, today=TODAY)

    assert db.query(UserProduct).count() == 1
    assert _events(db, user, EVENT_ASSIGNMENT_DEBIT) == []
    assert _balance(db, user) == Decimal("-4.00")


@pytest.mark.parametrize("custom_price", ["1e30", "1e10"])
def test_manual_assignment_rejects_huge_custom_price(db, make_user, make_product, custom_price):
    user = make_user()
    product = make_product(level1="3.00")
    with pytest.raises(InvalidPrice):
        assign_single_task(db, user.id, product.id, custom_price=custom_price, today=TODAY)
    assert db.query(UserProduct).count() == 0
    assert _events(db, user) == []


def test_manual_assignment_rejects_huge_bonus(db, make_user, make_product):
    user = make_user()
    product = make_product(level1="3.00")
    with pytest.raises(ValidationError):
        assign_single_task(db, user.id, product.id, manual_bonus="1e30", today=TODAY)
    assert db.query(UserProduct).count() == 0
