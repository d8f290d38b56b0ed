from decimal import Decimal

import pytest

import ledger
from errors import ValidationError, ConflictError, NotFoundError, UserNotFound
from models import (
    BalanceEvent, Withdrawal, User, EVENT_DEPOSIT, EVENT_MANUAL_ADJUSTMENT,
    WITHDRAWAL_APPROVED, WITHDRAWAL_REJECTED,
)


def _balance(db, user):
    db.expire_all()
    return db.query(User).filter(User.id == user.id).one().wallet_balance


def _events(db, user):
    return db.query(BalanceEvent).filter(BalanceEvent.user_id == user.id).order_by(BalanceEvent.id).all()


@pytest.mark.parametrize("raw, expected", [
    ("10.005", Decimal("10.01")),
    ("10.004", Decimal("10.00")),
    ("-0.005", Decimal("-0.01")),
    (None, Decimal("0.00")),
])
def test_round_money_half_up(raw, expected):
    assert ledger.round_money(raw) == expected


@pytest.mark.parametrize("raw", ["0", "-1", "abc", "NaN", "Infinity", None])
def test_parse_amount_rejects_bad_values(raw):
    with pytest.raises(ValidationError):
        ledger.parse_amount(raw)


def test_level_price_falls_back_to_level_one(make_product):
    product = make_product(level1="7.50", level2=None, level3="0")
    assert ledger.level_price(product, 2) == Decimal("7.50")
    assert ledger.level_price(product, 3) == Decimal("7.50")
    assert ledger.level_price(product, 9) == Decimal("7.50")


def test_commission_rate_default_and_configured(db, set_level):
    assert ledger.commission_rate(db, 3) == Decimal("0.05")
    set_level(3, rate="0.12")
    assert ledger.commission_rate(db, 3) == Decimal("0.12")


def test_apply_balance_delta_writes_one_event(db, make_user):
    user = make_user(balance="5.00")
    before = _balance(db, user)

    event = ledger.apply_balance_delta(db, user.id, Decimal("-7.25"), EVENT_MANUAL_ADJUSTMENT, details="x" * 300)
    db.commit()

    after = _balance(db, user)
    assert after == Decimal("-2.25")
    assert event.amount == Decimal("7.25")
    assert len(event.details) == 255
    assert before - event.amount == after


def test_apply_balance_delta_unknown_type(db, make_user):
    user = make_user()
    with pytest.raises(ValueError):
        ledger.apply_balance_delta(db, user.id, Decimal("1"), "bonus")


def test_deposit(db, make_user):
    user = make_user(balance="-3.00")
    assert ledger.deposit(db, user.id, "10") == Decimal("7.00")

    events = _events(db, user)
    assert [(e.type, e.amount) for e in events] == [(EVENT_DEPOSIT, Decimal("10.00"))]


def test_deposit_unknown_user(db):
    with pytest.raises(UserNotFound):
        ledger.deposit(db, 999, "10")
    assert db.query(BalanceEvent).count() == 0


def test_set_balance_records_difference(db, make_user):
    user = make_user(balance="20.00")

    ledger.set_balance(db, user.id, "15.50")
    ledger.set_balance(db, user.id, "15.50")

    assert _balance(db, user) == Decimal("15.50")
    events = _events(db, user)
    assert len(events) == 1
    assert events[0].type == EVENT_MANUAL_ADJUSTMENT
    assert events[0].amount == Decimal("4.50")


def test_withdrawal_requires_balance(db, make_user):
    user = make_user(balance="10.00")
    with pytest.raises(ConflictError) as exc:
        ledger.request_withdrawal(db, user.id, "10.01", "0xabc")
    assert exc.value.message == "Insufficient balance"


def test_withdrawal_level_limits(db, make_user, set_level):
    user = make_user(level=2, balance="50.00")
    set_level(2, min_withdrawal_balance=Decimal("100"), max_withdrawal_amount=Decimal("20"))

    with pytest.raises(ConflictError) as exc:
        ledger.request_withdrawal(db, user.id, "10", "0xabc")
    assert exc.value.extra == {"minWithdrawalBalance": 100.0}

    set_level(2, min_withdrawal_balance=Decimal("10"), max_withdrawal_amount=Decimal("20"))
    with pytest.raises(ConflictError) as exc:
        ledger.request_withdrawal(db, user.id, "25", "0xabc")
    assert exc.value.extra == {"maxWithdrawalAmount": 20.0}


def test_withdrawal_approve_debits_once(db, make_user):
    user = make_user(balance="30.00")
    withdrawal = ledger.request_withdrawal(db, user.id, "12.00", " 0xabc ")
    assert withdrawal.wallet_address == "0xabc"
    assert _balance(db, user) == Decimal("30.00")

    ledger.approve_withdrawal(db, withdrawal.id)
    assert _balance(db, user) == Decimal("18.00")
    assert db.get(Withdrawal, withdrawal.id).status == WITHDRAWAL_APPROVED

    with pytest.raises(ConflictError):
        ledger.approve_withdrawal(db, withdrawal.id)
    assert _balance(db, user) == Decimal("18.00")
    assert len(_events(db, user)) == 1


def test_withdrawal_reject_keeps_balance(db, make_user):
    user = make_user(balance="30.00")
    withdrawal = ledger.request_withdrawal(db, user.id, "12.00", "0xabc")

    ledger.reject_withdrawal(db, withdrawal.id, "wrong wallet")

    rejected = db.get(Withdrawal, withdrawal.id)
    assert rejected.status == WITHDRAWAL_REJECTED
    assert rejected.admin_notes == "wrong wallet"
    assert _balance(db, user) == Decimal("30.00")
    assert _events(db, user) == []


def test_unknown_withdrawal(db):
    with pytest.raises(NotFoundError):
        ledger.approve_withdrawal(db, 42)


@pytest.mark.parametrize("amount", ["1e30", "1e10", "-1e30"])
def test_deposit_out_of_range(db, make_user, amount):
    user = make_user(balance="5.00")
    with pytest.raises(ValidationError):
        ledger.deposit(db, user.id, amount)
    assert _balance(db, user) == Decimal("5.00")
    assert _events(db, user) == []


@pytest.mark.parametrize("balance", ["1e30", "-1e10", "Infinity"])
def test_set_balance_out_of_range(db, make_user, balance):
    user = make_user(balance="5.00")
    with pytest.raises(ValidationError):
        ledger.set_balance(db, user.id, balance)
    assert _balance(db, user) == Decimal("5.00")


def test_set_balance_near_column_limit(db, make_user):
    user = make_user()
    assert ledger.set_balance(db, user.id, "9999999999.99") == Decimal("9999999999.99")


def test_round_money_overflow_is_validation_error():
    with pytest.raises(ValidationError):
        ledger.round_money("1e30")


def test_get_user(db, make_user):
    user = make_user()
    assert ledger.get_user(db, user.id).id == user.id
    with pytest.raises(UserNotFound):
        ledger.get_user(db, 999)
