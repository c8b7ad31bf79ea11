# tests/test_credit_ledger.py
from decimal import Decimal

import pytest

from callbilling.errors import AccountBlockedError, CreditAccountNotFoundError, InvalidAmountError
from callbilling.models import CreditTransaction, UserCredit
from callbilling.services.credit_ledger import credit, debit, get_credit_account, open_credit_account


def _account(db, user_id="user-1") -> UserCredit:
    db.expire_all()
    return get_credit_account(db, user_id)


def test_open_credit_account_records_opening_deposit(db):
    account = open_credit_account(db, user_id="user-1", company_id="company-1", initial_balance=Decimal("5"))

    assert account.current_balance == Decimal("5.0000")
    assert account.is_blocked is False
    assert account.warning_threshold == Decimal("10.0000")

    txns = db.query(CreditTransaction).filter(CreditTransaction.user_id == "user-1").all()
    assert len(txns) == 1
    assert txns[0].transaction_type == "deposit"
    assert txns[0].balance_after == Decimal("5.0000")


def test_open_credit_account_rejects_duplicates(db):
    open_credit_account(db, user_id="user-1")
    with pytest.raises(ValueError):
        open_credit_account(db, user_id="user-1")


def test_debit_reduces_balance(db):
    open_credit_account(db, user_id="user-1", initial_balance=Decimal("1.00"))

    result = debit(db, "user-1", Decimal("0.30"))

    assert result.new_balance == Decimal("0.7000")
    assert result.was_blocked is False
    # default warning threshold is 10.00
    assert result.is_low is True
    assert _account(db).current_balance == Decimal("0.7000")


def test_debit_past_zero_clamps_and_blocks(db):
    open_credit_account(db, user_id="user-1", initial_balance=Decimal("0.20"))

    result = debit(db, "user-1", Decimal("0.30"))

    assert result.new_balance == Decimal("0")
    assert result.was_blocked is True
    account = _account(db)
    assert account.current_balance == Decimal("0")
    assert account.is_blocked is True


def test_debit_to_exactly_zero_blocks(db):
    open_credit_account(db, user_id="user-1", initial_balance=Decimal("0.30"))

    result = debit(db, "user-1", Decimal("0.30"))

    assert result.new_balance == Decimal("0")
    assert result.was_blocked is True


def test_blocked_account_rejects_debit_without_change(db):
    open_credit_account(db, user_id="user-1", initial_balance=Decimal("0.20"))
    debit(db, "user-1", Decimal("0.30"))

    with pytest.raises(AccountBlockedError):
        debit(db, "user-1", Decimal("0.10"))

    account = _account(db)
    assert account.current_balance == Decimal("0")
    assert account.is_blocked is True


def test_debit_unknown_account_raises(db):
    with pytest.raises(CreditAccountNotFoundError):
        debit(db, "nobody", Decimal("0.10"))

    # no account is created on the fly
    assert db.query(UserCredit).count() == 0


def test_debit_rejects_non_positive_amounts(db):
    open_credit_account(db, user_id="user-1", initial_balance=Decimal("1.00"))

    with pytest.raises(InvalidAmountError):
        debit(db, "user-1", Decimal("0"))
    with pytest.raises(InvalidAmountError):
        debit(db, "user-1", Decimal("-1"))


def test_credit_unblocks_account_and_records_transaction(db):
    open_credit_account(db, user_id="user-1", company_id="company-1", initial_balance=Decimal("0.20"))
    debit(db, "user-1", Decimal("0.30"))

    result = credit(db, "user-1", Decimal("5.00"), "Top up", created_by="ops@example.com")

    assert result.new_balance == Decimal("5.0000")
    assert result.is_blocked is False
    assert result.transaction is not None
    assert result.transaction.amount == Decimal("5.0000")
    assert result.transaction.transaction_type == "admin_credit"
    assert result.transaction.balance_after == Decimal("5.0000")
    assert result.transaction.company_id == "company-1"
    assert result.transaction.created_by == "ops@example.com"

    account = _account(db)
    assert account.is_blocked is False
    assert account.current_balance == Decimal("5.0000")


def test_credit_unknown_account_raises(db):
    with pytest.raises(CreditAccountNotFoundError):
        credit(db, "nobody", Decimal("1.00"))
