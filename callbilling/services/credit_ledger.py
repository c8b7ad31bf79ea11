# callbilling/services/credit_ledger.py
"""
Prepaid credit ledger.

Balance changes are single conditional UPDATE ... RETURNING statements so
that two concurrent debits for the same user can never both read a stale
balance or a stale `is_blocked` flag. Application code never reads the
balance and writes it back in a second round trip.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import and_, case, func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from callbilling.config import get_settings
from callbilling.errors import (
    AccountBlockedError,
    CreditAccountNotFoundError,
    InvalidAmountError,
    LedgerUnavailableError,
)
from callbilling.models.credit_transaction import CreditTransaction, TransactionType
from callbilling.models.user_credit import UserCredit
from callbilling.services.pricing import format_currency, round_currency
from callbilling.services.transaction_recorder import record_transaction

logger = logging.getLogger(__name__)


@dataclass
class DebitResult:
    new_balance: Decimal
    # True when this debit exhausted the balance and locked the account
    was_blocked: bool
    is_low: bool
    is_critical: bool
    company_id: Optional[str] = None


@dataclass
class CreditResult:
    new_balance: Decimal
    is_blocked: bool
    transaction: Optional[CreditTransaction]


def get_credit_account(db: Session, user_id: str) -> Optional[UserCredit]:
    return db.query(UserCredit).filter(UserCredit.user_id == user_id).first()


def open_credit_account(
    db: Session,
    *,
    user_id: str,
    company_id: Optional[str] = None,
    initial_balance: Decimal = Decimal("0"),
    warning_threshold: Optional[Decimal] = None,
    critical_threshold: Optional[Decimal] = None,
    created_by: Optional[str] = None,
) -> UserCredit:
    """
    Provision the credit row for a user.

    Debits never create this row on the fly: a call for a user without an
    account is a configuration error, not a reason to invent a balance.
    """
    if initial_balance < 0:
        raise InvalidAmountError("initial_balance must be >= 0")
    if get_credit_account(db, user_id) is not None:
        raise ValueError(f"Credit account for user {user_id} already exists")

    settings = get_settings()
    account = UserCredit(
        user_id=user_id,
        company_id=company_id,
        current_balance=round_currency(initial_balance),
        warning_threshold=round_currency(
            warning_threshold if warning_threshold is not None else settings.DEFAULT_WARNING_THRESHOLD
        ),
        critical_threshold=round_currency(
            critical_threshold if critical_threshold is not None else settings.DEFAULT_CRITICAL_THRESHOLD
        ),
        is_blocked=False,
    )
    db.add(account)
    db.commit()
    db.refresh(account)

    if account.current_balance > 0:
        record_transaction(
            db,
            user_id=user_id,
            company_id=company_id,
            amount=account.current_balance,
            transaction_type=TransactionType.DEPOSIT,
            description=f"Opening balance {format_currency(account.current_balance)}",
            balance_after=account.current_balance,
            created_by=created_by,
        )

    logger.info("Opened credit account for user %s with %s", user_id, account.current_balance)
    return account


def debit(db: Session, user_id: str, amount: Decimal, *, commit: bool = True) -> DebitResult:
    """
    Take `amount` (> 0) off the user's balance.

    - blocked account -> AccountBlockedError, nothing changes
    - new balance is clamped at 0; reaching 0 sets is_blocked in the
      same statement
    - is_low / is_critical are advisory flags for caller-side alerting

    With commit=False the update is left pending in the caller's
    transaction (billing pairs it with the call claim).
    """
    amount = round_currency(amount)
    if amount <= 0:
        raise InvalidAmountError(f"Debit amount must be positive, got {amount}")

    remaining = func.round(UserCredit.current_balance - amount, 4)
    stmt = (
        update(UserCredit)
        .where(UserCredit.user_id == user_id, UserCredit.is_blocked.is_(False))
        .values(
            current_balance=case((remaining > 0, remaining), else_=0),
            is_blocked=remaining <= 0,
            updated_at=datetime.utcnow(),
        )
        .returning(
            UserCredit.current_balance,
            UserCredit.is_blocked,
            UserCredit.warning_threshold,
            UserCredit.critical_threshold,
            UserCredit.company_id,
        )
        .execution_options(synchronize_session=False)
    )

    try:
        row = db.execute(stmt).first()
    except SQLAlchemyError as exc:
        db.rollback()
        raise LedgerUnavailableError(f"Ledger store unavailable: {exc}") from exc

    if row is None:
        # Nothing matched: either there is no account or it is blocked
        if commit:
            db.rollback()
        account = get_credit_account(db, user_id)
        if account is None:
            raise CreditAccountNotFoundError(f"No credit account found for user {user_id}")
        raise AccountBlockedError(f"Account blocked for user {user_id}")

    if commit:
        db.commit()

    new_balance = round_currency(row.current_balance)
    result = DebitResult(
        new_balance=new_balance,
        was_blocked=bool(row.is_blocked),
        is_low=new_balance <= row.warning_threshold,
        is_critical=new_balance <= row.critical_threshold,
        company_id=row.company_id,
    )

    if result.was_blocked:
        logger.warning("Balance exhausted for user %s; account is now blocked", user_id)
    elif result.is_critical:
        logger.warning("Critical balance for user %s: %s", user_id, new_balance)
    elif result.is_low:
        logger.warning("Low balance for user %s: %s", user_id, new_balance)

    return result


def credit(
    db: Session,
    user_id: str,
    amount: Decimal,
    description: Optional[str] = None,
    *,
    transaction_type: TransactionType = TransactionType.ADMIN_CREDIT,
    created_by: Optional[str] = None,
) -> CreditResult:
    """
    Add `amount` (> 0) to the user's balance and append a transaction.

    A blocked account is unblocked when the resulting balance is above 0.
    """
    amount = round_currency(amount)
    if amount <= 0:
        raise InvalidAmountError(f"Credit amount must be positive, got {amount}")

    total = func.round(UserCredit.current_balance + amount, 4)
    stmt = (
        update(UserCredit)
        .where(UserCredit.user_id == user_id)
        .values(
            current_balance=total,
            is_blocked=and_(UserCredit.is_blocked, total <= 0),
            updated_at=datetime.utcnow(),
        )
        .returning(
            UserCredit.current_balance,
            UserCredit.is_blocked,
            UserCredit.company_id,
        )
        .execution_options(synchronize_session=False)
    )

    try:
        row = db.execute(stmt).first()
    except SQLAlchemyError as exc:
        db.rollback()
        raise LedgerUnavailableError(f"Ledger store unavailable: {exc}") from exc

    if row is None:
        raise CreditAccountNotFoundError(f"No credit account found for user {user_id}")

    db.commit()

    new_balance = round_currency(row.current_balance)
    txn = record_transaction(
        db,
        user_id=user_id,
        company_id=row.company_id,
        amount=amount,
        transaction_type=transaction_type,
        description=description or f"Admin credit of {format_currency(amount)}",
        balance_after=new_balance,
        created_by=created_by,
    )

    logger.info("Credited %s to user %s; balance now %s", amount, user_id, new_balance)
    return CreditResult(new_balance=new_balance, is_blocked=bool(row.is_blocked), transaction=txn)
