# callbilling/services/transaction_recorder.py
import logging
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from callbilling.models.credit_transaction import CreditTransaction, TransactionType
from callbilling.services.pricing import round_currency

logger = logging.getLogger(__name__)


def record_transaction(
    db: Session,
    *,
    user_id: str,
    company_id: Optional[str],
    amount: Decimal,
    transaction_type: TransactionType,
    description: str,
    balance_after: Decimal,
    call_id: Optional[str] = None,
    created_by: Optional[str] = None,
) -> Optional[CreditTransaction]:
    """
    Append one immutable ledger entry.

    This runs after the balance change it describes has been committed.
    If the insert fails we roll back only the insert, log a reconciliation
    warning and return None: the money movement stands and
    `reconcile_missing_transactions` can rebuild the entry later. Callers
    must not treat a None here as a failed charge.
    """
    txn = CreditTransaction(
        user_id=user_id,
        company_id=company_id,
        amount=round_currency(amount),
        transaction_type=transaction_type.value,
        description=description,
        call_id=call_id,
        balance_after=round_currency(balance_after),
        created_by=created_by,
    )

    try:
        db.add(txn)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning(
            "Reconciliation needed: balance for user %s changed by %s (%s, call=%s) "
            "but the transaction record could not be written: %s",
            user_id,
            amount,
            transaction_type.value,
            call_id,
            exc,
        )
        return None

    db.refresh(txn)
    return txn


def list_transactions(db: Session, user_id: str, limit: int = 50) -> List[CreditTransaction]:
    """Most recent first."""
    return (
        db.query(CreditTransaction)
        .filter(CreditTransaction.user_id == user_id)
        .order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())
        .limit(limit)
        .all()
    )
