# callbilling/services/billing_service.py
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from callbilling.errors import LedgerError, LedgerUnavailableError
from callbilling.models.call import Call
from callbilling.models.credit_transaction import TransactionType
from callbilling.services.credit_ledger import debit
from callbilling.services.idempotency import claim_call_charge, has_call_charge
from callbilling.services.transaction_recorder import record_transaction

logger = logging.getLogger(__name__)

CHARGED = "charged"
DUPLICATE = "duplicate"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass
class BillingOutcome:
    status: str
    amount: Decimal = Decimal("0")
    new_balance: Optional[Decimal] = None
    account_blocked: bool = False
    is_low: bool = False
    is_critical: bool = False
    transaction_id: Optional[int] = None
    reason: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "amount": float(self.amount),
            "new_balance": float(self.new_balance) if self.new_balance is not None else None,
            "account_blocked": self.account_blocked,
            "is_low": self.is_low,
            "is_critical": self.is_critical,
            "transaction_id": self.transaction_id,
            "reason": self.reason,
        }


def bill_call(db: Session, call: Call, amount: Optional[Decimal] = None) -> BillingOutcome:
    """
    Charge the call's owner for the call, at most once per call id.

    1. already charged (claim set or call_charge on the books) -> duplicate
    2. debit the balance and claim the call in one DB transaction; losing
       the claim race rolls the debit back -> duplicate
    3. append the call_charge transaction (best-effort, see
       record_transaction)

    LedgerError propagates with nothing committed.
    """
    amount = call.cost if amount is None else amount
    if amount is None or amount <= 0:
        return BillingOutcome(status=SKIPPED, reason="no billable cost")

    if call.billed_at is not None or has_call_charge(db, call.call_id):
        logger.info("Call %s already charged; skipping duplicate delivery", call.call_id)
        return BillingOutcome(status=DUPLICATE, amount=amount, reason="already charged")

    # Plain values: the ORM object expires on commit/rollback
    call_id = call.call_id
    user_id = call.user_id
    company_id = call.company_id
    duration_sec = call.duration_sec

    try:
        result = debit(db, user_id, amount, commit=False)
        if not claim_call_charge(db, call_id, amount, result.new_balance):
            db.rollback()
            logger.info("Lost billing race for call %s; debit rolled back", call_id)
            return BillingOutcome(status=DUPLICATE, amount=amount, reason="already charged")
        db.commit()
    except LedgerError:
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        raise LedgerUnavailableError(f"Could not charge call {call_id}: {exc}") from exc

    txn = record_transaction(
        db,
        user_id=user_id,
        company_id=company_id,
        amount=-amount,
        transaction_type=TransactionType.CALL_CHARGE,
        description=f"Call charge for {call_id} ({duration_sec}s)",
        balance_after=result.new_balance,
        call_id=call_id,
    )

    logger.info(
        "Charged %s to user %s for call %s; balance now %s",
        amount,
        user_id,
        call_id,
        result.new_balance,
    )

    return BillingOutcome(
        status=CHARGED,
        amount=amount,
        new_balance=result.new_balance,
        account_blocked=result.was_blocked,
        is_low=result.is_low,
        is_critical=result.is_critical,
        transaction_id=txn.id if txn is not None else None,
        reason=None if txn is not None else "transaction record pending reconciliation",
    )
