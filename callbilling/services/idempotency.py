# callbilling/services/idempotency.py
"""
Replay safety for webhook deliveries, keyed on the provider call id.

- call records are upserted, so call_started -> call_ended -> call_analyzed
  (or a redelivery of any of them) converge on one row
- a call is charged at most once: `claim_call_charge` is a
  compare-and-set on the call row that runs inside the same DB
  transaction as the balance debit, and the unique partial index on
  `credit_transactions` backs it up at the storage layer
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional, Tuple

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from callbilling.models.call import Call, CallStatus
from callbilling.models.credit_transaction import CreditTransaction, TransactionType
from callbilling.services.call_mapper import CallRecord

logger = logging.getLogger(__name__)

_STATUS_RANK = {
    CallStatus.UNKNOWN.value: 0,
    CallStatus.IN_PROGRESS.value: 1,
    CallStatus.COMPLETED.value: 2,
}

# Optional enrichment: only ever overwritten by a non-empty value
_ENRICHMENT_FIELDS = (
    "provider_status",
    "start_time",
    "from_number",
    "to_number",
    "disconnection_reason",
    "recording_url",
    "transcript",
    "sentiment",
    "sentiment_score",
)


def find_call(db: Session, call_id: str) -> Optional[Call]:
    return db.query(Call).filter(Call.call_id == call_id).first()


def _apply_new(call: Call, record: CallRecord) -> None:
    call.user_id = record.user_id
    call.company_id = record.company_id
    call.agent_id = record.agent_id
    call.duration_sec = record.duration_sec
    call.cost = record.cost
    call.status = record.status or CallStatus.UNKNOWN.value
    call.last_event = record.event
    for field in _ENRICHMENT_FIELDS:
        setattr(call, field, getattr(record, field))
    call.from_number = record.from_number or "unknown"
    call.to_number = record.to_number or "unknown"


def _merge_existing(call: Call, record: CallRecord) -> None:
    # Once billed, the call stays attributed to the user who was charged
    if call.billed_at is None:
        call.user_id = record.user_id
        call.company_id = record.company_id
        call.agent_id = record.agent_id
    call.last_event = record.event

    # Out-of-order delivery: a late call_started must not reopen a call
    if record.status is not None:
        current_rank = _STATUS_RANK.get(call.status, 0)
        if _STATUS_RANK.get(record.status, 0) >= current_rank:
            call.status = record.status

    # Events without timing info (e.g. analysis) keep the stored duration.
    # Once billed, the charged cost is frozen.
    if record.duration_sec > 0 and call.billed_at is None:
        call.duration_sec = record.duration_sec
        call.cost = record.cost

    for field in _ENRICHMENT_FIELDS:
        value = getattr(record, field)
        if value is not None:
            setattr(call, field, value)


def upsert_call_record(db: Session, record: CallRecord) -> Tuple[Call, bool]:
    """
    Insert or merge the call row for `record.call_id`.

    Returns (call, created). If a concurrent delivery inserts the same
    call id first, the unique constraint fires and we merge into its row
    instead. SQLAlchemy errors propagate to the caller.
    """
    call = find_call(db, record.call_id)
    created = False

    if call is None:
        call = Call(call_id=record.call_id)
        _apply_new(call, record)
        db.add(call)
        try:
            db.commit()
            created = True
        except IntegrityError:
            db.rollback()
            logger.info("Concurrent insert for call %s; merging instead", record.call_id)
            call = find_call(db, record.call_id)
            if call is None:
                raise

    if not created:
        _merge_existing(call, record)
        db.commit()

    db.refresh(call)
    return call, created


def has_call_charge(db: Session, call_id: str) -> bool:
    """True when a call_charge transaction is already on the books."""
    existing = (
        db.query(CreditTransaction.id)
        .filter(
            CreditTransaction.call_id == call_id,
            CreditTransaction.transaction_type == TransactionType.CALL_CHARGE.value,
        )
        .first()
    )
    return existing is not None


def claim_call_charge(
    db: Session,
    call_id: str,
    amount: Decimal,
    balance_after: Decimal,
) -> bool:
    """
    Mark the call as billed unless someone already did.

    Does not commit: the claim must land in the same transaction as the
    debit. Returns False when the call was already claimed, in which case
    the caller rolls back its debit.
    """
    result = db.execute(
        update(Call)
        .where(Call.call_id == call_id, Call.billed_at.is_(None))
        .values(
            billed_at=datetime.utcnow(),
            charged_amount=amount,
            balance_after_charge=balance_after,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1
