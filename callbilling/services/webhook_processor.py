# callbilling/services/webhook_processor.py
"""
Orchestrates one provider webhook from validated envelope to response.

Per call id the record moves unseen -> in_progress -> completed. Only
terminal events bill, and billing is idempotent, so any mix of
call_ended / call_disconnected / call_analyzed (or redeliveries of them)
charges the owner once.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from callbilling.errors import LedgerError, PersistenceError, ResolutionError
from callbilling.models.call import Call
from callbilling.schemas.webhook import WebhookEvent
from callbilling.services.agent_directory import resolve_agent
from callbilling.services.billing_service import FAILED, SKIPPED, BillingOutcome, bill_call
from callbilling.services.call_mapper import normalize_call_event
from callbilling.services.idempotency import upsert_call_record
from callbilling.services.ownership import resolve_owner
from callbilling.services.webhook_audit import record_webhook_error

logger = logging.getLogger(__name__)


@dataclass
class WebhookResult:
    event: str
    call_id: str
    created: bool
    call: Call
    billing: Optional[BillingOutcome] = None


def process_webhook_event(db: Session, event: WebhookEvent) -> WebhookResult:
    """
    Handle one validated webhook event.

    Raises ResolutionError (unknown/inactive agent, no clear owner) or
    PersistenceError (call record not stored); in both cases nothing has
    been billed. Ledger problems never raise: they are logged and
    reported in `WebhookResult.billing`.
    """
    payload = event.call

    if not event.is_known:
        logger.warning(
            "Unknown event type '%s' for call %s; storing as a generic update",
            event.event,
            payload.call_id,
        )

    try:
        agent = resolve_agent(db, payload.agent_id)
        owner = resolve_owner(db, agent.id)
    except ResolutionError as exc:
        logger.error("%s for call %s: %s", exc.error_type, payload.call_id, exc.message)
        record_webhook_error(
            db,
            error_type=exc.error_type,
            call_id=payload.call_id,
            external_agent_id=payload.agent_id,
            details=exc.message,
        )
        raise

    record = normalize_call_event(event, agent, owner)

    try:
        call, created = upsert_call_record(db, record)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Failed to save call %s: %s", payload.call_id, exc)
        record_webhook_error(
            db,
            error_type=PersistenceError.error_type,
            call_id=payload.call_id,
            external_agent_id=payload.agent_id,
            details=str(exc),
        )
        raise PersistenceError(f"Failed to save call data: {exc}") from exc

    logger.info(
        "Processed %s for call %s (agent=%s user=%s duration=%ss cost=%s)",
        event.event,
        call.call_id,
        agent.id,
        owner.user_id,
        call.duration_sec,
        call.cost,
    )

    billing = None
    if event.is_billable:
        billing = _bill_without_failing(db, call)

    return WebhookResult(
        event=event.event,
        call_id=payload.call_id,
        created=created,
        call=call,
        billing=billing,
    )


def _bill_without_failing(db: Session, call: Call) -> BillingOutcome:
    # The call record is already stored; a billing problem must not turn
    # into a provider retry of the whole event.
    if call.duration_sec <= 0 or call.cost <= 0:
        return BillingOutcome(status=SKIPPED, reason="no billable duration")

    call_id = call.call_id
    try:
        return bill_call(db, call)
    except LedgerError as exc:
        logger.error("Billing skipped for call %s (%s): %s", call_id, exc.error_type, exc.message)
        return BillingOutcome(status=FAILED, amount=call.cost, reason=exc.message)
