# callbilling/services/webhook_audit.py
import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from callbilling.models.webhook_log import WebhookError, WebhookLog

logger = logging.getLogger(__name__)


def record_webhook_log(
    db: Session,
    *,
    event_type: str,
    call_id: Optional[str],
    status: str,
    cost: Optional[Decimal] = None,
    duration_sec: Optional[int] = None,
    processing_time_ms: Optional[int] = None,
) -> None:
    """Audit trail only: a failed write is logged and otherwise ignored."""
    try:
        db.add(
            WebhookLog(
                event_type=event_type,
                call_id=call_id,
                status=status,
                cost=cost,
                duration_sec=duration_sec,
                processing_time_ms=processing_time_ms,
            )
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning("Failed to write webhook log for call %s: %s", call_id, exc)


def record_webhook_error(
    db: Session,
    *,
    error_type: str,
    call_id: Optional[str],
    external_agent_id: Optional[str] = None,
    details: Optional[str] = None,
) -> None:
    """Write to the operator-facing error channel."""
    try:
        db.add(
            WebhookError(
                error_type=error_type,
                call_id=call_id,
                external_agent_id=external_agent_id,
                details=details,
            )
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning(
            "Failed to write %s to webhook error channel for call %s: %s",
            error_type,
            call_id,
            exc,
        )
