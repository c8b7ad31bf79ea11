# callbilling/routers/webhooks.py
import logging
import time
from datetime import datetime
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from callbilling.config import get_settings
from callbilling.db.session import get_db
from callbilling.dependencies.auth import check_webhook_token
from callbilling.errors import BillingError, PayloadValidationError
from callbilling.schemas.webhook import TEST_EVENTS, WebhookEvent, parse_webhook_event
from callbilling.services.webhook_audit import record_webhook_error, record_webhook_log
from callbilling.services.webhook_processor import process_webhook_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type, x-webhook-token, accept",
    "Access-Control-Allow-Methods": "POST, OPTIONS, GET",
    "Access-Control-Max-Age": "86400",
}


def _now_iso() -> str:
    return datetime.utcnow().isoformat() + "Z"


def error_response(message: str, status_code: int) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": message, "timestamp": _now_iso(), "status": status_code},
        headers=CORS_HEADERS,
    )


@router.options("/retell")
def webhook_preflight() -> Response:
    return Response(status_code=200, headers=CORS_HEADERS)


@router.get("/retell")
def webhook_health() -> Dict[str, Any]:
    return {
        "status": "healthy",
        "timestamp": _now_iso(),
        "message": "Webhook endpoint is operational",
    }


@router.post("/retell")
async def provider_webhook(request: Request, db: Session = Depends(get_db)):
    """
    Call lifecycle webhook from the telephony provider.

    Body: {"event": "call_started" | "call_ended" | "call_disconnected" |
    "call_analyzed", "call": {"call_id": ..., "agent_id": ..., ...}}

    - 200 {success, event, call_id, billing} once the call record is stored
      (billing problems are reported in `billing`, not as an error)
    - 4xx {error, timestamp, status} for auth, shape or resolution failures
    - 500 for anything unexpected
    """
    started = time.monotonic()

    failure = check_webhook_token(request.headers.get(get_settings().WEBHOOK_TOKEN_HEADER))
    if failure is not None:
        return error_response(failure[1], failure[0])

    if "application/json" not in request.headers.get("content-type", ""):
        return error_response("Invalid content type", 400)

    try:
        raw = await request.json()
    except ValueError:
        return error_response("Invalid JSON payload", 400)

    event_name = raw.get("event") if isinstance(raw, dict) else None
    if isinstance(event_name, str) and event_name in TEST_EVENTS:
        call = raw.get("call") if isinstance(raw.get("call"), dict) else {}
        logger.info("Test webhook received")
        return {
            "success": True,
            "event": event_name,
            "call_id": call.get("call_id"),
            "message": "Test webhook received successfully",
        }

    try:
        event = parse_webhook_event(raw)
    except PayloadValidationError as exc:
        logger.warning("Rejected webhook payload: %s", exc.message)
        return error_response(exc.message, exc.status_code)

    # Sessions and the ledger are synchronous; keep them off the event loop
    return await run_in_threadpool(_handle_event, db, event, started)


def _handle_event(db: Session, event: WebhookEvent, started: float):
    call_id = event.call.call_id
    try:
        result = process_webhook_event(db, event)
    except BillingError as exc:
        record_webhook_log(db, event_type=event.event, call_id=call_id, status="error")
        return error_response(exc.message, exc.status_code)
    except Exception as exc:
        logger.exception("Unexpected error processing %s for call %s", event.event, call_id)
        db.rollback()
        record_webhook_error(db, error_type="fatal_error", call_id=call_id, details=str(exc))
        return error_response("Webhook processing failed", 500)

    record_webhook_log(
        db,
        event_type=result.event,
        call_id=result.call_id,
        status="success",
        cost=result.call.cost,
        duration_sec=result.call.duration_sec,
        processing_time_ms=int((time.monotonic() - started) * 1000),
    )

    return {
        "success": True,
        "event": result.event,
        "call_id": result.call_id,
        "billing": result.billing.as_dict() if result.billing else None,
    }
