# callbilling/services/call_mapper.py
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from callbilling.models.agent import Agent
from callbilling.models.call import CallStatus
from callbilling.schemas.webhook import BILLABLE_EVENTS, START_EVENTS, CallPayload, WebhookEvent
from callbilling.services.ownership import Owner
from callbilling.services.pricing import calculate_call_cost

logger = logging.getLogger(__name__)

# Timestamps above this are epoch milliseconds, below it epoch seconds
_MS_TIMESTAMP_CUTOFF = 1e12

_PHONE_JUNK = re.compile(r"[^+\d\-()\s]")


@dataclass
class CallRecord:
    """Normalized shape of one webhook event, ready to upsert."""

    call_id: str
    event: str
    user_id: str
    company_id: str
    agent_id: int
    duration_sec: int
    cost: Decimal
    # None means "leave the stored status alone"
    status: Optional[str] = None
    provider_status: Optional[str] = None
    start_time: Optional[datetime] = None
    from_number: Optional[str] = None
    to_number: Optional[str] = None
    disconnection_reason: Optional[str] = None
    recording_url: Optional[str] = None
    transcript: Optional[str] = None
    sentiment: Optional[str] = None
    sentiment_score: Optional[float] = None


def _round_half_up(value: float) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def derive_duration_seconds(call: CallPayload) -> int:
    """
    Duration in whole seconds, first positive source wins:

    1. duration_ms
    2. duration (seconds)
    3. end_timestamp - start_timestamp (milliseconds)

    Missing, negative or unparseable values give 0.
    """
    if call.duration_ms is not None and call.duration_ms > 0:
        return _round_half_up(call.duration_ms / 1000)

    if call.duration is not None and call.duration > 0:
        return _round_half_up(call.duration)

    if call.start_timestamp is not None and call.end_timestamp is not None:
        return max(0, _round_half_up((call.end_timestamp - call.start_timestamp) / 1000))

    return 0


def parse_start_time(start_timestamp: Optional[float]) -> Optional[datetime]:
    if start_timestamp is None or start_timestamp <= 0:
        return None

    seconds = start_timestamp / 1000 if start_timestamp > _MS_TIMESTAMP_CUTOFF else start_timestamp
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(tzinfo=None)
    except (OverflowError, OSError, ValueError):
        logger.warning("Ignoring out-of-range start_timestamp %s", start_timestamp)
        return None


def clean_phone_number(phone: Optional[str]) -> str:
    if not phone or not phone.strip():
        return "unknown"
    cleaned = _PHONE_JUNK.sub("", phone.strip()).strip()
    return cleaned or "unknown"


def _clean_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def status_for_event(event: str) -> Optional[str]:
    if event in START_EVENTS:
        return CallStatus.IN_PROGRESS.value
    if event in BILLABLE_EVENTS:
        return CallStatus.COMPLETED.value
    # Unknown event types update fields but never move the state machine
    return None


def normalize_call_event(event: WebhookEvent, agent: Agent, owner: Owner) -> CallRecord:
    call = event.call

    if event.event in START_EVENTS:
        # A placeholder: nothing has been spoken or billed yet
        duration_sec = 0
    else:
        duration_sec = derive_duration_seconds(call)

    return CallRecord(
        call_id=call.call_id,
        event=event.event,
        user_id=owner.user_id,
        company_id=owner.company_id,
        agent_id=agent.id,
        duration_sec=duration_sec,
        cost=calculate_call_cost(duration_sec, agent.rate_per_minute),
        status=status_for_event(event.event),
        provider_status=_clean_text(call.call_status),
        start_time=parse_start_time(call.start_timestamp),
        from_number=clean_phone_number(call.from_number) if call.from_number else None,
        to_number=clean_phone_number(call.to_number) if call.to_number else None,
        disconnection_reason=_clean_text(call.disconnection_reason),
        recording_url=_clean_text(call.recording_url),
        transcript=_clean_text(call.transcript),
        sentiment=_clean_text(call.sentiment),
        sentiment_score=call.sentiment_score,
    )
