# callbilling/schemas/webhook.py
import math
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from callbilling.errors import PayloadValidationError


BILLABLE_EVENTS = frozenset({"call_ended", "call_disconnected", "call_analyzed"})
START_EVENTS = frozenset({"call_started"})
TEST_EVENTS = frozenset({"test", "test_diagnostic"})


def _lenient_number(value: Any) -> Optional[float]:
    """Provider numbers sometimes arrive as strings or junk; junk becomes None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


class CallPayload(BaseModel):
    """
    The nested `call` object of a provider webhook.

    Only `call_id` and `agent_id` are required. Unknown keys are kept so
    newer provider fields pass through validation untouched.
    """

    model_config = ConfigDict(extra="allow")

    call_id: str = Field(min_length=1)
    agent_id: str = Field(min_length=1)

    from_number: Optional[str] = None
    to_number: Optional[str] = None

    # Epoch timestamps, milliseconds
    start_timestamp: Optional[float] = None
    end_timestamp: Optional[float] = None

    # Seconds / milliseconds
    duration: Optional[float] = None
    duration_ms: Optional[float] = None

    call_status: Optional[str] = None
    disconnection_reason: Optional[str] = None
    recording_url: Optional[str] = None
    transcript: Optional[str] = None
    sentiment: Optional[str] = None
    sentiment_score: Optional[float] = None

    @field_validator("call_id", "agent_id", mode="before")
    @classmethod
    def strip_identifiers(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator(
        "start_timestamp",
        "end_timestamp",
        "duration",
        "duration_ms",
        "sentiment_score",
        mode="before",
    )
    @classmethod
    def coerce_numbers(cls, v: Any) -> Optional[float]:
        return _lenient_number(v)

    @field_validator("sentiment", mode="before")
    @classmethod
    def flatten_sentiment(cls, v: Any) -> Optional[str]:
        # Analysis events may send {"overall_sentiment": ..., "score": ...}
        if isinstance(v, dict):
            v = v.get("overall_sentiment")
        return v if isinstance(v, str) else None


class WebhookEvent(BaseModel):
    """Envelope of an inbound provider webhook."""

    model_config = ConfigDict(extra="allow")

    event: str = Field(min_length=1)
    call: CallPayload

    @property
    def is_known(self) -> bool:
        return self.event in START_EVENTS or self.event in BILLABLE_EVENTS

    @property
    def is_billable(self) -> bool:
        return self.event in BILLABLE_EVENTS


def _describe_validation_error(exc: ValidationError) -> str:
    first = exc.errors()[0]
    field = ".".join(str(part) for part in first["loc"])
    if first["type"] == "missing":
        return f"Missing required field: {field}"
    return f"Invalid field {field}: {first['msg']}"


def parse_webhook_event(raw: Any) -> WebhookEvent:
    """Validate a decoded JSON body, raising PayloadValidationError on bad shape."""
    if not isinstance(raw, dict):
        raise PayloadValidationError("Invalid webhook payload: expected a JSON object")
    try:
        return WebhookEvent.model_validate(raw)
    except ValidationError as exc:
        raise PayloadValidationError(_describe_validation_error(exc)) from exc
