# callbilling/models/webhook_log.py
from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, String, Text

from callbilling.models.base import Base, Money


class WebhookLog(Base):
    """Audit row for every webhook delivery, whatever its outcome."""

    __tablename__ = "webhook_logs"

    id = Column(Integer, primary_key=True, index=True)
    event_type = Column(String(64), nullable=False, index=True)
    call_id = Column(String(128), nullable=True, index=True)

    # received | success | error
    status = Column(String(16), nullable=False, default="received")

    cost = Column(Money, nullable=True)
    duration_sec = Column(Integer, nullable=True)
    processing_time_ms = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class WebhookError(Base):
    """
    Operational error channel.

    Unknown agents, missing owners and crashes land here so an operator
    can follow up; the provider only sees a 4xx/5xx.
    """

    __tablename__ = "webhook_errors"

    id = Column(Integer, primary_key=True, index=True)
    error_type = Column(String(64), nullable=False, index=True)
    call_id = Column(String(128), nullable=True, index=True)
    external_agent_id = Column(String(128), nullable=True)
    details = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
