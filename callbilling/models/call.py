# callbilling/models/call.py
from datetime import datetime
from enum import Enum

from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from callbilling.models.base import Base, Money


class CallStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    UNKNOWN = "unknown"


class Call(Base):
    __tablename__ = "calls"

    id = Column(Integer, primary_key=True, index=True)

    # Provider call id: the idempotency key for every webhook
    call_id = Column(String(128), nullable=False, unique=True, index=True)

    user_id = Column(String(64), nullable=False, index=True)
    company_id = Column(String(64), nullable=False, index=True)
    agent_id = Column(
        Integer,
        ForeignKey("agents.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    start_time = Column(DateTime, nullable=True)
    duration_sec = Column(Integer, nullable=False, default=0)
    cost = Column(Money, nullable=False, default=0)

    status = Column(String(32), nullable=False, default=CallStatus.UNKNOWN.value)
    provider_status = Column(String(64), nullable=True)
    last_event = Column(String(64), nullable=True)

    from_number = Column(String(50), nullable=True)
    to_number = Column(String(50), nullable=True)
    disconnection_reason = Column(String(255), nullable=True)

    recording_url = Column(Text, nullable=True)
    transcript = Column(Text, nullable=True)
    sentiment = Column(String(32), nullable=True)
    sentiment_score = Column(Float, nullable=True)

    # Billing claim: set exactly once, in the same DB transaction as the debit
    billed_at = Column(DateTime, nullable=True)
    charged_amount = Column(Money, nullable=True)
    balance_after_charge = Column(Money, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    agent = relationship("Agent", backref="calls")
