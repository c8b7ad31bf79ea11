# callbilling/models/agent.py
from datetime import datetime
from enum import Enum

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String

from callbilling.models.base import Base, Money


class AgentStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class Agent(Base):
    """
    An AI calling agent as known to the billing side.

    `external_id` is the provider's agent identifier carried by webhooks.
    Agents are never hard-deleted while calls reference them; retiring one
    means flipping `status` to inactive.
    """

    __tablename__ = "agents"
    __table_args__ = (
        CheckConstraint("rate_per_minute >= 0", name="agent_rate_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    external_id = Column(String(128), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=False)

    # Store status as a simple string; AgentStatus is still used in Python
    status = Column(String(16), nullable=False, default=AgentStatus.ACTIVE.value)

    rate_per_minute = Column(Money, nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    @property
    def is_active(self) -> bool:
        return self.status == AgentStatus.ACTIVE.value
