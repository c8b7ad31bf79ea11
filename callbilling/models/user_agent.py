# callbilling/models/user_agent.py
from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from callbilling.models.base import Base


class UserAgent(Base):
    """
    Ownership mapping: which (user, company) pays for an agent's usage.

    A user may flag at most one of their mappings as primary.
    """

    __tablename__ = "user_agents"
    __table_args__ = (
        UniqueConstraint("user_id", "agent_id", name="uq_user_agent"),
    )

    id = Column(Integer, primary_key=True, index=True)

    user_id = Column(String(64), nullable=False, index=True)
    company_id = Column(String(64), nullable=False, index=True)

    agent_id = Column(
        Integer,
        ForeignKey("agents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    is_primary = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    agent = relationship("Agent", backref="owners")
