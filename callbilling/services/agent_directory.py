# callbilling/services/agent_directory.py
import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from callbilling.errors import AgentInactiveError, AgentNotFoundError
from callbilling.models.agent import Agent, AgentStatus
from callbilling.services.pricing import round_currency

logger = logging.getLogger(__name__)


def resolve_agent(db: Session, external_agent_id: str) -> Agent:
    """
    Map a provider agent id to the internal, billable agent.

    Raises AgentNotFoundError for an unknown id and AgentInactiveError for
    a retired agent. Neither case may be billed.
    """
    agent = db.query(Agent).filter(Agent.external_id == external_agent_id).first()
    if agent is None:
        raise AgentNotFoundError(f"Agent not found for external agent id: {external_agent_id}")

    if not agent.is_active:
        raise AgentInactiveError(f"Agent {agent.id} ({external_agent_id}) is not active")

    logger.debug("Resolved agent %s -> %s (%s)", external_agent_id, agent.id, agent.name)
    return agent


def get_agent(db: Session, agent_id: int) -> Optional[Agent]:
    return db.get(Agent, agent_id)


def _validated_rate(rate_per_minute: Decimal) -> Decimal:
    if rate_per_minute < 0:
        raise ValueError("rate_per_minute must be >= 0")
    return round_currency(rate_per_minute)


def create_agent(
    db: Session,
    *,
    external_id: str,
    name: str,
    rate_per_minute: Decimal,
    status: AgentStatus = AgentStatus.ACTIVE,
) -> Agent:
    existing = db.query(Agent).filter(Agent.external_id == external_id).first()
    if existing is not None:
        raise ValueError(f"An agent with external id {external_id} already exists")

    agent = Agent(
        external_id=external_id,
        name=name,
        rate_per_minute=_validated_rate(rate_per_minute),
        status=status.value,
    )
    db.add(agent)
    db.commit()
    db.refresh(agent)

    logger.info("Created agent %s for external id %s", agent.id, external_id)
    return agent


def update_agent(
    db: Session,
    agent: Agent,
    *,
    name: Optional[str] = None,
    rate_per_minute: Optional[Decimal] = None,
    status: Optional[AgentStatus] = None,
) -> Agent:
    """
    Change an agent's name, rate or status.

    There is no delete: historical calls keep pointing at the agent, so
    retiring it is a status change to inactive.
    """
    if name is not None:
        agent.name = name
    if rate_per_minute is not None:
        agent.rate_per_minute = _validated_rate(rate_per_minute)
    if status is not None:
        agent.status = status.value

    db.add(agent)
    db.commit()
    db.refresh(agent)

    logger.info(
        "Updated agent %s: rate=%s status=%s",
        agent.id,
        agent.rate_per_minute,
        agent.status,
    )
    return agent
