# callbilling/services/ownership.py
import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from callbilling.errors import AmbiguousOwnerError, OwnerNotFoundError
from callbilling.models.user_agent import UserAgent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Owner:
    user_id: str
    company_id: str


def resolve_owner(db: Session, agent_id: int) -> Owner:
    """
    Return the single (user, company) that pays for this agent's calls.

    - exactly one primary mapping wins
    - otherwise a lone mapping is accepted
    - zero mappings, or several with no single primary, fail closed

    No billing happens without a clear payer, so we never fall back to
    guessing from earlier calls.
    """
    mappings = (
        db.query(UserAgent)
        .filter(UserAgent.agent_id == agent_id)
        .order_by(UserAgent.id.asc())
        .all()
    )

    if not mappings:
        raise OwnerNotFoundError(
            f"No user mapping found for agent {agent_id}. "
            "Please ensure the agent is assigned to a user."
        )

    primaries = [m for m in mappings if m.is_primary]
    if len(primaries) == 1:
        chosen = primaries[0]
    elif len(primaries) > 1:
        raise AmbiguousOwnerError(
            f"Agent {agent_id} has {len(primaries)} primary owners; refusing to pick one"
        )
    elif len(mappings) == 1:
        chosen = mappings[0]
    else:
        raise AmbiguousOwnerError(
            f"Agent {agent_id} has {len(mappings)} owners and none is primary"
        )

    return Owner(user_id=chosen.user_id, company_id=chosen.company_id)


def assign_owner(
    db: Session,
    *,
    agent_id: int,
    user_id: str,
    company_id: str,
    is_primary: bool = False,
) -> UserAgent:
    """
    Create or update the mapping between a user and an agent.

    Marking a mapping primary clears the user's other primary flags, so a
    user never has more than one primary agent.
    """
    mapping = (
        db.query(UserAgent)
        .filter(UserAgent.user_id == user_id, UserAgent.agent_id == agent_id)
        .first()
    )
    if mapping is None:
        mapping = UserAgent(user_id=user_id, agent_id=agent_id)
        db.add(mapping)

    mapping.company_id = company_id
    mapping.is_primary = is_primary

    if is_primary:
        (
            db.query(UserAgent)
            .filter(
                UserAgent.user_id == user_id,
                UserAgent.agent_id != agent_id,
                UserAgent.is_primary.is_(True),
            )
            .update({UserAgent.is_primary: False}, synchronize_session=False)
        )

    db.commit()
    db.refresh(mapping)

    logger.info(
        "Assigned agent %s to user %s (company %s, primary=%s)",
        agent_id,
        user_id,
        company_id,
        is_primary,
    )
    return mapping
