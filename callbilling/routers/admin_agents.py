# callbilling/routers/admin_agents.py
from decimal import Decimal
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from callbilling.db.session import get_db
from callbilling.dependencies.auth import AdminContext, require_admin
from callbilling.errors import ProviderError, ResolutionError
from callbilling.models.agent import Agent, AgentStatus
from callbilling.services.agent_directory import create_agent, get_agent, update_agent
from callbilling.services.call_sync import sync_provider_agents
from callbilling.services.ownership import assign_owner, resolve_owner
from callbilling.services.provider_client import ProviderClient, get_provider_client

router = APIRouter(prefix="/admin/agents", tags=["admin-agents"])


class AgentCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    external_id: str = Field(alias="externalId", min_length=1)
    name: str = Field(min_length=1)
    rate_per_minute: Decimal = Field(alias="ratePerMinute", ge=0)
    status: AgentStatus = AgentStatus.ACTIVE


class AgentUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    rate_per_minute: Optional[Decimal] = Field(default=None, alias="ratePerMinute", ge=0)
    status: Optional[AgentStatus] = None


class OwnerAssignRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId", min_length=1)
    company_id: str = Field(alias="companyId", min_length=1)
    is_primary: bool = Field(default=False, alias="isPrimary")


def _agent_dict(agent: Agent) -> Dict[str, Any]:
    return {
        "id": agent.id,
        "external_id": agent.external_id,
        "name": agent.name,
        "status": agent.status,
        "rate_per_minute": float(agent.rate_per_minute),
    }


def _load_agent(db: Session, agent_id: int) -> Agent:
    agent = get_agent(db, agent_id)
    if not agent:
        raise HTTPException(status_code=404, detail="Agent not found")
    return agent


@router.post("")
def register_agent(
    payload: AgentCreateRequest,
    db: Session = Depends(get_db),
    admin: AdminContext = Depends(require_admin),
) -> Dict[str, Any]:
    try:
        agent = create_agent(
            db,
            external_id=payload.external_id,
            name=payload.name,
            rate_per_minute=payload.rate_per_minute,
            status=payload.status,
        )
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _agent_dict(agent)


@router.patch("/{agent_id}")
def change_agent(
    agent_id: int,
    payload: AgentUpdateRequest,
    db: Session = Depends(get_db),
    admin: AdminContext = Depends(require_admin),
) -> Dict[str, Any]:
    """Rate and status changes; agents are retired, never deleted."""
    agent = _load_agent(db, agent_id)
    try:
        agent = update_agent(
            db,
            agent,
            name=payload.name,
            rate_per_minute=payload.rate_per_minute,
            status=payload.status,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _agent_dict(agent)


@router.post("/{agent_id}/owners")
def add_agent_owner(
    agent_id: int,
    payload: OwnerAssignRequest,
    db: Session = Depends(get_db),
    admin: AdminContext = Depends(require_admin),
) -> Dict[str, Any]:
    _load_agent(db, agent_id)
    mapping = assign_owner(
        db,
        agent_id=agent_id,
        user_id=payload.user_id,
        company_id=payload.company_id,
        is_primary=payload.is_primary,
    )
    return {
        "id": mapping.id,
        "agent_id": mapping.agent_id,
        "user_id": mapping.user_id,
        "company_id": mapping.company_id,
        "is_primary": mapping.is_primary,
    }


@router.get("/{agent_id}/owner")
def get_billing_owner(
    agent_id: int,
    db: Session = Depends(get_db),
    admin: AdminContext = Depends(require_admin),
) -> Dict[str, Any]:
    """Who would be charged for this agent's next call."""
    _load_agent(db, agent_id)
    try:
        owner = resolve_owner(db, agent_id)
    except ResolutionError as e:
        raise HTTPException(status_code=409, detail=e.message)
    return {"agent_id": agent_id, "user_id": owner.user_id, "company_id": owner.company_id}


@router.post("/sync")
def sync_agents_from_provider(
    db: Session = Depends(get_db),
    admin: AdminContext = Depends(require_admin),
    provider: ProviderClient = Depends(get_provider_client),
) -> Dict[str, int]:
    try:
        report = sync_provider_agents(db, provider)
    except ProviderError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    return {
        "agents_fetched": report.agents_fetched,
        "created": report.created,
        "updated": report.updated,
        "deactivated": report.deactivated,
    }
