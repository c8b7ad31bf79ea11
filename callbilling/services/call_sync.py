# callbilling/services/call_sync.py
"""
Pull-side recovery: fetch calls and agents from the provider's API.

Webhooks can be lost. Calls pulled here go through the same
normalize -> upsert -> bill path as a webhook delivery, so a call that
was already charged through its webhook is reported as a duplicate and
never charged again.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from callbilling.errors import LedgerError, PayloadValidationError, ProviderError, ResolutionError
from callbilling.models.agent import Agent, AgentStatus
from callbilling.schemas.webhook import parse_webhook_event
from callbilling.services.agent_directory import create_agent, update_agent
from callbilling.services.billing_service import CHARGED, DUPLICATE, bill_call
from callbilling.services.call_mapper import normalize_call_event
from callbilling.services.idempotency import upsert_call_record
from callbilling.services.ownership import Owner, resolve_owner

logger = logging.getLogger(__name__)

BATCH_SIZE = 50
# Stops a misbehaving paginator from looping forever
MAX_CALLS_PER_AGENT = 1000
AGENT_PAGE_LIMIT = 100

# Provider call_status -> the webhook event it is equivalent to
_EVENT_FOR_STATUS = {
    "registered": "call_started",
    "ongoing": "call_started",
    "ended": "call_ended",
    "error": "call_ended",
    "not_connected": "call_ended",
}


@dataclass
class SyncReport:
    agents_found: int = 0
    agents_processed: int = 0
    calls_seen: int = 0
    calls_created: int = 0
    charged: int = 0
    duplicates: int = 0
    skipped: int = 0
    total_amount: Decimal = Decimal("0")
    skipped_agents: List[Dict[str, str]] = field(default_factory=list)
    failures: List[Dict[str, str]] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "agents_found": self.agents_found,
            "agents_processed": self.agents_processed,
            "calls_seen": self.calls_seen,
            "calls_created": self.calls_created,
            "charged": self.charged,
            "duplicates": self.duplicates,
            "skipped": self.skipped,
            "total_amount": float(self.total_amount),
            "skipped_agents": self.skipped_agents,
            "failures": self.failures,
        }


@dataclass
class AgentSyncReport:
    agents_fetched: int = 0
    created: int = 0
    updated: int = 0
    deactivated: int = 0


def _as_webhook_body(raw: Dict[str, Any], external_agent_id: str) -> Optional[Dict[str, Any]]:
    event_name = _EVENT_FOR_STATUS.get(str(raw.get("call_status") or "").lower())
    if event_name is None:
        return None

    call = dict(raw)
    call.setdefault("agent_id", external_agent_id)
    # list-calls reports whole seconds under a different key
    if call.get("duration") is None and call.get("duration_sec") is not None:
        call["duration"] = call["duration_sec"]
    return {"event": event_name, "call": call}


def _sync_call(db: Session, raw: Any, agent: Agent, owner: Owner, report: SyncReport) -> None:
    if not isinstance(raw, dict):
        report.failures.append({"call_id": "unknown", "reason": "call entry is not an object"})
        return

    call_id = str(raw.get("call_id") or "unknown")
    external_agent_id = agent.external_id

    if raw.get("agent_id") not in (None, external_agent_id):
        logger.warning("Call %s belongs to agent %s, not %s; skipping", call_id, raw["agent_id"], external_agent_id)
        report.skipped += 1
        return

    body = _as_webhook_body(raw, external_agent_id)
    if body is None:
        logger.info("Call %s has unrecognized status %r; skipping", call_id, raw.get("call_status"))
        report.skipped += 1
        return

    try:
        event = parse_webhook_event(body)
    except PayloadValidationError as exc:
        report.failures.append({"call_id": call_id, "reason": exc.message})
        return

    record = normalize_call_event(event, agent, owner)
    try:
        call, created = upsert_call_record(db, record)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Failed to save synced call %s: %s", call_id, exc)
        report.failures.append({"call_id": call_id, "reason": "could not save call record"})
        return

    if created:
        report.calls_created += 1

    if not event.is_billable or call.duration_sec <= 0 or call.cost <= 0:
        report.skipped += 1
        return

    try:
        outcome = bill_call(db, call)
    except LedgerError as exc:
        logger.error("Billing failed for synced call %s (%s): %s", call_id, exc.error_type, exc.message)
        report.failures.append({"call_id": call_id, "reason": exc.message})
        return

    if outcome.status == CHARGED:
        report.charged += 1
        report.total_amount += outcome.amount
    elif outcome.status == DUPLICATE:
        report.duplicates += 1
    else:
        report.skipped += 1


def sync_provider_calls(
    db: Session,
    client,
    *,
    batch_size: int = BATCH_SIZE,
    max_calls_per_agent: int = MAX_CALLS_PER_AGENT,
) -> SyncReport:
    """
    Fetch every active agent's calls from the provider and store/bill them.

    Agents without a clear owner are skipped as a whole. A provider error
    on one agent is reported and the run moves on to the next agent.
    """
    report = SyncReport()
    agents = (
        db.query(Agent)
        .filter(Agent.status == AgentStatus.ACTIVE.value)
        .order_by(Agent.id.asc())
        .all()
    )
    report.agents_found = len(agents)

    for agent in agents:
        external_id = agent.external_id
        try:
            owner = resolve_owner(db, agent.id)
        except ResolutionError as exc:
            logger.warning("Skipping sync for agent %s: %s", external_id, exc.message)
            report.skipped_agents.append({"agent_id": external_id, "reason": exc.message})
            continue

        fetched = 0
        page_token = None
        try:
            while fetched < max_calls_per_agent:
                page = client.list_calls(agent_id=external_id, limit=batch_size, page_token=page_token)
                calls = page.get("calls") or []
                logger.info("Fetched %d calls for agent %s", len(calls), external_id)

                for raw in calls[: max_calls_per_agent - fetched]:
                    fetched += 1
                    report.calls_seen += 1
                    _sync_call(db, raw, agent, owner, report)

                page_token = page.get("next_page_token")
                if not calls or not page.get("has_more") or not page_token:
                    break
        except ProviderError as exc:
            logger.error("Provider error while syncing agent %s: %s", external_id, exc.message)
            report.failures.append({"agent_id": external_id, "reason": exc.message})
            continue

        if fetched >= max_calls_per_agent:
            logger.warning("Stopped syncing agent %s after %d calls", external_id, fetched)
        report.agents_processed += 1

    logger.info(
        "Call sync finished: %d calls seen, %d created, %d charged, %d duplicates",
        report.calls_seen,
        report.calls_created,
        report.charged,
        report.duplicates,
    )
    return report


def sync_provider_agents(db: Session, client, *, limit: int = AGENT_PAGE_LIMIT) -> AgentSyncReport:
    """
    Mirror the provider's agent registry.

    New agents are created inactive at a zero rate: an administrator sets
    the rate and an owner before they bill anything. Active agents the
    provider no longer lists are deactivated, but only when the listing
    came back complete.
    """
    fetched = client.list_agents(limit=limit)
    report = AgentSyncReport(agents_fetched=len(fetched))
    seen = set()

    for item in fetched:
        external_id = str(item.get("agent_id") or "").strip()
        if not external_id:
            continue
        seen.add(external_id)
        name = item.get("agent_name") or external_id

        agent = db.query(Agent).filter(Agent.external_id == external_id).first()
        if agent is None:
            create_agent(
                db,
                external_id=external_id,
                name=name,
                rate_per_minute=Decimal("0"),
                status=AgentStatus.INACTIVE,
            )
            report.created += 1
        elif agent.name != name:
            update_agent(db, agent, name=name)
            report.updated += 1

    if len(fetched) < limit:
        stale = (
            db.query(Agent)
            .filter(Agent.status == AgentStatus.ACTIVE.value, Agent.external_id.not_in(list(seen)))
            .all()
        )
        for agent in stale:
            update_agent(db, agent, status=AgentStatus.INACTIVE)
            report.deactivated += 1
    else:
        logger.warning("Agent listing hit the page limit (%d); not deactivating anything", limit)

    logger.info(
        "Agent sync finished: %d fetched, %d created, %d updated, %d deactivated",
        report.agents_fetched,
        report.created,
        report.updated,
        report.deactivated,
    )
    return report
