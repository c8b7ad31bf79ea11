# callbilling/services/reconciliation.py
"""
Manual repair paths for the billing pipeline.

Nothing here runs on its own: an administrator triggers it through the
admin API or `scripts/backfill_charges.py`.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from callbilling.errors import LedgerError
from callbilling.models.call import Call, CallStatus
from callbilling.models.credit_transaction import CreditTransaction, TransactionType
from callbilling.services.billing_service import CHARGED, DUPLICATE, bill_call
from callbilling.services.pricing import calculate_call_cost
from callbilling.services.transaction_recorder import record_transaction

logger = logging.getLogger(__name__)


@dataclass
class BackfillReport:
    dry_run: bool = False
    examined: int = 0
    charged: int = 0
    duplicates: int = 0
    skipped: int = 0
    total_amount: Decimal = Decimal("0")
    failures: List[Dict[str, str]] = field(default_factory=list)


def _charged_call_ids():
    return select(CreditTransaction.call_id).where(
        CreditTransaction.transaction_type == TransactionType.CALL_CHARGE.value,
        CreditTransaction.call_id.isnot(None),
    )


def find_unbilled_calls(db: Session, limit: Optional[int] = None) -> List[Call]:
    """Completed calls with talk time that were never charged, oldest first."""
    query = (
        db.query(Call)
        .filter(
            Call.status == CallStatus.COMPLETED.value,
            Call.duration_sec > 0,
            Call.billed_at.is_(None),
            Call.call_id.not_in(_charged_call_ids()),
        )
        .order_by(Call.created_at.asc(), Call.id.asc())
    )
    if limit is not None:
        query = query.limit(limit)
    return query.all()


def backfill_unbilled_calls(
    db: Session,
    *,
    limit: Optional[int] = None,
    dry_run: bool = False,
) -> BackfillReport:
    """
    Replay unbilled calls through the normal cost-and-debit path.

    Calls stored without a cost are priced at their agent's current rate.
    The same idempotency guards as the webhook apply, so running this
    twice, or alongside live traffic, cannot double-charge.
    """
    report = BackfillReport(dry_run=dry_run)

    for call in find_unbilled_calls(db, limit=limit):
        report.examined += 1
        call_id = call.call_id

        amount = call.cost
        if not amount or amount <= 0:
            if call.agent is None:
                report.skipped += 1
                report.failures.append({"call_id": call_id, "reason": "call has no agent to price it"})
                continue
            amount = calculate_call_cost(call.duration_sec, call.agent.rate_per_minute)

        if amount <= 0:
            report.skipped += 1
            continue

        if dry_run:
            report.charged += 1
            report.total_amount += amount
            continue

        if call.cost != amount:
            call.cost = amount
            db.commit()

        try:
            outcome = bill_call(db, call, amount=amount)
        except LedgerError as exc:
            logger.warning("Backfill could not charge call %s: %s", call_id, exc.message)
            report.failures.append({"call_id": call_id, "reason": exc.message})
            continue

        if outcome.status == CHARGED:
            report.charged += 1
            report.total_amount += amount
        elif outcome.status == DUPLICATE:
            report.duplicates += 1
        else:
            report.skipped += 1

    logger.info(
        "Backfill finished (dry_run=%s): examined=%d charged=%d duplicates=%d failed=%d",
        dry_run,
        report.examined,
        report.charged,
        report.duplicates,
        len(report.failures),
    )
    return report


def reconcile_missing_transactions(db: Session) -> int:
    """
    Write the call_charge entry for calls that were debited but whose
    transaction insert failed afterwards.

    Uses the amount and balance snapshot stored with the billing claim.
    Returns how many entries were written.
    """
    orphans = (
        db.query(Call)
        .filter(
            Call.billed_at.isnot(None),
            Call.call_id.not_in(_charged_call_ids()),
        )
        .order_by(Call.billed_at.asc())
        .all()
    )

    written = 0
    for call in orphans:
        txn = record_transaction(
            db,
            user_id=call.user_id,
            company_id=call.company_id,
            amount=-call.charged_amount,
            transaction_type=TransactionType.CALL_CHARGE,
            description=f"Call charge for {call.call_id} ({call.duration_sec}s) [reconciled]",
            balance_after=call.balance_after_charge,
            call_id=call.call_id,
        )
        if txn is not None:
            written += 1

    if orphans:
        logger.info("Reconciled %d of %d missing call charge transactions", written, len(orphans))
    return written
