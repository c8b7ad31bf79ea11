# tests/test_reconciliation.py
import os
from datetime import datetime
from decimal import Decimal

from fastapi.testclient import TestClient

from callbilling.main import app
from callbilling.models import Call, CreditTransaction, UserCredit
from callbilling.services.reconciliation import (
    backfill_unbilled_calls,
    find_unbilled_calls,
    reconcile_missing_transactions,
)

client = TestClient(app)


def _unbilled_call(db, agent, call_id="call-1", duration_sec=90, cost=Decimal("0"), status="completed"):
    call = Call(
        call_id=call_id,
        user_id="user-1",
        company_id="company-1",
        agent_id=agent.id,
        duration_sec=duration_sec,
        cost=cost,
        status=status,
    )
    db.add(call)
    db.commit()
    return call


def _charges(db):
    db.expire_all()
    return db.query(CreditTransaction).filter(CreditTransaction.transaction_type == "call_charge").all()


def _balance(db):
    db.expire_all()
    return db.query(UserCredit).filter(UserCredit.user_id == "user-1").one().current_balance


def test_find_unbilled_calls_only_returns_completed_with_duration(db, seed_billing):
    agent = seed_billing()
    _unbilled_call(db, agent, call_id="done")
    _unbilled_call(db, agent, call_id="silent", duration_sec=0)
    _unbilled_call(db, agent, call_id="live", status="in_progress")

    assert [c.call_id for c in find_unbilled_calls(db)] == ["done"]


def test_backfill_prices_and_charges_unbilled_calls(db, seed_billing):
    agent = seed_billing(rate="0.20", balance="1.00")
    _unbilled_call(db, agent)

    report = backfill_unbilled_calls(db)

    assert report.examined == 1
    assert report.charged == 1
    assert report.total_amount == Decimal("0.3000")
    assert report.failures == []
    assert _balance(db) == Decimal("0.7000")

    charges = _charges(db)
    assert len(charges) == 1
    assert charges[0].call_id == "call-1"
    assert db.query(Call).filter(Call.call_id == "call-1").one().cost == Decimal("0.3000")

    # nothing left on a second run
    again = backfill_unbilled_calls(db)
    assert again.examined == 0
    assert len(_charges(db)) == 1


def test_backfill_dry_run_changes_nothing(db, seed_billing):
    agent = seed_billing(rate="0.20", balance="1.00")
    _unbilled_call(db, agent)

    report = backfill_unbilled_calls(db, dry_run=True)

    assert report.dry_run is True
    assert report.charged == 1
    assert report.total_amount == Decimal("0.3000")
    assert _charges(db) == []
    assert _balance(db) == Decimal("1.0000")


def test_backfill_reports_blocked_accounts(db, seed_billing):
    agent = seed_billing(balance="0", blocked=True)
    _unbilled_call(db, agent)

    report = backfill_unbilled_calls(db)

    assert report.charged == 0
    assert len(report.failures) == 1
    assert report.failures[0]["call_id"] == "call-1"
    assert _charges(db) == []


def test_reconcile_writes_missing_charge_entries(db, seed_billing):
    agent = seed_billing(balance="0.70")
    call = _unbilled_call(db, agent, cost=Decimal("0.30"))
    # debited and claimed, but the ledger entry never landed
    call.billed_at = datetime.utcnow()
    call.charged_amount = Decimal("0.30")
    call.balance_after_charge = Decimal("0.70")
    db.commit()

    assert reconcile_missing_transactions(db) == 1

    charges = _charges(db)
    assert len(charges) == 1
    assert charges[0].amount == Decimal("-0.3000")
    assert charges[0].balance_after == Decimal("0.7000")
    assert "[reconciled]" in charges[0].description
    # balance is untouched
    assert _balance(db) == Decimal("0.7000")

    assert reconcile_missing_transactions(db) == 0


def test_admin_backfill_endpoint(db, seed_billing):
    agent = seed_billing(rate="0.20", balance="1.00")
    _unbilled_call(db, agent)

    resp = client.post(
        "/admin/billing/backfill",
        json={"dryRun": False},
        headers={"X-Admin-Key": os.environ["ADMIN_API_KEY"]},
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["charged"] == 1
    assert body["total_amount"] == 0.3
    assert _balance(db) == Decimal("0.7000")

    resp = client.post("/admin/billing/reconcile", headers={"X-Admin-Key": os.environ["ADMIN_API_KEY"]})
    assert resp.status_code == 200
    assert resp.json() == {"reconciled": 0}
