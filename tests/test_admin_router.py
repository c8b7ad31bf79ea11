# tests/test_admin_router.py
import os
from decimal import Decimal

from fastapi.testclient import TestClient

from callbilling.main import app
from callbilling.models import Agent, CreditTransaction, UserAgent, UserCredit

client = TestClient(app)

ADMIN_HEADERS = {"X-Admin-Key": os.environ["ADMIN_API_KEY"], "X-Admin-User": "ops@example.com"}


def _balance(db, user_id="user-1"):
    db.expire_all()
    return db.query(UserCredit).filter(UserCredit.user_id == user_id).one().current_balance


def test_admin_endpoints_require_key(db):
    resp = client.get("/admin/credits/user-1")
    assert resp.status_code == 401

    resp = client.get("/admin/credits/user-1", headers={"X-Admin-Key": "wrong"})
    assert resp.status_code == 403


def test_open_account_and_read_balance(db):
    resp = client.post(
        "/admin/credits/accounts",
        json={"userId": "user-1", "companyId": "company-1", "initialBalance": "25.00"},
        headers=ADMIN_HEADERS,
    )
    assert resp.status_code == 200
    assert resp.json()["current_balance"] == 25.0

    resp = client.get("/admin/credits/user-1", headers=ADMIN_HEADERS)
    assert resp.status_code == 200
    body = resp.json()
    assert body["company_id"] == "company-1"
    assert body["is_blocked"] is False
    assert body["warning_threshold"] == 10.0

    # second open for the same user conflicts
    resp = client.post("/admin/credits/accounts", json={"userId": "user-1"}, headers=ADMIN_HEADERS)
    assert resp.status_code == 409


def test_get_missing_account_is_404(db):
    resp = client.get("/admin/credits/nobody", headers=ADMIN_HEADERS)
    assert resp.status_code == 404


def test_adjust_positive_adds_credit_and_unblocks(db, seed_billing):
    seed_billing(balance="0", blocked=True)

    resp = client.post(
        "/admin/credits/adjust",
        json={"userId": "user-1", "companyId": "company-1", "amount": "10.00"},
        headers=ADMIN_HEADERS,
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["new_balance"] == 10.0
    assert body["is_blocked"] is False
    assert body["transaction_id"] is not None
    assert "Added $10.00" in body["message"]

    txn = db.get(CreditTransaction, body["transaction_id"])
    assert txn.transaction_type == "admin_credit"
    assert txn.amount == Decimal("10.0000")
    assert txn.created_by == "ops@example.com"


def test_adjust_negative_debits(db, seed_billing):
    seed_billing(balance="5.00")

    resp = client.post(
        "/admin/credits/adjust",
        json={"userId": "user-1", "companyId": "company-1", "amount": -2, "description": "Refund reversal"},
        headers=ADMIN_HEADERS,
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["new_balance"] == 3.0
    assert "Deducted $2.00" in body["message"]
    assert _balance(db) == Decimal("3.0000")

    txn = db.get(CreditTransaction, body["transaction_id"])
    assert txn.transaction_type == "admin_debit"
    assert txn.amount == Decimal("-2.0000")
    assert txn.description == "Refund reversal"
    assert txn.balance_after == Decimal("3.0000")


def test_adjust_entries_use_the_account_company(db, seed_billing):
    seed_billing(balance="5.00", company_id="company-1")

    for amount in (-2, 4):
        resp = client.post(
            "/admin/credits/adjust",
            json={"userId": "user-1", "companyId": "company-other", "amount": amount},
            headers=ADMIN_HEADERS,
        )
        assert resp.status_code == 200
        txn = db.get(CreditTransaction, resp.json()["transaction_id"])
        assert txn.company_id == "company-1"


def test_adjust_zero_is_rejected(db, seed_billing):
    seed_billing()

    resp = client.post(
        "/admin/credits/adjust",
        json={"userId": "user-1", "companyId": "company-1", "amount": 0},
        headers=ADMIN_HEADERS,
    )
    assert resp.status_code == 400


def test_adjust_debit_on_blocked_account_conflicts(db, seed_billing):
    seed_billing(balance="0", blocked=True)

    resp = client.post(
        "/admin/credits/adjust",
        json={"userId": "user-1", "companyId": "company-1", "amount": -1},
        headers=ADMIN_HEADERS,
    )
    assert resp.status_code == 409
    assert _balance(db) == Decimal("0")


def test_adjust_unknown_user_is_404(db):
    resp = client.post(
        "/admin/credits/adjust",
        json={"userId": "nobody", "companyId": "company-1", "amount": 5},
        headers=ADMIN_HEADERS,
    )
    assert resp.status_code == 404


def test_transaction_history_newest_first(db, seed_billing):
    seed_billing(balance="5.00")
    client.post(
        "/admin/credits/adjust",
        json={"userId": "user-1", "companyId": "company-1", "amount": -1},
        headers=ADMIN_HEADERS,
    )

    resp = client.get("/admin/credits/user-1/transactions", headers=ADMIN_HEADERS)

    assert resp.status_code == 200
    types = [t["transaction_type"] for t in resp.json()["transactions"]]
    assert types == ["admin_debit", "deposit"]


def test_register_agent_and_assign_owner(db):
    resp = client.post(
        "/admin/agents",
        json={"externalId": "agent_ext_9", "name": "Sales bot", "ratePerMinute": "0.15"},
        headers=ADMIN_HEADERS,
    )
    assert resp.status_code == 200
    agent_id = resp.json()["id"]
    assert resp.json()["status"] == "active"
    assert resp.json()["rate_per_minute"] == 0.15

    resp = client.post(
        "/admin/agents",
        json={"externalId": "agent_ext_9", "name": "Dup", "ratePerMinute": "0.15"},
        headers=ADMIN_HEADERS,
    )
    assert resp.status_code == 409

    resp = client.post(
        f"/admin/agents/{agent_id}/owners",
        json={"userId": "user-1", "companyId": "company-1", "isPrimary": True},
        headers=ADMIN_HEADERS,
    )
    assert resp.status_code == 200
    assert db.query(UserAgent).filter(UserAgent.agent_id == agent_id).count() == 1

    resp = client.get(f"/admin/agents/{agent_id}/owner", headers=ADMIN_HEADERS)
    assert resp.status_code == 200
    assert resp.json()["user_id"] == "user-1"


def test_negative_agent_rate_is_rejected(db):
    resp = client.post(
        "/admin/agents",
        json={"externalId": "agent_ext_9", "name": "Bad", "ratePerMinute": "-1"},
        headers=ADMIN_HEADERS,
    )
    assert resp.status_code == 422
    assert db.query(Agent).count() == 0


def test_retire_agent(db, seed_billing):
    agent = seed_billing()

    resp = client.patch(
        f"/admin/agents/{agent.id}",
        json={"status": "inactive", "ratePerMinute": "0.30"},
        headers=ADMIN_HEADERS,
    )

    assert resp.status_code == 200
    assert resp.json()["status"] == "inactive"
    assert resp.json()["rate_per_minute"] == 0.3


def test_patch_unknown_agent_is_404(db):
    resp = client.patch("/admin/agents/999", json={"name": "x"}, headers=ADMIN_HEADERS)
    assert resp.status_code == 404


def test_owner_lookup_without_mapping_conflicts(db):
    resp = client.post(
        "/admin/agents",
        json={"externalId": "agent_ext_9", "name": "Lonely", "ratePerMinute": "0.10"},
        headers=ADMIN_HEADERS,
    )
    agent_id = resp.json()["id"]

    resp = client.get(f"/admin/agents/{agent_id}/owner", headers=ADMIN_HEADERS)
    assert resp.status_code == 409
