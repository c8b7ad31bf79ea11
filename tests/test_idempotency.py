# tests/test_idempotency.py
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from callbilling.db.session import engine, SessionLocal
from callbilling.models import Agent, Base, Call, CreditTransaction, UserAgent, UserCredit
from callbilling.models.credit_transaction import TransactionType
from callbilling.services.billing_service import CHARGED, DUPLICATE, bill_call
from callbilling.services.call_mapper import CallRecord
from callbilling.services.idempotency import claim_call_charge, find_call, upsert_call_record
from callbilling.services.transaction_recorder import record_transaction


def _clean_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)


def _seed(db, balance="1.00"):
    agent = Agent(external_id="agent_ext_1", name="A", rate_per_minute=Decimal("0.20"))
    db.add(agent)
    db.commit()
    db.add(UserAgent(user_id="user-1", company_id="company-1", agent_id=agent.id, is_primary=True))
    db.add(UserCredit(user_id="user-1", company_id="company-1", current_balance=Decimal(balance)))
    db.commit()
    return agent


def _record(agent, event="call_ended", duration_sec=90, status="completed", **extra):
    return CallRecord(
        call_id="call-1",
        event=event,
        user_id="user-1",
        company_id="company-1",
        agent_id=agent.id,
        duration_sec=duration_sec,
        cost=Decimal(duration_sec) / 60 * Decimal("0.20"),
        status=status,
        **extra,
    )


def test_upsert_creates_then_merges():
    _clean_db()
    db = SessionLocal()
    try:
        agent = _seed(db)

        call, created = upsert_call_record(db, _record(agent, "call_started", 0, "in_progress"))
        assert created is True
        assert call.status == "in_progress"
        assert call.from_number == "unknown"

        call, created = upsert_call_record(db, _record(agent, from_number="+15551234567"))
        assert created is False
        assert call.status == "completed"
        assert call.duration_sec == 90
        assert call.from_number == "+15551234567"

        assert db.query(Call).count() == 1
    finally:
        db.close()


def test_billed_cost_is_frozen():
    _clean_db()
    db = SessionLocal()
    try:
        agent = _seed(db)
        call, _ = upsert_call_record(db, _record(agent))
        assert bill_call(db, call).status == CHARGED

        # a redelivery with different timing must not rewrite what was charged
        call, _ = upsert_call_record(db, _record(agent, duration_sec=300))
        assert call.duration_sec == 90
        assert call.cost == Decimal("0.3000")
    finally:
        db.close()


def test_claim_call_charge_is_compare_and_set():
    _clean_db()
    db = SessionLocal()
    try:
        agent = _seed(db)
        upsert_call_record(db, _record(agent))

        assert claim_call_charge(db, "call-1", Decimal("0.30"), Decimal("0.70")) is True
        db.commit()
        assert claim_call_charge(db, "call-1", Decimal("0.30"), Decimal("0.40")) is False
        db.rollback()

        db.expire_all()
        call = find_call(db, "call-1")
        assert call.charged_amount == Decimal("0.3000")
        assert call.balance_after_charge == Decimal("0.7000")
    finally:
        db.close()


def test_losing_the_claim_rolls_back_the_debit():
    _clean_db()
    db = SessionLocal()
    try:
        agent = _seed(db)
        call, _ = upsert_call_record(db, _record(agent))
        assert call.billed_at is None

        # another worker claims the call after we loaded it
        other = SessionLocal()
        try:
            assert claim_call_charge(other, "call-1", Decimal("0.30"), Decimal("0.70")) is True
            other.commit()
        finally:
            other.close()

        outcome = bill_call(db, call)

        assert outcome.status == DUPLICATE
        db.expire_all()
        balance = db.query(UserCredit).filter(UserCredit.user_id == "user-1").one().current_balance
        assert balance == Decimal("1.0000")
        assert db.query(CreditTransaction).count() == 0
    finally:
        db.close()


def test_one_call_charge_per_call_id_at_storage_level():
    _clean_db()
    db = SessionLocal()
    try:
        for _ in range(2):
            db.add(
                CreditTransaction(
                    user_id="user-1",
                    amount=Decimal("-0.30"),
                    transaction_type=TransactionType.CALL_CHARGE.value,
                    call_id="call-1",
                    balance_after=Decimal("0.70"),
                )
            )
        with pytest.raises(IntegrityError):
            db.commit()
        db.rollback()

        # other transaction types may share a call id
        for kind in (TransactionType.ADJUSTMENT, TransactionType.ADJUSTMENT):
            db.add(
                CreditTransaction(
                    user_id="user-1",
                    amount=Decimal("0.30"),
                    transaction_type=kind.value,
                    call_id="call-1",
                    balance_after=Decimal("1.00"),
                )
            )
        db.commit()
        assert db.query(CreditTransaction).count() == 2
    finally:
        db.close()


def test_record_transaction_failure_returns_none():
    _clean_db()
    db = SessionLocal()
    try:
        kwargs = dict(
            user_id="user-1",
            company_id="company-1",
            amount=Decimal("-0.30"),
            transaction_type=TransactionType.CALL_CHARGE,
            description="Call charge for call-1 (90s)",
            balance_after=Decimal("0.70"),
            call_id="call-1",
        )
        assert record_transaction(db, **kwargs) is not None
        # second insert trips the unique index; recorder logs and carries on
        assert record_transaction(db, **kwargs) is None
        assert db.query(CreditTransaction).count() == 1
    finally:
        db.close()
