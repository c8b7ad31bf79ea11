# tests/conftest.py
import os

# Must be set before anything imports callbilling.config
os.environ["DATABASE_URL"] = "sqlite:///./test_callbilling.db"
os.environ.setdefault("WEBHOOK_SECRET", "test-webhook-secret")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")

from decimal import Decimal

import pytest

from callbilling.db.session import SessionLocal, engine
from callbilling.models import Base, UserCredit
from callbilling.services.agent_directory import create_agent
from callbilling.services.credit_ledger import open_credit_account
from callbilling.services.ownership import assign_owner


@pytest.fixture
def db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)

    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def seed_billing(db):
    """
    Agent + primary owner + credit account, the minimum a call needs to be
    billed. Returns the agent.
    """

    def _seed(
        external_id: str = "agent_ext_1",
        rate: str = "0.20",
        user_id: str = "user-1",
        company_id: str = "company-1",
        balance: str = "1.00",
        blocked: bool = False,
    ):
        agent = create_agent(
            db,
            external_id=external_id,
            name=f"Agent {external_id}",
            rate_per_minute=Decimal(rate),
        )
        assign_owner(db, agent_id=agent.id, user_id=user_id, company_id=company_id, is_primary=True)
        open_credit_account(db, user_id=user_id, company_id=company_id, initial_balance=Decimal(balance))
        if blocked:
            account = db.query(UserCredit).filter(UserCredit.user_id == user_id).one()
            account.is_blocked = True
            db.commit()
        return agent

    return _seed
