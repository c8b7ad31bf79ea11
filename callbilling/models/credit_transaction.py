# callbilling/models/credit_transaction.py
from datetime import datetime
from enum import Enum

from sqlalchemy import Column, DateTime, Index, Integer, String, Text, text

from callbilling.models.base import Base, Money


class TransactionType(str, Enum):
    CALL_CHARGE = "call_charge"
    ADMIN_CREDIT = "admin_credit"
    ADMIN_DEBIT = "admin_debit"
    ADJUSTMENT = "adjustment"
    DEPOSIT = "deposit"


_ONE_CHARGE_PER_CALL = "transaction_type = 'call_charge'"


class CreditTransaction(Base):
    """
    Append-only ledger entry for a single balance change.

    `amount` is signed: negative for debits, positive for credits.
    `balance_after` snapshots the balance right after the change.
    """

    __tablename__ = "credit_transactions"
    __table_args__ = (
        # A call may be charged at most once
        Index(
            "uq_call_charge_per_call",
            "call_id",
            unique=True,
            sqlite_where=text(_ONE_CHARGE_PER_CALL),
            postgresql_where=text(_ONE_CHARGE_PER_CALL),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)

    user_id = Column(String(64), nullable=False, index=True)
    company_id = Column(String(64), nullable=True, index=True)

    amount = Column(Money, nullable=False)
    transaction_type = Column(String(32), nullable=False, index=True)
    description = Column(Text, nullable=True)

    # Provider call id for call charges
    call_id = Column(String(128), nullable=True, index=True)

    balance_after = Column(Money, nullable=False)
    created_by = Column(String(64), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
