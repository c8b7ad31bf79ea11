# callbilling/models/user_credit.py
from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Integer, String

from callbilling.models.base import Base, Money


class UserCredit(Base):
    """
    Prepaid credit balance, one row per user.

    Only the ledger service moves `current_balance`. `is_blocked` flips on
    when a debit exhausts the balance and off only through a credit.
    """

    __tablename__ = "user_credits"
    __table_args__ = (
        CheckConstraint("current_balance >= 0", name="balance_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, unique=True, index=True)
    company_id = Column(String(64), nullable=True, index=True)

    current_balance = Column(Money, nullable=False, default=0)
    warning_threshold = Column(Money, nullable=False, default=10)
    critical_threshold = Column(Money, nullable=False, default=2)

    is_blocked = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )
