"""UserCreditBalance model: one running balance per user."""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String

from database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserCreditBalance(Base):
    """Current balance and lifetime counters. Mutated only by the credit ledger."""

    __tablename__ = "user_credit_balances"

    user_id = Column(String, primary_key=True)
    balance = Column(Integer, nullable=False, default=0)
    total_purchased = Column(Integer, nullable=False, default=0)
    total_used = Column(Integer, nullable=False, default=0)
    last_transaction_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
