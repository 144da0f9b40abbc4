"""CreditTransaction model: append-only credit ledger entries."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Index, Integer, String, Text

from database import Base


TRANSACTION_TYPES = (
    "signup_bonus",
    "purchase",
    "usage",
    "refund",
    "adjustment_add",
    "adjustment_remove",
)


class CreditTransaction(Base):
    """Immutable ledger entry; balance_after snapshots the running total."""

    __tablename__ = "credit_transactions"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, nullable=False, index=True)
    type = Column(String, nullable=False)
    amount = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=False)
    description = Column(Text, nullable=True)
    external_order_id = Column(String(256), nullable=True, unique=True)
    external_product_id = Column(String(256), nullable=True)
    generation_id = Column(String, nullable=True, index=True)
    performed_by_kind = Column(String, nullable=False, default="system")
    performed_by_id = Column(String, nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("ix_credit_transactions_user_created", "user_id", "created_at"),
        Index("ix_credit_transactions_type_created", "type", "created_at"),
    )
