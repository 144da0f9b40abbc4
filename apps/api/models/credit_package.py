"""CreditPackage model: purchasable credit bundles."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, Index, Integer, String

from database import Base


class CreditPackage(Base):
    """Catalog row mapping a payment product to a number of credits."""

    __tablename__ = "credit_packages"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(128), nullable=False)
    credits = Column(Integer, nullable=False)
    price_in_cents = Column(Integer, nullable=False)
    external_product_id = Column(String(256), nullable=True, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    sort_order = Column(Integer, nullable=False, default=0)
    metadata_json = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        Index("ix_credit_packages_active_order", "is_active", "sort_order"),
    )
