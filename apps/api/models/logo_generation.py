"""LogoGeneration model for image generation requests."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Index, Integer, String, Text

from database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LogoGeneration(Base):
    """Lifecycle record of one generation request."""

    __tablename__ = "logo_generations"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, nullable=True)
    app_name = Column(Text, nullable=False)
    app_focus = Column(Text, nullable=False)
    color1 = Column(String(64), nullable=False)
    color2 = Column(String(64), nullable=False)
    model = Column(String(64), nullable=False)
    output_count = Column(Integer, nullable=False, default=1)
    credits_charged = Column(Integer, nullable=False, default=1)
    prompt = Column(Text, nullable=False)
    status = Column(String(20), nullable=False, default="queued")  # queued, running, succeeded, failed
    provider_request_id = Column(String(128), nullable=True, index=True)
    images = Column(JSON, nullable=False, default=list)
    provider_response = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        Index("ix_logo_generations_user_created", "user_id", "created_at"),
        Index("ix_logo_generations_status", "status"),
    )
