"""Persistence for logo generation lifecycle records."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.logo_generation import LogoGeneration
from services.errors import PersistenceError

logger = logging.getLogger(__name__)

GENERATION_STATUSES = ("queued", "running", "succeeded", "failed")
TERMINAL_STATUSES = frozenset({"succeeded", "failed"})
_STATUS_RANK = {"queued": 0, "running": 1, "succeeded": 2, "failed": 2}


def is_forward_transition(current: Optional[str], target: str) -> bool:
    """Status only moves queued -> running -> succeeded|failed."""
    if current in TERMINAL_STATUSES:
        return target == current
    return _STATUS_RANK.get(target, 0) >= _STATUS_RANK.get(current or "queued", 0)


def serialize_generation(record: LogoGeneration, *, detail: bool = False) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "id": record.id,
        "app_name": record.app_name,
        "app_focus": record.app_focus,
        "color1": record.color1,
        "color2": record.color2,
        "model": record.model,
        "output_count": record.output_count,
        "status": record.status,
        "images": list(record.images or []),
        "credits_charged": record.credits_charged,
        "provider_request_id": record.provider_request_id,
        "created_at": record.created_at.isoformat() if record.created_at else None,
    }
    if detail:
        payload.update(
            {
                "prompt": record.prompt,
                "error": record.error,
                "updated_at": record.updated_at.isoformat() if record.updated_at else None,
            }
        )
    return payload


class GenerationStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(
        self,
        *,
        user_id: Optional[str],
        app_name: str,
        app_focus: str,
        color1: str,
        color2: str,
        model: str,
        output_count: int,
        prompt: str,
        credits_charged: int,
        status: str = "running",
    ) -> LogoGeneration:
        record = LogoGeneration(
            user_id=user_id,
            app_name=app_name,
            app_focus=app_focus,
            color1=color1,
            color2=color2,
            model=model,
            output_count=output_count,
            prompt=prompt,
            credits_charged=credits_charged,
            status=status,
            images=[],
        )
        try:
            self.db.add(record)
            await self.db.commit()
            await self.db.refresh(record)
        except SQLAlchemyError as exc:
            await self.db.rollback()
            raise PersistenceError("Failed to persist generation request") from exc
        return record

    async def get(self, generation_id: str) -> Optional[LogoGeneration]:
        result = await self.db.execute(
            select(LogoGeneration)
            .where(LogoGeneration.id == generation_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_provider_id(self, provider_request_id: str) -> Optional[LogoGeneration]:
        result = await self.db.execute(
            select(LogoGeneration)
            .where(LogoGeneration.provider_request_id == provider_request_id)
            .order_by(LogoGeneration.created_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def update_status(
        self,
        generation_id: str,
        *,
        status: str,
        provider_request_id: Optional[str] = None,
        images: Optional[List[str]] = None,
        provider_response: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> Optional[LogoGeneration]:
        """Last-write-wins update that refuses to move a record backwards."""
        if status not in GENERATION_STATUSES:
            raise ValueError(f"Unknown generation status: {status}")
        try:
            record = await self.get(generation_id)
            if not record:
                return None
            if not is_forward_transition(record.status, status):
                logger.warning(
                    "Ignoring status regression for generation %s: %s -> %s",
                    generation_id,
                    record.status,
                    status,
                )
                return record
            record.status = status
            if provider_request_id is not None:
                record.provider_request_id = provider_request_id
            if images is not None:
                record.images = list(images)
            if provider_response is not None:
                record.provider_response = provider_response
            if error is not None:
                record.error = error[:1000]
            record.updated_at = datetime.now(timezone.utc)
            await self.db.commit()
            await self.db.refresh(record)
            return record
        except SQLAlchemyError as exc:
            await self.db.rollback()
            raise PersistenceError("Failed to update generation status") from exc

    async def list_for_user(
        self,
        user_id: str,
        *,
        limit: int = 20,
        offset: int = 0,
        status: Optional[str] = None,
        retention_days: int = 90,
    ) -> Tuple[List[LogoGeneration], int]:
        cutoff = datetime.now(timezone.utc) - timedelta(days=max(int(retention_days), 1))
        conditions = [
            LogoGeneration.user_id == user_id,
            LogoGeneration.created_at >= cutoff,
        ]
        if status:
            conditions.append(LogoGeneration.status == status)

        total_result = await self.db.execute(select(func.count(LogoGeneration.id)).where(*conditions))
        total = int(total_result.scalar() or 0)

        result = await self.db.execute(
            select(LogoGeneration)
            .where(*conditions)
            .order_by(LogoGeneration.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all()), total
