"""
Liveness, readiness and dependency health endpoints.
"""

from typing import Dict, List

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
import redis.asyncio as redis

from config import CoreConfig, settings
from database import engine
from routers.deps import get_core_config

router = APIRouter()


def _missing_configuration(config: CoreConfig) -> List[str]:
    missing = []
    if not config.provider_api_key:
        missing.append("EACHLABS_API_KEY")
    if not config.webhook_secret:
        missing.append("POLAR_WEBHOOK_SECRET")
    return missing


async def _probe_database() -> str:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        return f"down: {e}"
    return "up"


async def _probe_redis() -> str:
    try:
        client = redis.from_url(settings.REDIS_URL)
        try:
            await client.ping()
        finally:
            await client.aclose()
    except Exception as e:
        return f"down: {e}"
    return "up"


@router.get("/health")
async def health_check(config: CoreConfig = Depends(get_core_config)):
    """
    Overall status plus each dependency.
    The database is required; Redis only backs rate limiting.
    """
    database = await _probe_database()
    checks: Dict[str, str] = {
        "api": "up",
        "database": database,
        "redis": await _probe_redis(),
        "image_provider": "configured" if config.provider_api_key else "missing",
        "payment_webhook_secret": "configured" if config.webhook_secret else "missing",
    }
    return {"status": "healthy" if database == "up" else "degraded", **checks}


@router.get("/health/live")
async def liveness_check():
    """Kubernetes-style liveness probe."""
    return {"alive": True}


@router.get("/health/ready")
async def readiness_check(config: CoreConfig = Depends(get_core_config)):
    """Ready once generation and payment credentials are configured."""
    missing = _missing_configuration(config)
    if missing:
        return JSONResponse(status_code=503, content={"ready": False, "missing": missing})
    return {"ready": True}
