"""Logo generation router: create, poll provider status, and history."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from config import CoreConfig
from database import get_db
from routers.auth_scope import AuthContext, get_optional_auth_context
from routers.deps import get_core_config, get_provider_gateway, raise_http
from routers.rate_limit import rate_limit
from services.errors import ServiceError
from services.generation_orchestrator import GenerationOrchestrator
from services.provider_gateway import EachlabsGateway

router = APIRouter()


def _user_id(auth: Optional[AuthContext]) -> Optional[str]:
    return auth.user_id if auth else None


def get_orchestrator(
    config: CoreConfig = Depends(get_core_config),
    gateway: EachlabsGateway = Depends(get_provider_gateway),
    db: AsyncSession = Depends(get_db),
) -> GenerationOrchestrator:
    return GenerationOrchestrator(db, config, gateway)


@router.post("")
async def create_generation(
    request: Request,
    _rate_limit: None = Depends(rate_limit("generation_create", limit=30, window_seconds=3600)),
    auth: Optional[AuthContext] = Depends(get_optional_auth_context),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    """Charge credits and submit a generation to the image provider."""
    try:
        payload = await request.json()
    except ValueError:
        payload = None
    try:
        result = await orchestrator.create_generation(_user_id(auth), payload)
    except ServiceError as exc:
        raise_http(exc)
    return {
        "prediction_id": result.prediction_id,
        "prediction": result.prediction,
        "generation_id": result.generation_id,
        "status": result.status,
        "images": result.images,
        "credits_charged": result.credits_charged,
        "balance": result.balance,
    }


@router.get("")
async def list_generations(
    limit: int = Query(default=20),
    offset: int = Query(default=0),
    status: Optional[str] = Query(default=None),
    auth: Optional[AuthContext] = Depends(get_optional_auth_context),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    try:
        return await orchestrator.list_history(_user_id(auth), limit=limit, offset=offset, status=status)
    except ServiceError as exc:
        raise_http(exc)


@router.get("/records/{generation_id}")
async def get_generation_record(
    generation_id: str,
    auth: Optional[AuthContext] = Depends(get_optional_auth_context),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    try:
        return {"generation": await orchestrator.get_generation(_user_id(auth), generation_id)}
    except ServiceError as exc:
        raise_http(exc)


@router.get("/{provider_request_id}")
async def poll_generation(
    provider_request_id: str,
    auth: Optional[AuthContext] = Depends(get_optional_auth_context),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    """Refresh a generation from the provider and return its payload."""
    try:
        return await orchestrator.get_generation_status(_user_id(auth), provider_request_id)
    except ServiceError as exc:
        raise_http(exc)
