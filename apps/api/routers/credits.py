"""Credits router: balance, transaction history and package catalog."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from config import CoreConfig
from database import get_db
from routers.admin import adjust_credits
from routers.auth_scope import AuthContext, get_auth_context
from routers.deps import get_core_config, raise_http
from services.credit_packages import list_active_packages, serialize_package
from services.credits import CreditLedger, serialize_transaction
from services.errors import ServiceError

router = APIRouter()


@router.get("/balance")
async def credit_balance(
    auth: AuthContext = Depends(get_auth_context),
    config: CoreConfig = Depends(get_core_config),
    db: AsyncSession = Depends(get_db),
):
    """Balance and lifetime counters for the current user."""
    try:
        return await CreditLedger(db, config).get_summary(auth.user_id)
    except ServiceError as exc:
        raise_http(exc)


@router.get("/transactions")
async def credit_transactions(
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    auth: AuthContext = Depends(get_auth_context),
    config: CoreConfig = Depends(get_core_config),
    db: AsyncSession = Depends(get_db),
):
    entries = await CreditLedger(db, config).list_transactions(auth.user_id, limit=limit, offset=offset)
    return {
        "transactions": [serialize_transaction(entry) for entry in entries],
        "pagination": {"limit": limit, "offset": offset},
    }


@router.get("/packages")
async def credit_packages(db: AsyncSession = Depends(get_db)):
    """Active packages in display order, including the payment product id for checkout."""
    packages = await list_active_packages(db)
    return {"packages": [serialize_package(package) for package in packages]}


# Admin-only; shares its handler with /admin/credits/adjust.
router.add_api_route("/adjust", adjust_credits, methods=["POST"])
