"""Admin router for manual credit adjustments and user inspection."""

from __future__ import annotations

import logging
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from config import CoreConfig
from database import get_db
from routers.auth_scope import AuthContext, require_admin
from routers.deps import get_core_config, raise_http
from services.credits import Actor, CreditLedger, serialize_transaction
from services.errors import ServiceError

router = APIRouter()
logger = logging.getLogger(__name__)


class AdjustCreditsRequest(BaseModel):
    user_id: str = Field(min_length=1)
    amount: int = Field(gt=0)
    type: Literal["add", "remove"]
    reason: str = Field(min_length=1, max_length=500)


@router.post("/credits/adjust")
async def adjust_credits(
    request: AdjustCreditsRequest,
    admin: AuthContext = Depends(require_admin),
    config: CoreConfig = Depends(get_core_config),
    db: AsyncSession = Depends(get_db),
):
    """Add or remove credits on a user's balance."""
    ledger = CreditLedger(db, config)
    entry_type = "adjustment_add" if request.type == "add" else "adjustment_remove"
    try:
        if request.type == "remove":
            current_balance = await ledger.get_balance(request.user_id)
            if current_balance < request.amount:
                raise HTTPException(
                    status_code=400,
                    detail={
                        "error": "Insufficient credits",
                        "current_balance": current_balance,
                        "requested_removal": request.amount,
                    },
                )

        result = await ledger.credit(
            request.user_id,
            request.amount,
            entry_type,
            description=f"Admin adjustment: {request.reason}",
            actor=Actor.admin(admin.user_id),
            metadata={"admin_email": admin.email, "reason": request.reason, "type": request.type},
        )
    except ServiceError as exc:
        raise_http(exc)

    if not result.success:
        # Balance dropped below the removal amount after the pre-check.
        raise HTTPException(
            status_code=400,
            detail={
                "error": "Insufficient credits",
                "current_balance": result.new_balance,
                "requested_removal": request.amount,
            },
        )

    logger.info(
        "Admin %s adjusted credits for user %s: %s %s (%s)",
        admin.email,
        request.user_id,
        request.type,
        request.amount,
        request.reason,
    )
    return {
        "success": True,
        "adjustment": {
            "user_id": request.user_id,
            "type": request.type,
            "amount": request.amount,
            "reason": request.reason,
            "new_balance": result.new_balance,
            "performed_by": admin.email,
        },
    }


@router.get("/users/{user_id}/balance")
async def user_balance(
    user_id: str,
    _admin: AuthContext = Depends(require_admin),
    config: CoreConfig = Depends(get_core_config),
    db: AsyncSession = Depends(get_db),
):
    row = await CreditLedger(db, config).get_balance_row(user_id)
    if not row:
        raise HTTPException(status_code=404, detail="User not found or has no credit balance")
    return {
        "balance": {
            "user_id": row.user_id,
            "balance": row.balance,
            "total_purchased": row.total_purchased,
            "total_used": row.total_used,
            "last_transaction_at": row.last_transaction_at.isoformat() if row.last_transaction_at else None,
            "created_at": row.created_at.isoformat() if row.created_at else None,
        }
    }


@router.get("/users/{user_id}/transactions")
async def user_transactions(
    user_id: str,
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    _admin: AuthContext = Depends(require_admin),
    config: CoreConfig = Depends(get_core_config),
    db: AsyncSession = Depends(get_db),
):
    entries = await CreditLedger(db, config).list_transactions(user_id, limit=limit, offset=offset)
    return {
        "transactions": [serialize_transaction(entry, include_audit=True) for entry in entries],
        "pagination": {"limit": limit, "offset": offset},
    }
