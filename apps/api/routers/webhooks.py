"""Payment webhook router."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from config import CoreConfig, settings
from database import get_db
from routers.deps import get_core_config, raise_http
from services.credits import Actor, CreditLedger
from services.errors import ServiceError
from services.payment_webhooks import SIGNATURE_HEADERS, PaymentWebhookReconciler

router = APIRouter()
logger = logging.getLogger(__name__)


class ManualCreditRequest(BaseModel):
    user_id: str = Field(min_length=1)
    credits: int = Field(gt=0)
    description: Optional[str] = None


@router.post("/payment")
async def payment_webhook(
    request: Request,
    config: CoreConfig = Depends(get_core_config),
    db: AsyncSession = Depends(get_db),
):
    """Grant purchased credits for a signed payment event."""
    raw_body = await request.body()
    signature = next((request.headers.get(name) for name in SIGNATURE_HEADERS if request.headers.get(name)), None)
    try:
        outcome = await PaymentWebhookReconciler(db, config).handle(raw_body, signature)
    except ServiceError as exc:
        raise_http(exc)
    except Exception as exc:
        logger.exception("Payment webhook processing failed: %s", exc)
        raise HTTPException(status_code=500, detail={"error": "Webhook processing failed"}) from exc
    return outcome.to_payload()


@router.post("/payment/test")
async def payment_webhook_test(
    request: ManualCreditRequest,
    config: CoreConfig = Depends(get_core_config),
    db: AsyncSession = Depends(get_db),
):
    """Development-only manual credit grant."""
    if not settings.ENABLE_TEST_ENDPOINTS:
        raise HTTPException(status_code=404, detail="Not Found")
    try:
        result = await CreditLedger(db, config).credit(
            request.user_id,
            request.credits,
            "adjustment_add",
            description=request.description or "Test credit addition",
            actor=Actor.webhook("test_endpoint"),
        )
    except ServiceError as exc:
        raise_http(exc)
    return {"success": result.success, "new_balance": result.new_balance}
