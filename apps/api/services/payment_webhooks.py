"""Polar payment webhook verification and idempotent credit grants."""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from config import CoreConfig
from services.credit_packages import find_package_by_product
from services.credits import Actor, CreditLedger
from services.errors import (
    DuplicateExternalOrder,
    InvalidSignature,
    InvalidWebhookPayload,
    MissingUserLink,
    PersistenceError,
    UndeterminedCreditAmount,
)

logger = logging.getLogger(__name__)

WEBHOOK_SOURCE = "polar"
SIGNATURE_HEADERS = ("webhook-signature", "x-polar-signature")


def _as_bytes(raw_body: Union[bytes, str]) -> bytes:
    return raw_body if isinstance(raw_body, bytes) else raw_body.encode("utf-8")


def sign_payload(raw_body: Union[bytes, str], timestamp: str, secret: str) -> str:
    """Hex HMAC-SHA256 over `<timestamp>.<raw_body>`."""
    signed = timestamp.encode("utf-8") + b"." + _as_bytes(raw_body)
    return hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()


def verify_signature(raw_body: Union[bytes, str], signature: Optional[str], secret: str) -> bool:
    """Check a `v1,<timestamp>,<hex-hmac>` header in constant time."""
    if not signature:
        return False
    parts = signature.split(",")
    if len(parts) < 3:
        return False
    timestamp, provided = parts[1].strip(), parts[2].strip()
    expected = sign_payload(raw_body, timestamp, secret)
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


@dataclass
class WebhookOutcome:
    status: str  # processed, already_processed, ignored
    event_type: Optional[str] = None
    order_id: Optional[str] = None
    credits: int = 0
    new_balance: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"received": True, "status": self.status}
        if self.event_type:
            payload["type"] = self.event_type
        if self.status == "processed":
            payload["credits"] = self.credits
            payload["new_balance"] = self.new_balance
        payload.update(self.extra)
        return payload


def _is_grant_event(event: Dict[str, Any]) -> bool:
    event_type = event.get("type")
    data = event.get("data") or {}
    if event_type == "order.created":
        return True
    return event_type == "checkout.updated" and data.get("status") == "succeeded"


class PaymentWebhookReconciler:
    """Turns one payment event into at most one purchase transaction."""

    def __init__(self, db: AsyncSession, config: CoreConfig, ledger: Optional[CreditLedger] = None):
        self.db = db
        self.config = config
        self.ledger = ledger or CreditLedger(db, config)

    def verify(self, raw_body: Union[bytes, str], signature: Optional[str]) -> None:
        secret = self.config.webhook_secret
        if not secret:
            logger.warning("POLAR_WEBHOOK_SECRET not set - skipping signature verification")
            return
        if not verify_signature(raw_body, signature, secret):
            logger.error("Polar webhook signature verification failed")
            raise InvalidSignature()

    async def handle(self, raw_body: Union[bytes, str], signature: Optional[str]) -> WebhookOutcome:
        self.verify(raw_body, signature)

        try:
            event = json.loads(raw_body)
        except ValueError as exc:
            raise InvalidWebhookPayload("Webhook body is not valid JSON") from exc
        if not isinstance(event, dict):
            raise InvalidWebhookPayload("Webhook body must be a JSON object")
        if not isinstance(event.get("data") or {}, dict):
            raise InvalidWebhookPayload("Webhook event data must be an object")

        event_type = event.get("type")
        if not _is_grant_event(event):
            return WebhookOutcome(status="ignored", event_type=event_type)
        return await self._grant_for_order(event)

    async def _grant_for_order(self, event: Dict[str, Any]) -> WebhookOutcome:
        data = event.get("data") or {}

        order_id = data.get("id")
        if not order_id:
            logger.error("Polar webhook: missing order ID")
            raise InvalidWebhookPayload("Missing order ID")
        order_id = str(order_id)

        product = data.get("product") if isinstance(data.get("product"), dict) else {}
        customer = data.get("customer") if isinstance(data.get("customer"), dict) else {}
        metadata = data.get("metadata") if isinstance(data.get("metadata"), dict) else {}
        product_id = data.get("product_id") or product.get("id")
        user_id = data.get("user_id") or metadata.get("userId") or metadata.get("user_id")
        customer_email = data.get("customer_email") or customer.get("email")
        amount = data.get("amount")

        if await self.ledger.find_by_external_order(order_id):
            logger.info("Polar webhook: order %s already processed", order_id)
            return WebhookOutcome(status="already_processed", event_type=event.get("type"), order_id=order_id)

        credits = 0
        package_name = "Credit Package"
        if product_id:
            package = await find_package_by_product(self.db, str(product_id))
            if package:
                credits = int(package.credits)
                package_name = package.name
        if credits == 0 and isinstance(amount, (int, float)) and amount > 0:
            credits = int(amount // 100)
        if credits <= 0:
            logger.error("Polar webhook: could not determine credits for order %s", order_id)
            raise UndeterminedCreditAmount(order_id)

        if not user_id:
            logger.error("Polar webhook: missing user ID for order %s", order_id)
            raise MissingUserLink(order_id, customer_email, credits)

        try:
            result = await self.ledger.credit(
                str(user_id),
                credits,
                "purchase",
                description=f"Purchased {package_name} ({credits} credits)",
                actor=Actor.webhook(WEBHOOK_SOURCE),
                external_order_id=order_id,
                external_product_id=str(product_id) if product_id else None,
                metadata={
                    "customer_email": customer_email,
                    "amount": amount,
                    "currency": data.get("currency"),
                },
            )
        except DuplicateExternalOrder:
            logger.info("Polar webhook: order %s recorded by a concurrent delivery", order_id)
            return WebhookOutcome(status="already_processed", event_type=event.get("type"), order_id=order_id)

        if not result.success:
            raise PersistenceError("Failed to add credits", {"order_id": order_id})

        logger.info("Polar webhook: added %s credits for user %s, order %s", credits, user_id, order_id)
        return WebhookOutcome(
            status="processed",
            event_type=event.get("type"),
            order_id=order_id,
            credits=credits,
            new_balance=result.new_balance,
        )
