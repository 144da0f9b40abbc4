"""Typed service errors surfaced to the HTTP layer."""

from __future__ import annotations

from typing import Any, Dict, Optional


class ServiceError(Exception):
    """Base class for recoverable service outcomes that map to an HTTP response."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = dict(detail or {})

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.message, "code": self.code}
        payload.update(self.detail)
        return payload


class Unauthenticated(ServiceError):
    status_code = 401
    code = "unauthenticated"

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class Forbidden(ServiceError):
    status_code = 403
    code = "forbidden"


class NotFound(ServiceError):
    status_code = 404
    code = "not_found"


class InvalidRequest(ServiceError):
    status_code = 400
    code = "invalid_request"


class InsufficientCredits(ServiceError):
    status_code = 402
    code = "insufficient_credits"

    def __init__(self, balance: int, required: int):
        super().__init__(
            f"Insufficient credits. Required: {required}, available: {balance}.",
            {"balance": balance, "required": required},
        )
        self.balance = balance
        self.required = required


class PersistenceError(ServiceError):
    status_code = 500
    code = "persistence_error"


class DuplicateExternalOrder(ServiceError):
    """A concurrent delivery already recorded this external order id."""

    status_code = 200
    code = "already_processed"


# Provider gateway

class ProviderError(ServiceError):
    status_code = 502
    code = "provider_error"


class ProviderNotConfigured(ServiceError):
    status_code = 500
    code = "provider_not_configured"


class ProviderUnreachable(ProviderError):
    code = "provider_unreachable"

    def __init__(self, message: str = "Failed to reach provider"):
        super().__init__(message)


class ProviderRejected(ProviderError):
    code = "provider_rejected"

    def __init__(self, message: str, http_status: int):
        super().__init__(message, {"provider_status": http_status})
        self.http_status = http_status


class ProviderInvalidResponse(ProviderError):
    code = "provider_invalid_response"

    def __init__(self, message: str = "Invalid provider response"):
        super().__init__(message)


# Payment webhooks

class InvalidSignature(ServiceError):
    status_code = 401
    code = "invalid_signature"

    def __init__(self, message: str = "Invalid signature"):
        super().__init__(message)


class InvalidWebhookPayload(ServiceError):
    status_code = 400
    code = "invalid_payload"


class UndeterminedCreditAmount(ServiceError):
    status_code = 400
    code = "undetermined_credit_amount"

    def __init__(self, order_id: str):
        super().__init__("Could not determine credit amount", {"order_id": order_id})


class MissingUserLink(ServiceError):
    status_code = 400
    code = "missing_user_link"

    def __init__(self, order_id: str, customer_email: Optional[str], credits: int):
        super().__init__(
            "Missing user ID",
            {
                "status": "pending_user_link",
                "order_id": order_id,
                "customer_email": customer_email,
                "credits": credits,
            },
        )
        self.order_id = order_id
        self.customer_email = customer_email
        self.credits = credits
