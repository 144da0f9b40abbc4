"""Generation orchestrator: charging, provider invocation, refunds and status sync."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from config import CoreConfig
from models.logo_generation import LogoGeneration
from services.credits import Actor, CreditLedger
from services.errors import (
    Forbidden,
    InsufficientCredits,
    InvalidRequest,
    NotFound,
    PersistenceError,
    ProviderError,
    ProviderNotConfigured,
    ServiceError,
    Unauthenticated,
)
from services.generation_store import GENERATION_STATUSES, GenerationStore, serialize_generation
from services.provider_gateway import EachlabsGateway, ProviderSubmission

logger = logging.getLogger(__name__)

PROMPT_TEMPLATE = (
    "Design an iOS 16–ready, minimalist, and modern app icon for {app_name}. "
    "Use a softly rounded square background with a sophisticated gradient that blends {color1} and {color2}. "
    "Center a clean, easily recognizable symbol that represents {app_focus}, with subtle depth via gentle "
    "shadow and light effects. If including text, weave the app name or initials in a sleek, highly legible "
    "way. The icon must remain crisp and recognizable at every size on a plain white background."
)

INTERNAL_ERROR_MESSAGE = "Internal server error"


class GenerationRequest(BaseModel):
    # The web client posts camelCase keys; snake_case is accepted as well.
    model_config = ConfigDict(populate_by_name=True)

    app_name: str = Field(alias="appName", min_length=2, max_length=200)
    app_focus: str = Field(alias="appFocus", min_length=2, max_length=500)
    color1: str = Field(min_length=1, max_length=64)
    color2: str = Field(min_length=1, max_length=64)
    model: Literal["nano-banana", "seedream-v4", "reve-text"]
    output_count: Optional[Union[int, str]] = Field(default=None, alias="outputCount")

    @field_validator("app_name", "app_focus", "color1", "color2", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value


def clamp_output_count(raw: Any, maximum: int) -> int:
    try:
        parsed = int(str(raw if raw is not None else 1).strip())
    except (TypeError, ValueError):
        parsed = 1
    return max(1, min(parsed, maximum))


def build_prompt(request: GenerationRequest) -> str:
    return PROMPT_TEMPLATE.format(
        app_name=request.app_name,
        app_focus=request.app_focus,
        color1=request.color1,
        color2=request.color2,
    )


@dataclass
class GenerationResult:
    generation_id: str
    prediction_id: Optional[str]
    prediction: Dict[str, Any]
    status: str
    images: List[str]
    credits_charged: int
    balance: int


class GenerationOrchestrator:
    def __init__(
        self,
        db: AsyncSession,
        config: CoreConfig,
        gateway: EachlabsGateway,
        ledger: Optional[CreditLedger] = None,
        store: Optional[GenerationStore] = None,
    ):
        self.config = config
        self.gateway = gateway
        self.ledger = ledger or CreditLedger(db, config)
        self.store = store or GenerationStore(db)

    def _validate(self, payload: Any) -> GenerationRequest:
        if not isinstance(payload, dict):
            raise InvalidRequest("Invalid request body", {"details": [{"loc": [], "msg": "Expected a JSON object"}]})
        try:
            return GenerationRequest.model_validate(payload)
        except ValidationError as exc:
            details = [
                {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg"), "type": err.get("type")}
                for err in exc.errors()
            ]
            raise InvalidRequest("Invalid request body", {"details": details}) from exc

    # Best-effort cleanup: failures are logged and never mask the primary outcome.

    async def _mark_failed(self, generation_id: str, error: str) -> None:
        try:
            await self.store.update_status(generation_id, status="failed", error=error)
        except Exception:
            logger.exception("Failed to mark generation %s as failed", generation_id)

    async def _refund(self, user_id: str, generation_id: str, amount: int, reason: str) -> bool:
        try:
            result = await self.ledger.credit(
                user_id,
                amount,
                "refund",
                description=f"Refund for failed generation ({reason})",
                actor=Actor.system(),
                generation_id=generation_id,
            )
        except Exception:
            logger.exception("Refund of %s credits for generation %s failed", amount, generation_id)
            return False
        if result.success:
            logger.info("Refunded %s credits to user %s for generation %s", amount, user_id, generation_id)
        return result.success

    async def _refund_outstanding(self, record: LogoGeneration, reason: str) -> bool:
        """Refund whatever usage on this generation has not been refunded yet."""
        if not record.user_id:
            return False
        try:
            charged = -await self.ledger.sum_for_generation(record.id, "usage")
            refunded = await self.ledger.sum_for_generation(record.id, "refund")
        except Exception:
            logger.exception("Could not read charges for generation %s", record.id)
            return False
        outstanding = charged - refunded
        if outstanding <= 0:
            return False
        return await self._refund(record.user_id, record.id, outstanding, reason)

    async def create_generation(self, user_id: Optional[str], payload: Any) -> GenerationResult:
        if not user_id:
            raise Unauthenticated()

        request = self._validate(payload)
        provider_model = self.gateway.resolve_model(request.model)
        if not provider_model:
            raise InvalidRequest("Invalid model selected")
        if not self.gateway.is_configured:
            raise ProviderNotConfigured("EACHLABS_API_KEY is not set")

        output_count = clamp_output_count(request.output_count, self.config.max_output_count)
        credits_required = output_count

        balance = await self.ledger.get_balance(user_id)
        if balance < credits_required:
            raise InsufficientCredits(balance=balance, required=credits_required)

        prompt = build_prompt(request)
        record = await self.store.create(
            user_id=user_id,
            app_name=request.app_name,
            app_focus=request.app_focus,
            color1=request.color1,
            color2=request.color2,
            model=provider_model,
            output_count=output_count,
            prompt=prompt,
            credits_charged=credits_required,
            status="running",
        )
        generation_id = record.id

        credit_deducted = False
        try:
            debit = await self.ledger.debit(
                user_id,
                credits_required,
                generation_id,
                description=f"Logo generation ({output_count} image{'s' if output_count != 1 else ''})",
                actor=Actor.user(user_id),
            )
            if not debit.success:
                # Lost a race against a concurrent spend; nothing was charged.
                await self._mark_failed(generation_id, "Insufficient credits")
                raise InsufficientCredits(balance=debit.new_balance, required=credits_required)
            credit_deducted = True
            balance = debit.new_balance

            try:
                submission = await self.gateway.submit(request.model, prompt, output_count)
            except ProviderError as exc:
                logger.warning("Provider submission failed for generation %s: %s", generation_id, exc.message)
                await self._mark_failed(generation_id, exc.message)
                if await self._refund(user_id, generation_id, credits_required, exc.code):
                    balance += credits_required
                credit_deducted = False
                exc.detail.setdefault("generation_id", generation_id)
                exc.detail.setdefault("refunded", credits_required)
                raise

            return await self._record_submission(user_id, record, submission, balance)
        except PersistenceError:
            await self._mark_failed(generation_id, INTERNAL_ERROR_MESSAGE)
            if credit_deducted:
                await self._refund(user_id, generation_id, credits_required, "persistence_error")
            raise
        except ServiceError:
            raise
        except Exception as exc:
            logger.exception("Generation %s failed unexpectedly: %s", generation_id, exc)
            await self._mark_failed(generation_id, INTERNAL_ERROR_MESSAGE)
            if credit_deducted:
                await self._refund(user_id, generation_id, credits_required, "internal_error")
            raise ServiceError(INTERNAL_ERROR_MESSAGE, {"generation_id": generation_id}) from exc

    async def _record_submission(
        self,
        user_id: str,
        record: LogoGeneration,
        submission: ProviderSubmission,
        balance: int,
    ) -> GenerationResult:
        provider_request_id = submission.provider_request_id or record.id
        images = submission.images
        status = submission.status
        if status is None:
            status = "succeeded" if images else "running"
        elif status == "queued":
            status = "running"

        updated = await self.store.update_status(
            record.id,
            status=status,
            provider_request_id=provider_request_id,
            images=images,
            provider_response=submission.raw_response,
            error="Provider reported failure" if status == "failed" else None,
        )
        if status == "failed" and self.config.refund_failed_polls:
            if await self._refund_outstanding(updated or record, "provider_failed"):
                balance += record.credits_charged

        return GenerationResult(
            generation_id=record.id,
            prediction_id=provider_request_id,
            prediction=submission.raw_response,
            status=status,
            images=images,
            credits_charged=record.credits_charged,
            balance=balance,
        )

    async def get_generation_status(self, user_id: Optional[str], provider_request_id: str) -> Dict[str, Any]:
        if not user_id:
            raise Unauthenticated()
        provider_request_id = (provider_request_id or "").strip()
        if not provider_request_id:
            raise InvalidRequest("Invalid prediction id")

        record = await self.store.get_by_provider_id(provider_request_id)
        if not record:
            raise NotFound("Generation not found")
        if record.user_id != user_id:
            raise Forbidden("Generation belongs to another user")

        result = await self.gateway.fetch_status(provider_request_id)

        was_terminal = record.status in ("succeeded", "failed")
        updated = await self.store.update_status(
            record.id,
            status="running" if result.status == "queued" else result.status,
            images=result.images,
            provider_response=result.raw_response,
            error="Provider reported failure" if result.status == "failed" else None,
        )
        if (
            result.status == "failed"
            and self.config.refund_failed_polls
            and updated is not None
            and updated.status == "failed"
        ):
            await self._refund_outstanding(updated, "provider_failed")
        elif was_terminal and updated is not None and updated.status != result.status:
            logger.info(
                "Generation %s stays %s; provider now reports %s",
                record.id,
                updated.status,
                result.status,
            )
        return result.raw_response

    async def get_generation(self, user_id: Optional[str], generation_id: str) -> Dict[str, Any]:
        if not user_id:
            raise Unauthenticated()
        record = await self.store.get(generation_id)
        if not record or record.user_id != user_id:
            raise NotFound("Generation not found")
        return serialize_generation(record, detail=True)

    async def list_history(
        self,
        user_id: Optional[str],
        *,
        limit: int = 20,
        offset: int = 0,
        status: Optional[str] = None,
    ) -> Dict[str, Any]:
        if not user_id:
            raise Unauthenticated()
        if status is not None and status not in GENERATION_STATUSES:
            raise InvalidRequest("Invalid query parameters", {"details": [{"loc": ["status"], "msg": "Unknown status"}]})
        if limit < 1 or limit > 100 or offset < 0:
            raise InvalidRequest("Invalid query parameters", {"details": [{"loc": ["limit"], "msg": "Out of range"}]})

        records, total = await self.store.list_for_user(
            user_id,
            limit=limit,
            offset=offset,
            status=status,
            retention_days=self.config.history_retention_days,
        )
        return {
            "generations": [serialize_generation(record) for record in records],
            "pagination": {
                "limit": limit,
                "offset": offset,
                "total": total,
                "has_more": offset + len(records) < total,
            },
        }
