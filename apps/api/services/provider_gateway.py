"""Eachlabs image-generation provider gateway."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from config import CoreConfig
from services.errors import (
    ProviderInvalidResponse,
    ProviderNotConfigured,
    ProviderRejected,
    ProviderUnreachable,
)

logger = logging.getLogger(__name__)

PROVIDER_API_VERSION = "0.0.1"

# Public model id -> provider model id.
MODEL_MAP: Dict[str, str] = {
    "nano-banana": "nano-banana",
    "seedream-v4": "seedream-v4-text-to-image",
    "reve-text": "reve-text-to-image",
}

# Provider model id -> extra input fields.
MODEL_INPUT_OPTIONS: Dict[str, Dict[str, Any]] = {
    "nano-banana": {
        "output_format": "png",
        "aspect_ratio": "1:1",
        "limit_generations": True,
    },
    "seedream-v4-text-to-image": {
        "image_size": "square_hd",
        "enable_safety_checker": True,
    },
    "reve-text-to-image": {
        "aspect_ratio": "1:1",
        "output_format": "png",
    },
}

PROVIDER_STATUS_MAP: Dict[str, str] = {
    "success": "succeeded",
    "succeeded": "succeeded",
    "failed": "failed",
    "running": "running",
    "queued": "queued",
}


@dataclass(frozen=True)
class ProviderSubmission:
    provider_request_id: Optional[str]
    images: List[str]
    status: Optional[str]
    raw_response: Dict[str, Any]


@dataclass(frozen=True)
class ProviderStatusResult:
    status: str
    images: List[str]
    raw_response: Dict[str, Any] = field(default_factory=dict)


def build_model_input(provider_model: str, prompt: str, output_count: int) -> Dict[str, Any]:
    model_input: Dict[str, Any] = {
        "prompt": prompt,
        "num_images": output_count,
        "sync_mode": False,
    }
    model_input.update(MODEL_INPUT_OPTIONS.get(provider_model, {}))
    return model_input


def extract_images(payload: Dict[str, Any]) -> List[str]:
    """Collect output images from `output`, falling back to `images`."""
    candidate = payload.get("output")
    if candidate is None:
        candidate = payload.get("images")
    if not isinstance(candidate, list):
        return []
    return [item if isinstance(item, str) else json.dumps(item) for item in candidate]


def extract_provider_request_id(payload: Dict[str, Any], fallback: Optional[str] = None) -> Optional[str]:
    """Root `id` first, then nested `prediction.id`, then the fallback."""
    root_id = payload.get("id")
    if root_id:
        return str(root_id)
    nested = payload.get("prediction")
    if isinstance(nested, dict) and nested.get("id"):
        return str(nested["id"])
    return fallback


def normalize_status(raw_status: Any) -> Optional[str]:
    """Map provider vocabulary to queued/running/succeeded/failed; None when absent."""
    if raw_status is None:
        return None
    return PROVIDER_STATUS_MAP.get(str(raw_status).strip().lower(), "running")


class EachlabsGateway:
    """Thin async client around the provider's prediction API."""

    def __init__(self, config: CoreConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = config.provider_api_key
        self.base_url = config.provider_api_url.rstrip("/")
        self.timeout = config.provider_timeout_seconds
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def resolve_model(self, model: str) -> Optional[str]:
        return MODEL_MAP.get(model)

    async def _request(self, method: str, url: str, **kwargs: Any) -> Dict[str, Any]:
        if not self.is_configured:
            raise ProviderNotConfigured("EACHLABS_API_KEY is not set")

        headers = {"X-API-Key": self.api_key}
        if "json" in kwargs:
            headers["Content-Type"] = "application/json"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("Provider request %s %s failed: %s", method, url, exc)
            raise ProviderUnreachable() from exc

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if not response.is_success:
            message = None
            if isinstance(payload, dict):
                message = payload.get("message") or payload.get("error")
            raise ProviderRejected(
                str(message or f"Provider returned HTTP {response.status_code}"),
                response.status_code,
            )
        if not isinstance(payload, dict):
            logger.warning("Provider returned unparsable body for %s %s", method, url)
            raise ProviderInvalidResponse()
        return payload

    async def submit(
        self,
        model_id: str,
        prompt: str,
        output_count: int,
        model_options: Optional[Dict[str, Any]] = None,
    ) -> ProviderSubmission:
        provider_model = self.resolve_model(model_id) or model_id
        model_input = build_model_input(provider_model, prompt, output_count)
        if model_options:
            model_input.update(model_options)

        payload = await self._request(
            "POST",
            f"{self.base_url}/",
            json={"model": provider_model, "version": PROVIDER_API_VERSION, "input": model_input},
        )
        return ProviderSubmission(
            provider_request_id=extract_provider_request_id(payload),
            images=extract_images(payload),
            status=normalize_status(payload.get("status")),
            raw_response=payload,
        )

    async def fetch_status(self, provider_request_id: str) -> ProviderStatusResult:
        payload = await self._request("GET", f"{self.base_url}/{provider_request_id}")
        return ProviderStatusResult(
            status=normalize_status(payload.get("status")) or "running",
            images=extract_images(payload),
            raw_response=payload,
        )
