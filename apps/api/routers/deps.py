"""Shared router dependencies and error translation."""

from functools import lru_cache
from typing import NoReturn

from fastapi import Depends, HTTPException

from config import CoreConfig, build_core_config
from services.errors import ServiceError
from services.provider_gateway import EachlabsGateway


@lru_cache(maxsize=1)
def get_core_config() -> CoreConfig:
    return build_core_config()


def get_provider_gateway(config: CoreConfig = Depends(get_core_config)) -> EachlabsGateway:
    return EachlabsGateway(config)


def raise_http(exc: ServiceError) -> NoReturn:
    """Translate a service error into the HTTP response clients see."""
    raise HTTPException(status_code=exc.status_code, detail=exc.to_payload()) from exc
