"""Fixed-window rate limiting backed by Redis, with an in-process fallback."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, Optional, Tuple

from fastapi import HTTPException, Request
import redis.asyncio as redis

from config import settings
from services.session_token import decode_session_token

logger = logging.getLogger(__name__)

KEY_PREFIX = "logoloco:rate"

# key -> (count, window_reset_at)
_local_counters: Dict[str, Tuple[int, float]] = {}
_local_lock = asyncio.Lock()


def _bearer_subject(request: Request) -> Optional[str]:
    header = request.headers.get("authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    try:
        return decode_session_token(token.strip()).user_id
    except ValueError:
        return None


def client_key(request: Request) -> str:
    """Authenticated callers are limited per user, everyone else per client address."""
    subject = _bearer_subject(request)
    if subject:
        return f"user:{subject}"
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return f"ip:{forwarded.split(',')[0].strip()}"
    if request.client and request.client.host:
        return f"ip:{request.client.host}"
    return "ip:unknown"


async def _consume_local(key: str, limit: int, window_seconds: int) -> Tuple[bool, int]:
    now = time.time()
    async with _local_lock:
        count, reset_at = _local_counters.get(key, (0, now + window_seconds))
        if now >= reset_at:
            count, reset_at = 0, now + window_seconds
        count += 1
        _local_counters[key] = (count, reset_at)
    return count <= limit, max(int(reset_at - now), 1)


async def _consume_redis(key: str, limit: int, window_seconds: int) -> Tuple[bool, int]:
    client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    try:
        async with client.pipeline(transaction=True) as pipe:
            pipe.incr(key)
            pipe.ttl(key)
            count, ttl = await pipe.execute()
        if int(ttl) < 0:
            await client.expire(key, window_seconds)
            ttl = window_seconds
    finally:
        await client.aclose()
    return int(count) <= limit, max(int(ttl), 1)


def rate_limit(prefix: str, limit: int, window_seconds: int) -> Callable[[Request], Awaitable[None]]:
    """Return a FastAPI dependency allowing `limit` requests per `window_seconds`."""

    async def _dependency(request: Request) -> None:
        if getattr(request.app.state, "disable_rate_limits", False):
            return

        key = f"{KEY_PREFIX}:{prefix}:{client_key(request)}"
        try:
            allowed, retry_after = await _consume_redis(key, limit, window_seconds)
        except (redis.RedisError, OSError) as exc:
            logger.debug("Redis unavailable for rate limiting, using local counters: %s", exc)
            allowed, retry_after = await _consume_local(key, limit, window_seconds)

        if not allowed:
            raise HTTPException(
                status_code=429,
                detail={"error": "Rate limit exceeded. Try again later.", "code": "rate_limited"},
                headers={"Retry-After": str(retry_after)},
            )

    return _dependency
