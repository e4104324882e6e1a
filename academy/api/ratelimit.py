"""Per-route rate limiting.

Routes opt in with ``Depends(require_rate_limit(config, operation=...))``;
health and metrics never do.  A rejected request raises ``RateLimited``
so the 429 body and Retry-After header match the provider cool-down
responses.

Buckets are keyed on the principal named by a bearer token when one is
present (read without verifying the signature; a forged sub only earns
its own bucket), otherwise on the client address.
"""

from __future__ import annotations

import logging
import math

import jwt as pyjwt
from fastapi import Request

from academy.core.errors import RateLimited
from academy.core.metrics import RATE_LIMIT_HITS
from academy.db.redis import redis_pool
from academy.services.rate_limiter import (
    InMemoryRateLimiter,
    RateLimitConfig,
    RateLimiter,
    RedisRateLimiter,
)

logger = logging.getLogger(__name__)

_rate_limiter: RateLimiter = (
    RedisRateLimiter(redis_pool) if redis_pool is not None else InMemoryRateLimiter()
)


def require_rate_limit(config: RateLimitConfig, *, operation: str):
    async def _check(request: Request) -> None:
        key = build_key(request)
        result = await _rate_limiter.check(key, config)
        if result.allowed:
            return
        key_type = key.partition(":")[0]
        RATE_LIMIT_HITS.labels(key_type=key_type).inc()
        logger.warning("Rate limit exceeded operation=%s key_type=%s", operation, key_type)
        raise RateLimited(max(1, math.ceil(result.retry_after)), operation=operation)

    return _check


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _bearer_subject(request: Request) -> str | None:
    scheme, _, token = request.headers.get("authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    try:
        claims = pyjwt.decode(token, options={"verify_signature": False})
    except pyjwt.InvalidTokenError:
        return None
    sub = claims.get("sub")
    return sub if isinstance(sub, str) and sub else None


def build_key(request: Request) -> str:
    sub = _bearer_subject(request)
    return f"principal:{sub}" if sub else f"ip:{client_ip(request)}"
