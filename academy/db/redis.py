"""Optional Redis pool for state shared between API replicas.

Three kinds of short-lived keys live here: the membership-provider
cool-down after a 429 (``membership:cooldown``), failed sign-in
counters (``signin:failures:<client>``) and rate-limit buckets
(``ratelimit:<key>``).  Without REDIS_URL ``redis_pool`` is None and
each consumer uses its in-memory twin.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from academy.core.config import SETTINGS

logger = logging.getLogger(__name__)

redis_pool: aioredis.Redis | None = (  # type: ignore[type-arg]
    aioredis.from_url(SETTINGS.redis_url, decode_responses=True, max_connections=20)
    if SETTINGS.redis_url
    else None
)


async def ping_redis() -> None:
    """Readiness probe; a no-op without Redis."""
    if redis_pool is not None:
        await redis_pool.ping()  # type: ignore[misc]


@asynccontextmanager
async def lifespan_redis():
    if redis_pool is None:
        logger.info("REDIS_URL not set, cache and rate limits are per process")
        yield
        return

    try:
        await ping_redis()
    except (RedisError, OSError) as exc:
        # Serve anyway; /ready reports redis as failed until it answers.
        logger.error("Redis unreachable at startup: %s", exc)
    else:
        logger.info("Redis connected")

    try:
        yield
    finally:
        await redis_pool.aclose()
        logger.info("Redis pool closed")
