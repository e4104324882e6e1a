"""Short-lived shared state with a TTL.

Two consumers:

  * GroupMembershipSync stores the provider's Retry-After window here
    after a 429, so no instance calls the provider again until it
    elapses.
  * The sign-in flow counts failed validations per client, so retries
    are bounded across instances.

Every entry carries a TTL so nothing outlives its window even if an
explicit delete is skipped.  Redis when configured, in-memory otherwise.
"""

from __future__ import annotations

import time
from typing import Protocol, runtime_checkable

from academy.db.redis import redis_pool


@runtime_checkable
class CacheService(Protocol):
    async def get(self, key: str) -> str | None:
        """Fetch a cached value.  Returns None on miss or after expiry."""
        ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def incr(self, key: str, ttl_seconds: int) -> int:
        """Increment a counter, starting the TTL on first increment."""
        ...

    async def ttl(self, key: str) -> int:
        """Seconds until ``key`` expires; 0 when missing."""
        ...


class InMemoryCacheService:
    """In-memory cache that honours TTLs against a monotonic clock."""

    def __init__(self, clock=time.monotonic) -> None:
        self._store: dict[str, tuple[str, float]] = {}
        self._clock = clock

    def _live(self, key: str) -> tuple[str, float] | None:
        entry = self._store.get(key)
        if entry is None:
            return None
        if entry[1] <= self._clock():
            del self._store[key]
            return None
        return entry

    async def get(self, key: str) -> str | None:
        entry = self._live(key)
        return None if entry is None else entry[0]

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._store[key] = (value, self._clock() + ttl_seconds)

    async def delete(self, key: str) -> None:
        self._store.pop(key, None)

    async def incr(self, key: str, ttl_seconds: int) -> int:
        entry = self._live(key)
        if entry is None:
            self._store[key] = ("1", self._clock() + ttl_seconds)
            return 1
        value = int(entry[0]) + 1
        self._store[key] = (str(value), entry[1])
        return value

    async def ttl(self, key: str) -> int:
        entry = self._live(key)
        if entry is None:
            return 0
        remaining = entry[1] - self._clock()
        # Round up: a window with 0.2s left is still closed.
        return max(1, int(remaining) + (remaining % 1 > 0))


class RedisCacheService:
    """Redis-backed cache, shared across all API instances."""

    # Key prefix prevents collisions with the rate limiter buckets.
    _PREFIX = "cache:"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    async def get(self, key: str) -> str | None:
        return await self._redis.get(f"{self._PREFIX}{key}")

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self._redis.setex(f"{self._PREFIX}{key}", ttl_seconds, value)

    async def delete(self, key: str) -> None:
        await self._redis.delete(f"{self._PREFIX}{key}")

    async def incr(self, key: str, ttl_seconds: int) -> int:
        full_key = f"{self._PREFIX}{key}"
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.incr(full_key)
            # NX: only the first increment starts the window.
            pipe.expire(full_key, ttl_seconds, nx=True)
            value, _ = await pipe.execute()
        return int(value)

    async def ttl(self, key: str) -> int:
        remaining = await self._redis.ttl(f"{self._PREFIX}{key}")
        return max(0, int(remaining))


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

if redis_pool is not None:
    cache_service: CacheService = RedisCacheService(redis_pool)
else:
    cache_service = InMemoryCacheService()
