"""Token buckets guarding the sign-in endpoint.

Every sign-in costs one outbound validation call made for a client we
cannot identify yet, so that route is bucketed per client.  A bucket
holds at most ``capacity`` tokens, refills continuously at
``refill_rate`` tokens per second, and each request takes one.
"""

from __future__ import annotations

import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True, slots=True)
class RateLimitConfig:
    capacity: int = 10
    refill_rate: float = 0.2


@dataclass(frozen=True, slots=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    limit: int
    retry_after: float  # seconds; 0 when allowed


class RateLimiter(Protocol):
    async def check(self, key: str, config: RateLimitConfig) -> RateLimitResult: ...


def take_token(
    tokens: float, elapsed: float, config: RateLimitConfig
) -> tuple[float, RateLimitResult]:
    """Refill for ``elapsed`` seconds, then try to spend one token.

    Returns the new token count and the decision.
    """
    tokens = min(float(config.capacity), tokens + max(elapsed, 0.0) * config.refill_rate)
    if tokens >= 1:
        tokens -= 1
        return tokens, RateLimitResult(True, math.floor(tokens), config.capacity, 0.0)
    wait = (1 - tokens) / config.refill_rate
    return tokens, RateLimitResult(False, 0, config.capacity, wait)


class InMemoryRateLimiter:
    """Per-process buckets.  Each replica counts on its own."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        # key -> (tokens, observed_at)
        self._buckets: dict[str, tuple[float, float]] = {}

    async def check(self, key: str, config: RateLimitConfig) -> RateLimitResult:
        now = self._clock()
        tokens, seen = self._buckets.get(key, (float(config.capacity), now))
        tokens, result = take_token(tokens, now - seen, config)
        self._buckets[key] = (tokens, now)
        return result


class RedisRateLimiter:
    """Buckets in Redis, shared by every replica.

    Refill and spend run inside one script so concurrent replicas never
    spend the same token twice.
    """

    # KEYS[1] bucket; ARGV capacity, refill_rate, now_ms
    # -> {allowed, remaining, retry_after_ms}
    _SCRIPT = """
    local cap = tonumber(ARGV[1])
    local rate = tonumber(ARGV[2])
    local now = tonumber(ARGV[3])
    local state = redis.call('HMGET', KEYS[1], 't', 'ts')
    local t = tonumber(state[1]) or cap
    local ts = tonumber(state[2]) or now
    t = math.min(cap, t + math.max(now - ts, 0) / 1000 * rate)
    local ok = 0
    local wait = 0
    if t >= 1 then
        t = t - 1
        ok = 1
    else
        wait = math.ceil((1 - t) / rate * 1000)
    end
    redis.call('HSET', KEYS[1], 't', t, 'ts', now)
    redis.call('PEXPIRE', KEYS[1], math.ceil(cap / rate * 1000) + 60000)
    return {ok, math.floor(t), wait}
    """

    def __init__(self, redis_client, *, prefix: str = "ratelimit:") -> None:
        self._redis = redis_client
        self._prefix = prefix
        self._script = redis_client.register_script(self._SCRIPT)

    async def check(self, key: str, config: RateLimitConfig) -> RateLimitResult:
        allowed, remaining, wait_ms = await self._script(
            keys=[self._prefix + key],
            args=[config.capacity, config.refill_rate, int(time.time() * 1000)],
        )
        return RateLimitResult(bool(allowed), int(remaining), config.capacity, wait_ms / 1000)
