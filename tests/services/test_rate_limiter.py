from __future__ import annotations

import asyncio

import pytest

from academy.services.rate_limiter import InMemoryRateLimiter, RateLimitConfig, take_token


class ManualClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_take_token_spends_one() -> None:
    tokens, result = take_token(3.0, 0.0, RateLimitConfig(capacity=3, refill_rate=1))
    assert tokens == 2.0
    assert result.allowed
    assert result.remaining == 2


def test_take_token_never_refills_past_capacity() -> None:
    tokens, _ = take_token(0.0, 10_000.0, RateLimitConfig(capacity=5, refill_rate=1))
    assert tokens == 4.0


def test_take_token_empty_bucket_reports_wait() -> None:
    tokens, result = take_token(0.5, 0.0, RateLimitConfig(capacity=5, refill_rate=0.25))
    assert not result.allowed
    assert result.remaining == 0
    assert result.retry_after == pytest.approx(2.0)
    assert tokens == 0.5


def test_burst_then_refill() -> None:
    clock = ManualClock()
    limiter = InMemoryRateLimiter(clock=clock)
    config = RateLimitConfig(capacity=5, refill_rate=1 / 12)

    async def burst(n: int) -> list[bool]:
        return [(await limiter.check("ip:1", config)).allowed for _ in range(n)]

    assert asyncio.run(burst(6)) == [True] * 5 + [False]

    clock.now += 12
    assert asyncio.run(burst(2)) == [True, False]


def test_keys_are_independent() -> None:
    limiter = InMemoryRateLimiter(clock=ManualClock())
    config = RateLimitConfig(capacity=1, refill_rate=0.1)

    async def run() -> tuple[bool, bool, bool]:
        a1 = (await limiter.check("ip:a", config)).allowed
        a2 = (await limiter.check("ip:a", config)).allowed
        b1 = (await limiter.check("ip:b", config)).allowed
        return a1, a2, b1

    assert asyncio.run(run()) == (True, False, True)
