from __future__ import annotations

import asyncio
import time

from academy.core.readiness import ReadinessState, gather_readiness


async def _value():
    return {"ok": True}


async def _slow():
    await asyncio.sleep(5)


async def _broken():
    raise ConnectionError("db down")


def test_all_checks_ready() -> None:
    report = asyncio.run(gather_readiness({"a": _value, "b": _value}, deadline=1.0))
    assert report.is_ready
    assert report.states() == {"a": "ready", "b": "ready"}
    assert report.checks["a"].value == {"ok": True}


def test_slow_check_times_out_without_stalling_others() -> None:
    start = time.monotonic()
    report = asyncio.run(
        gather_readiness({"fast": _value, "slow": _slow}, deadline=0.05)
    )
    elapsed = time.monotonic() - start

    assert elapsed < 2
    assert not report.is_ready
    assert report.checks["fast"].state is ReadinessState.READY
    assert report.checks["slow"].state is ReadinessState.TIMED_OUT
    assert report.checks["slow"].value is None


def test_raising_check_is_failed_with_detail() -> None:
    report = asyncio.run(gather_readiness({"db": _broken, "cache": _value}, deadline=1.0))
    assert report.states() == {"db": "failed", "cache": "ready"}
    assert report.checks["db"].detail == "db down"


def test_no_checks_is_ready() -> None:
    assert asyncio.run(gather_readiness({}, deadline=1.0)).is_ready
