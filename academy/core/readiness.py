"""Bounded readiness gates.

A readiness gate answers "is everything this screen/probe needs
available?"  Each named check is an async callable; all of them run
concurrently and each one is wrapped in its own deadline, so a single
slow dependency ends as TIMED_OUT instead of stalling the aggregate.

Every check collapses to exactly one terminal state:

    READY      the check returned
    TIMED_OUT  the deadline elapsed and the check was cancelled
    FAILED     the check raised
"""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


class ReadinessState(enum.StrEnum):
    READY = "ready"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class Readiness:
    name: str
    state: ReadinessState
    value: Any = None
    detail: str | None = None

    @property
    def is_ready(self) -> bool:
        return self.state is ReadinessState.READY


@dataclass(frozen=True, slots=True)
class ReadinessReport:
    checks: dict[str, Readiness]

    @property
    def is_ready(self) -> bool:
        return all(c.is_ready for c in self.checks.values())

    def states(self) -> dict[str, str]:
        return {name: str(c.state) for name, c in self.checks.items()}


async def _run_check(
    name: str, check: Callable[[], Awaitable[Any]], deadline: float
) -> Readiness:
    try:
        value = await asyncio.wait_for(check(), timeout=deadline)
    except TimeoutError:
        logger.warning("Readiness check %s timed out after %.1fs", name, deadline)
        return Readiness(name, ReadinessState.TIMED_OUT, detail=f"> {deadline}s")
    except Exception as exc:
        logger.warning("Readiness check %s failed: %s", name, exc)
        return Readiness(name, ReadinessState.FAILED, detail=str(exc) or type(exc).__name__)
    return Readiness(name, ReadinessState.READY, value=value)


async def gather_readiness(
    checks: Mapping[str, Callable[[], Awaitable[Any]]],
    deadline: float,
) -> ReadinessReport:
    """Run all checks concurrently; each is bounded by ``deadline`` seconds."""
    names = list(checks)
    results = await asyncio.gather(
        *(_run_check(name, checks[name], deadline) for name in names)
    )
    return ReadinessReport(checks=dict(zip(names, results, strict=True)))
