from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

from academy.models.audit import FailedSignIn
from academy.repos.failed_sign_in_repo import InMemoryFailedSignInRepo

T0 = datetime(2026, 1, 1, tzinfo=UTC)


def _entry(i: int) -> FailedSignIn:
    return FailedSignIn.new(
        client_key=f"ip:{i}",
        reason="http_status",
        status_code=401,
        occurred_at=T0 + timedelta(seconds=i),
    )


def test_recent_is_newest_first_and_limited() -> None:
    repo = InMemoryFailedSignInRepo()

    async def scenario():
        for i in range(5):
            await repo.record(_entry(i))
        return await repo.recent(3)

    assert [e.client_key for e in asyncio.run(scenario())] == ["ip:4", "ip:3", "ip:2"]


def test_oldest_entries_are_dropped_past_capacity() -> None:
    repo = InMemoryFailedSignInRepo(capacity=2)

    async def scenario():
        for i in range(3):
            await repo.record(_entry(i))
        return await repo.recent(10)

    assert [e.client_key for e in asyncio.run(scenario())] == ["ip:2", "ip:1"]


def test_new_entries_get_distinct_ids() -> None:
    assert _entry(1).id != _entry(1).id
