from __future__ import annotations

import asyncio
import dataclasses
import json

import httpx
import pytest
from prometheus_client import REGISTRY

from academy.core.errors import RateLimited, TransientNetworkFailure
from academy.models.principal import Principal
from academy.repos.principal_repo import InMemoryPrincipalRepo
from academy.services.cache import InMemoryCacheService
from academy.services.membership_sync import (
    DEFAULT_RETRY_AFTER,
    GroupMembershipSync,
    parse_retry_after,
)

API = "https://discord.test/api/v10"
GUILD = "428530875085619200"


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _member_body(external_id: str, roles) -> dict:
    return {"user": {"id": external_id, "username": "ada"}, "roles": list(roles)}


def _run(handler, scenario, *, clock=None, bot_token: str = "bot-secret"):
    """Build a sync service over ``handler`` and run ``scenario(sync, repo, principal)``."""
    seen: list[httpx.Request] = []

    def _record(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    async def _main():
        repo = InMemoryPrincipalRepo()
        principal = dataclasses.replace(
            Principal.new(external_id="555"), group_ids=frozenset({"old"})
        )
        await repo.add(principal)
        cache = InMemoryCacheService(clock=clock or FakeClock())
        async with httpx.AsyncClient(transport=httpx.MockTransport(_record)) as client:
            sync = GroupMembershipSync(
                client, repo, cache, api_url=API, guild_id=GUILD, bot_token=bot_token
            )
            return await scenario(sync, repo, principal)

    return asyncio.run(_main()), seen


def _sample(outcome: str) -> float:
    value = REGISTRY.get_sample_value("membership_fetches_total", {"outcome": outcome})
    return value or 0.0


def test_fetch_live_success_uses_bot_credential() -> None:
    live, seen = _run(
        lambda r: httpx.Response(200, json=_member_body("555", ["g1", "g2"])),
        lambda sync, repo, p: sync.fetch_live(p),
    )
    assert live.is_member
    assert live.username == "ada"
    assert live.group_ids == frozenset({"g1", "g2"})
    assert str(seen[0].url) == f"{API}/guilds/{GUILD}/members/555"
    assert seen[0].headers["Authorization"] == "Bot bot-secret"


def test_fetch_live_empty_role_list_is_success() -> None:
    live, _ = _run(
        lambda r: httpx.Response(200, json=_member_body("555", [])),
        lambda sync, repo, p: sync.fetch_live(p),
    )
    assert live.is_member
    assert live.group_ids == frozenset()


def test_unknown_principal_is_zero_groups_not_error() -> None:
    before = _sample("not_member")
    live, _ = _run(
        lambda r: httpx.Response(404, json={"message": "Unknown Member"}),
        lambda sync, repo, p: sync.fetch_live(p),
    )
    assert live.is_member is False
    assert live.group_ids == frozenset()
    assert _sample("not_member") - before == 1


def test_rate_limited_surfaces_retry_after_and_does_not_retry() -> None:
    async def scenario(sync, repo, principal):
        with pytest.raises(RateLimited) as first:
            await sync.fetch_live(principal)
        with pytest.raises(RateLimited) as second:
            await sync.fetch_live(principal)
        return first.value, second.value

    (first, second), seen = _run(
        lambda r: httpx.Response(429, headers={"Retry-After": "45"}, json={"retry_after": 45}),
        scenario,
    )
    assert first.retry_after == 45
    # Inside the window: no request leaves the process.
    assert len(seen) == 1
    assert 0 < second.retry_after <= 45


def test_cool_down_expires_after_window() -> None:
    clock = FakeClock()
    responses = iter(
        [
            httpx.Response(429, headers={"Retry-After": "45"}),
            httpx.Response(200, json=_member_body("555", ["g1"])),
        ]
    )

    async def scenario(sync, repo, principal):
        with pytest.raises(RateLimited):
            await sync.fetch_live(principal)
        clock.now += 46
        return await sync.fetch_live(principal)

    live, seen = _run(lambda r: next(responses), scenario, clock=clock)
    assert live.group_ids == frozenset({"g1"})
    assert len(seen) == 2


def test_timeout_and_connection_failure_are_distinct() -> None:
    def timeout(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    def refused(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    async def scenario(sync, repo, principal):
        with pytest.raises(TransientNetworkFailure) as exc:
            await sync.fetch_live(principal)
        return exc.value

    timed_out, _ = _run(timeout, scenario)
    unreachable, _ = _run(refused, scenario)
    assert timed_out.timed_out is True
    assert unreachable.timed_out is False


def test_server_error_is_transient_failure() -> None:
    async def scenario(sync, repo, principal):
        with pytest.raises(TransientNetworkFailure):
            await sync.fetch_live(principal)

    _run(lambda r: httpx.Response(503, text="upstream down"), scenario)


@pytest.mark.parametrize(
    "body",
    [
        {"user": {"id": "555"}, "roles": "g1"},
        {"user": "ada", "roles": ["g1"]},
        ["g1"],
    ],
)
def test_malformed_member_body_is_transient_failure_and_stores_nothing(body) -> None:
    before = _sample("error")

    async def scenario(sync, repo, principal):
        with pytest.raises(TransientNetworkFailure) as exc:
            await sync.sync(principal)
        return exc.value, await repo.get_by_id(principal.id)

    (error, stored), _ = _run(lambda r: httpx.Response(200, json=body), scenario)
    assert error.detail == "unexpected provider body"
    assert stored.group_ids == frozenset({"old"})
    assert _sample("error") - before == 1


def test_missing_bot_token_never_calls_provider() -> None:
    async def scenario(sync, repo, principal):
        with pytest.raises(RuntimeError, match="DISCORD_BOT_TOKEN"):
            await sync.fetch_live(principal)

    _, seen = _run(lambda r: httpx.Response(200, json={}), scenario, bot_token="")
    assert seen == []


def test_sync_replaces_stored_groups() -> None:
    async def scenario(sync, repo, principal):
        updated = await sync.sync(principal)
        return updated, await repo.list_group_edges(principal.id)

    (updated, edges), _ = _run(
        lambda r: httpx.Response(200, json=_member_body("555", ["g1", "g2"])), scenario
    )
    assert updated.group_ids == frozenset({"g1", "g2"})
    assert [e.group_id for e in edges] == ["g1", "g2"]


def test_sync_for_non_member_clears_groups() -> None:
    async def scenario(sync, repo, principal):
        return await sync.sync(principal)

    updated, _ = _run(lambda r: httpx.Response(404), scenario)
    assert updated.group_ids == frozenset()


def test_reconcile_twice_is_idempotent() -> None:
    async def scenario(sync, repo, principal):
        first = await sync.reconcile(principal, frozenset({"g1", "g2"}))
        edges_first = await repo.list_group_edges(principal.id)
        second = await sync.reconcile(first, frozenset({"g1", "g2"}))
        edges_second = await repo.list_group_edges(principal.id)
        return first, second, edges_first, edges_second

    (first, second, edges_first, edges_second), seen = _run(
        lambda r: httpx.Response(500), scenario
    )
    assert first == second
    assert edges_first == edges_second
    assert seen == []


@pytest.mark.parametrize(
    ("headers", "body", "expected"),
    [
        ({"Retry-After": "45"}, None, 45),
        ({"Retry-After": "2.2"}, None, 3),
        ({}, {"retry_after": 7.5}, 8),
        ({}, None, DEFAULT_RETRY_AFTER),
        ({"Retry-After": "soon"}, None, DEFAULT_RETRY_AFTER),
    ],
)
def test_parse_retry_after(headers: dict, body, expected: int) -> None:
    content = json.dumps(body).encode() if body is not None else b""
    response = httpx.Response(429, headers=headers, content=content)
    assert parse_retry_after(response) == expected
