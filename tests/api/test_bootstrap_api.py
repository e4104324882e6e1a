from __future__ import annotations

import asyncio
import dataclasses

import pytest
from fastapi.testclient import TestClient

from academy.api import bootstrap
from academy.api import dependencies
from academy.api.dependencies import catalog_store, get_progress_aggregator, progress_store
from academy.main import app
from tests.conftest import auth_headers, create_principal, seed_course


def test_bootstrap_all_sections_ready(client: TestClient) -> None:
    principal = create_principal(group_ids={"g1"})
    seeded = seed_course(groups={"g1"})
    seed_course("other", groups={"g2"})
    headers = auth_headers(principal)
    client.post(f"/v1/progress/lessons/{seeded.lessons[0].id}/read", headers=headers)

    resp = client.get("/v1/bootstrap", headers=headers)
    assert resp.status_code == 200
    body = resp.json()
    assert body["ready"] is True
    assert set(body["states"].values()) == {"ready"}
    assert body["profile"]["id"] == str(principal.id)
    assert body["entitlements"] == [str(seeded.course.id)]
    assert body["progress"] == [
        {"course_id": str(seeded.course.id), "slug": "python-basics", "percent": 50}
    ]
    assert body["preferences"]["video_playback_speed"] == 1.0


class _BrokenAggregator:
    async def all_courses_progress(self, principal):
        raise ConnectionError("progress store down")


class _SlowAggregator:
    async def all_courses_progress(self, principal):
        await asyncio.sleep(5)
        return []


def test_failed_section_degrades_alone(client: TestClient) -> None:
    principal = create_principal(group_ids={"g1"})
    app.dependency_overrides[get_progress_aggregator] = _BrokenAggregator

    resp = client.get("/v1/bootstrap", headers=auth_headers(principal))
    assert resp.status_code == 200
    body = resp.json()
    assert body["ready"] is False
    assert body["states"]["progress"] == "failed"
    assert body["progress"] is None
    assert body["states"]["profile"] == "ready"
    assert body["profile"]["id"] == str(principal.id)


def test_slow_section_times_out(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        bootstrap,
        "SETTINGS",
        dataclasses.replace(bootstrap.SETTINGS, readiness_deadline_seconds=0.05),
    )
    principal = create_principal(group_ids={"g1"})
    app.dependency_overrides[get_progress_aggregator] = _SlowAggregator

    body = client.get("/v1/bootstrap", headers=auth_headers(principal)).json()
    assert body["states"]["progress"] == "timed_out"
    assert body["states"]["entitlements"] == "ready"


def test_bootstrap_requires_session(client: TestClient) -> None:
    assert client.get("/v1/bootstrap").status_code == 401


class _Session:
    """Fails the way an AsyncSession does when two statements overlap."""

    def __init__(self) -> None:
        self.busy = False
        self.statements = 0

    async def __aenter__(self) -> _Session:
        return self

    async def __aexit__(self, *exc_info) -> None:
        return None

    def begin(self) -> _Session:
        return self


class _SessionBoundRepo:
    def __init__(self, inner, session: _Session) -> None:
        self._inner = inner
        self._session = session

    def __getattr__(self, name: str):
        method = getattr(self._inner, name)

        async def call(*args, **kwargs):
            if self._session.busy:
                raise RuntimeError("another operation is in progress")
            self._session.busy = True
            try:
                await asyncio.sleep(0)
                self._session.statements += 1
                return await method(*args, **kwargs)
            finally:
                self._session.busy = False

        return call


def test_catalog_readers_never_share_a_session(
    client: TestClient, monkeypatch: pytest.MonkeyPatch
) -> None:
    opened: list[_Session] = []

    def session_factory() -> _Session:
        opened.append(_Session())
        return opened[-1]

    monkeypatch.setattr(dependencies, "async_session_factory", session_factory)
    monkeypatch.setattr(
        dependencies, "PgCatalogRepo", lambda s: _SessionBoundRepo(catalog_store, s)
    )
    monkeypatch.setattr(
        dependencies, "PgProgressRepo", lambda s: _SessionBoundRepo(progress_store, s)
    )
    principal = create_principal(group_ids={"g1"})
    seeded = seed_course(groups={"g1"})

    body = client.get("/v1/bootstrap", headers=auth_headers(principal)).json()
    assert body["ready"] is True
    assert body["entitlements"] == [str(seeded.course.id)]
    assert body["progress"][0]["percent"] == 0
    assert len(opened) == 2
    assert all(s.statements > 0 for s in opened)
