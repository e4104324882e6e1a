from __future__ import annotations

import asyncio
import dataclasses
from collections.abc import Callable, Iterable, Iterator

import httpx
import pytest
from fastapi.testclient import TestClient

from academy.api import dependencies
from academy.api.dependencies import (
    catalog_store,
    failed_sign_in_store,
    get_http_client,
    principal_store,
    progress_locks,
    progress_store,
)
from academy.api.ratelimit import _rate_limiter
from academy.main import app
from academy.models.course import Course, CourseModule, Lesson, MediaKind
from academy.models.principal import Principal
from academy.services import token_service
from academy.services.cache import cache_service

# A plausible provider token: long enough to pass the pre-network check.
VALID_TOKEN = "provider-token-0123456789abcdef"

DEFAULT_EXTERNAL_ID = "100200300400500600"


@pytest.fixture(autouse=True)
def reset_identity_state() -> None:
    principal_store._by_id.clear()
    principal_store._by_external_id.clear()
    principal_store._edges.clear()


@pytest.fixture(autouse=True)
def reset_catalog_state() -> None:
    catalog_store._courses.clear()
    catalog_store._modules.clear()
    catalog_store._lessons.clear()
    catalog_store._course_groups.clear()


@pytest.fixture(autouse=True)
def reset_progress_state() -> None:
    progress_store._store.clear()
    progress_locks._locks.clear()
    progress_locks._users.clear()


@pytest.fixture(autouse=True)
def reset_failed_sign_ins() -> None:
    failed_sign_in_store._entries.clear()


@pytest.fixture(autouse=True)
def reset_rate_limiter() -> None:
    """Clear rate limit buckets between tests so limits don't bleed."""
    if hasattr(_rate_limiter, "_buckets"):
        _rate_limiter._buckets.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_cache() -> None:
    """Clears the membership cool-down and sign-in failure counters."""
    if hasattr(cache_service, "_store"):
        cache_service._store.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_dependency_overrides() -> Iterator[None]:
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


@pytest.fixture
def override_settings(monkeypatch: pytest.MonkeyPatch) -> Callable[..., object]:
    """Swap fields of the settings the request dependencies read."""

    def _apply(**changes):
        updated = dataclasses.replace(dependencies.SETTINGS, **changes)
        monkeypatch.setattr(dependencies, "SETTINGS", updated)
        return updated

    return _apply


# ---------------------------------------------------------------------------
# Outbound HTTP
# ---------------------------------------------------------------------------


def mock_http(handler: Callable[[httpx.Request], httpx.Response]) -> list[httpx.Request]:
    """Route the app's outbound client through ``handler``; returns the request log."""
    seen: list[httpx.Request] = []

    def _record(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    async def _client():
        async with httpx.AsyncClient(transport=httpx.MockTransport(_record)) as c:
            yield c

    app.dependency_overrides[get_http_client] = _client
    return seen


def identity_payload(
    external_id: str = DEFAULT_EXTERNAL_ID,
    *,
    username: str = "learner",
    avatar: str | None = None,
    roles: Iterable[str] = ("g1",),
    is_admin: bool = False,
) -> dict:
    return {
        "discord_id": external_id,
        "discord_username": username,
        "discord_avatar": avatar,
        "roles": list(roles),
        "is_admin": is_admin,
    }


# ---------------------------------------------------------------------------
# Principals
# ---------------------------------------------------------------------------


def create_principal(
    external_id: str = DEFAULT_EXTERNAL_ID,
    *,
    group_ids: Iterable[str] = (),
    is_admin: bool = False,
    display_name: str = "learner",
) -> Principal:
    principal = dataclasses.replace(
        Principal.new(external_id=external_id, display_name=display_name, is_admin=is_admin),
        group_ids=frozenset(group_ids),
    )
    asyncio.run(principal_store.add(principal))
    return principal


def mint_token(principal: Principal) -> str:
    """Create a valid session token for ``principal``."""
    return token_service.create_access_token(sub=str(principal.id))


def auth_headers(principal: Principal) -> dict[str, str]:
    return {"Authorization": f"Bearer {mint_token(principal)}"}


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


@dataclasses.dataclass
class SeededCourse:
    course: Course
    modules: list[CourseModule]
    lessons: list[Lesson]


def seed_course(
    slug: str = "python-basics",
    *,
    groups: Iterable[str] = ("g1",),
    modules: Iterable[tuple[str, Iterable[MediaKind]]] = (
        ("intro", (MediaKind.TEXT, MediaKind.VIDEO)),
    ),
) -> SeededCourse:
    """Add a course to the in-memory catalog, one lesson per media kind listed."""

    async def _seed() -> SeededCourse:
        course = await catalog_store.add_course(slug=slug, title=slug.replace("-", " ").title())
        seeded = SeededCourse(course=course, modules=[], lessons=[])
        for module_slug, kinds in modules:
            module = await catalog_store.add_module(
                course.id, slug=module_slug, title=module_slug.title()
            )
            seeded.modules.append(module)
            for index, kind in enumerate(kinds):
                seeded.lessons.append(
                    await catalog_store.add_lesson(
                        module.id,
                        slug=f"{module_slug}-{index}",
                        title=f"{module_slug} {index}",
                        media_kind=kind,
                    )
                )
        await catalog_store.set_course_groups(course.id, frozenset(groups))
        return seeded

    return asyncio.run(_seed())
