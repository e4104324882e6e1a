from __future__ import annotations

import asyncio

from fastapi.testclient import TestClient

from academy.api.dependencies import catalog_store
from academy.main import SAMPLE_GROUP_ID, app, seed_sample_catalog
from tests.conftest import auth_headers, create_principal


def test_sample_catalog_shape() -> None:
    asyncio.run(seed_sample_catalog(catalog_store))

    courses = asyncio.run(catalog_store.list_courses())
    assert [c.slug for c in courses] == ["getting-started"]
    course = courses[0]
    modules = asyncio.run(catalog_store.modules_for_course(course.id))
    assert [(m.slug, m.order_index) for m in modules] == [("basics", 0), ("extras", 1)]
    lessons = asyncio.run(catalog_store.lessons_for_course(course.id))
    assert [(le.slug, str(le.media_kind)) for le in lessons] == [
        ("welcome", "text"),
        ("first-video", "video"),
        ("podcast", "audio"),
    ]
    assert asyncio.run(catalog_store.mapped_groups(course.id)) == frozenset({SAMPLE_GROUP_ID})


def test_seed_is_idempotent() -> None:
    asyncio.run(seed_sample_catalog(catalog_store))
    asyncio.run(seed_sample_catalog(catalog_store))
    assert len(asyncio.run(catalog_store.list_courses())) == 1


def test_sample_group_member_sees_seeded_course() -> None:
    asyncio.run(seed_sample_catalog(catalog_store))
    principal = create_principal(group_ids={SAMPLE_GROUP_ID})

    resp = TestClient(app).get("/v1/courses", headers=auth_headers(principal))
    assert resp.status_code == 200
    assert [c["slug"] for c in resp.json()] == ["getting-started"]


def test_every_response_carries_request_id() -> None:
    resp = TestClient(app).get("/health")
    assert resp.headers["X-Request-ID"]
