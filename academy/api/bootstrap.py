"""GET /v1/bootstrap: everything the application shell needs, in one call.

Profile, entitlements, progress and preferences are loaded concurrently
through a readiness gate; the two that read the catalog each get their
own reader scope.  The response is always 200; each section
reports ``ready``, ``timed_out`` or ``failed`` and carries a value only
when ready, so one slow dependency degrades one section instead of the
whole shell.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter
from pydantic import BaseModel

from academy.api.dependencies import CurrentPrincipal, ReaderScopeDep, ResolverDep
from academy.api.profile import PrincipalOut, load_preferences
from academy.core.config import SETTINGS
from academy.core.readiness import gather_readiness

router = APIRouter(prefix="/v1", tags=["bootstrap"])


class BootstrapOut(BaseModel):
    ready: bool
    states: dict[str, str]
    profile: dict[str, Any] | None = None
    entitlements: list[str] | None = None
    progress: list[dict[str, Any]] | None = None
    preferences: dict[str, Any] | None = None


@router.get("/bootstrap", response_model=BootstrapOut)
async def bootstrap(
    principal: CurrentPrincipal, resolver: ResolverDep, readers: ReaderScopeDep
) -> BootstrapOut:
    async def profile() -> dict[str, Any]:
        return PrincipalOut.from_principal(
            principal, is_admin=resolver.is_admin(principal)
        ).model_dump()

    async def entitlements() -> list[str]:
        async with readers() as (own_resolver, _):
            courses = await own_resolver.accessible_courses(principal)
        return sorted(str(cid) for cid in courses)

    async def progress() -> list[dict[str, Any]]:
        async with readers() as (_, aggregator):
            summary = await aggregator.all_courses_progress(principal)
        return [
            {"course_id": str(c.course.id), "slug": c.course.slug, "percent": c.percent}
            for c in summary
        ]

    async def preferences() -> dict[str, Any]:
        return load_preferences(principal).model_dump(mode="json")

    report = await gather_readiness(
        {
            "profile": profile,
            "entitlements": entitlements,
            "progress": progress,
            "preferences": preferences,
        },
        SETTINGS.readiness_deadline_seconds,
    )
    values = {name: check.value for name, check in report.checks.items() if check.is_ready}
    return BootstrapOut(ready=report.is_ready, states=report.states(), **values)
