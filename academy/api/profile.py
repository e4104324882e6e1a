"""Principal profile and UI preferences.

GET   /auth/me              the authenticated principal
GET   /auth/me/preferences  preferences merged over defaults
PATCH /auth/me/preferences  partial update

Preferences live under ``settings["preferences"]``; other keys in the
settings blob are left untouched.
"""

from __future__ import annotations

import logging
from typing import Any
from uuid import UUID

from fastapi import APIRouter
from pydantic import BaseModel, Field

from academy.api.dependencies import CurrentPrincipal, PrincipalRepoDep, ResolverDep
from academy.models.principal import Principal

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth/me", tags=["profile"])

_PREFERENCES_KEY = "preferences"


class PrincipalOut(BaseModel):
    id: str
    external_id: str
    display_name: str
    avatar_ref: str | None
    is_admin: bool
    group_ids: list[str]
    has_memberships: bool

    @classmethod
    def from_principal(cls, principal: Principal, *, is_admin: bool) -> PrincipalOut:
        return cls(
            id=str(principal.id),
            external_id=principal.external_id,
            display_name=principal.display_name,
            avatar_ref=principal.avatar_ref,
            is_admin=is_admin,
            group_ids=sorted(principal.group_ids),
            has_memberships=principal.has_memberships,
        )


class Preferences(BaseModel):
    video_playback_speed: float = Field(default=1.0, ge=0.25, le=4.0)
    sidebar_expanded: bool = True
    collapsed_modules: list[str] = Field(default_factory=list)
    last_visited_course_id: UUID | None = None
    last_visited_module_id: UUID | None = None
    last_visited_lesson_id: UUID | None = None


class PreferencesPatch(BaseModel):
    video_playback_speed: float | None = Field(default=None, ge=0.25, le=4.0)
    sidebar_expanded: bool | None = None
    collapsed_modules: list[str] | None = None
    last_visited_course_id: UUID | None = None
    last_visited_module_id: UUID | None = None
    last_visited_lesson_id: UUID | None = None


def load_preferences(principal: Principal) -> Preferences:
    """Stored preferences over defaults.  Unknown or invalid keys are dropped."""
    stored: dict[str, Any] = principal.settings.get(_PREFERENCES_KEY) or {}
    merged = Preferences().model_dump()
    for key, value in stored.items():
        if key in merged:
            merged[key] = value
    try:
        return Preferences.model_validate(merged)
    except ValueError:
        logger.warning("Discarding invalid stored preferences for principal=%s", principal.id)
        return Preferences()


@router.get("", response_model=PrincipalOut)
async def get_me(principal: CurrentPrincipal, resolver: ResolverDep) -> PrincipalOut:
    return PrincipalOut.from_principal(principal, is_admin=resolver.is_admin(principal))


@router.get("/preferences", response_model=Preferences)
async def get_preferences(principal: CurrentPrincipal) -> Preferences:
    return load_preferences(principal)


@router.patch("/preferences", response_model=Preferences)
async def update_preferences(
    body: PreferencesPatch,
    principal: CurrentPrincipal,
    principals: PrincipalRepoDep,
) -> Preferences:
    changes = {
        key: value
        for key, value in body.model_dump(exclude_unset=True).items()
        # null clears a last-visited pointer, never a setting with a default
        if value is not None or key.startswith("last_visited_")
    }
    updated = Preferences.model_validate({**load_preferences(principal).model_dump(), **changes})

    settings = dict(principal.settings)
    settings[_PREFERENCES_KEY] = updated.model_dump(mode="json")
    await principals.update_settings(principal.id, settings)
    return updated
