"""Administrator actions.

Membership refresh is on demand only: the provider's rate limit is
shared by every principal, so nothing here loops or schedules.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Query
from pydantic import BaseModel

from academy.api.dependencies import (
    AdminPrincipal,
    CatalogRepoDep,
    FailedSignInRepoDep,
    MembershipSyncDep,
    PrincipalRepoDep,
)
from academy.core.errors import NotFound
from academy.models.audit import FailedSignIn
from academy.models.principal import Principal

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


class LiveMembershipOut(BaseModel):
    principal_id: str
    external_id: str
    username: str | None
    is_member: bool
    group_ids: list[str]


class SyncOut(BaseModel):
    principal_id: str
    group_ids: list[str]
    added: list[str]
    removed: list[str]


class CourseGroupsIn(BaseModel):
    group_ids: list[str]


class CourseGroupsOut(BaseModel):
    course_id: str
    group_ids: list[str]


class FailedSignInOut(BaseModel):
    id: str
    client_key: str
    reason: str
    status_code: int | None
    external_id: str | None
    occurred_at: datetime

    @classmethod
    def from_entry(cls, entry: FailedSignIn) -> FailedSignInOut:
        return cls(
            id=str(entry.id),
            client_key=entry.client_key,
            reason=entry.reason,
            status_code=entry.status_code,
            external_id=entry.external_id,
            occurred_at=entry.occurred_at,
        )


async def _load_principal(principals: PrincipalRepoDep, principal_id: UUID) -> Principal:
    principal = await principals.get_by_id(principal_id)
    if principal is None:
        raise NotFound("principal", principal_id)
    return principal


@router.get("/principals/{principal_id}/memberships/live", response_model=LiveMembershipOut)
async def fetch_live_memberships(
    principal_id: UUID,
    admin: AdminPrincipal,
    principals: PrincipalRepoDep,
    membership: MembershipSyncDep,
) -> LiveMembershipOut:
    target = await _load_principal(principals, principal_id)
    logger.info("Live membership fetch for principal=%s by admin=%s", target.id, admin.id)
    live = await membership.fetch_live(target)
    return LiveMembershipOut(
        principal_id=str(target.id),
        external_id=live.external_id,
        username=live.username,
        is_member=live.is_member,
        group_ids=sorted(live.group_ids),
    )


@router.post("/principals/{principal_id}/memberships/sync", response_model=SyncOut)
async def sync_memberships(
    principal_id: UUID,
    admin: AdminPrincipal,
    principals: PrincipalRepoDep,
    membership: MembershipSyncDep,
) -> SyncOut:
    target = await _load_principal(principals, principal_id)
    logger.info("Membership sync for principal=%s by admin=%s", target.id, admin.id)
    updated = await membership.sync(target)
    return SyncOut(
        principal_id=str(updated.id),
        group_ids=sorted(updated.group_ids),
        added=sorted(updated.group_ids - target.group_ids),
        removed=sorted(target.group_ids - updated.group_ids),
    )


@router.put("/courses/{course_id}/groups", response_model=CourseGroupsOut)
async def set_course_groups(
    course_id: UUID,
    body: CourseGroupsIn,
    admin: AdminPrincipal,
    catalog: CatalogRepoDep,
) -> CourseGroupsOut:
    if await catalog.get_course(course_id) is None:
        raise NotFound("course", course_id)
    groups = frozenset(g.strip() for g in body.group_ids if g.strip())
    await catalog.set_course_groups(course_id, groups)
    logger.info(
        "Course groups set course=%s count=%d by admin=%s", course_id, len(groups), admin.id
    )
    return CourseGroupsOut(course_id=str(course_id), group_ids=sorted(groups))


@router.get("/failed-sign-ins", response_model=list[FailedSignInOut])
async def recent_failed_sign_ins(
    admin: AdminPrincipal,
    audit: FailedSignInRepoDep,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
) -> list[FailedSignInOut]:
    """Newest first."""
    entries = await audit.recent(limit)
    return [FailedSignInOut.from_entry(e) for e in entries]
