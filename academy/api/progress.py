"""Lesson progress writes and learner-wide progress reads.

Every write returns the stored record, so the client never has to
re-read to learn whether a position event auto-completed the lesson.
"""

from __future__ import annotations

import math
from datetime import datetime
from uuid import UUID

from fastapi import APIRouter
from pydantic import BaseModel, Field, field_validator

from academy.api.dependencies import AggregatorDep, CurrentPrincipal, ResolverDep
from academy.models.progress import ProgressRecord

router = APIRouter(prefix="/v1/progress", tags=["progress"])


class ProgressIn(BaseModel):
    completed: bool
    last_position: float = Field(ge=0.0, le=1.0)


class PositionIn(BaseModel):
    """Playback fraction for media lessons, scroll fraction for text."""

    position: float

    @field_validator("position")
    @classmethod
    def _finite(cls, value: float) -> float:
        if math.isnan(value) or math.isinf(value):
            raise ValueError("position must be a finite number")
        return value


class ProgressOut(BaseModel):
    lesson_id: str
    completed: bool
    last_position: float
    updated_at: datetime

    @classmethod
    def from_record(cls, record: ProgressRecord) -> ProgressOut:
        return cls(
            lesson_id=str(record.lesson_id),
            completed=record.completed,
            last_position=record.last_position,
            updated_at=record.updated_at,
        )


class CourseProgressOut(BaseModel):
    course_id: str
    slug: str
    title: str
    percent: int


class LastVisitedOut(BaseModel):
    course_id: str
    course_slug: str
    module_id: str
    module_slug: str
    lesson_id: str
    lesson_slug: str
    completed: bool
    last_position: float
    updated_at: datetime
    has_access: bool


@router.put("/lessons/{lesson_id}", response_model=ProgressOut)
async def upsert_progress(
    lesson_id: UUID, body: ProgressIn, principal: CurrentPrincipal, aggregator: AggregatorDep
) -> ProgressOut:
    record = await aggregator.upsert_progress(
        principal, lesson_id, completed=body.completed, position=body.last_position
    )
    return ProgressOut.from_record(record)


@router.post("/lessons/{lesson_id}/position", response_model=ProgressOut)
async def record_position(
    lesson_id: UUID, body: PositionIn, principal: CurrentPrincipal, aggregator: AggregatorDep
) -> ProgressOut:
    record = await aggregator.record_position(principal, lesson_id, body.position)
    return ProgressOut.from_record(record)


@router.post("/lessons/{lesson_id}/read", response_model=ProgressOut)
async def mark_read(
    lesson_id: UUID, principal: CurrentPrincipal, aggregator: AggregatorDep
) -> ProgressOut:
    return ProgressOut.from_record(await aggregator.mark_read(principal, lesson_id))


@router.post("/lessons/{lesson_id}/toggle", response_model=ProgressOut)
async def toggle_completion(
    lesson_id: UUID, principal: CurrentPrincipal, aggregator: AggregatorDep
) -> ProgressOut:
    return ProgressOut.from_record(await aggregator.toggle_completion(principal, lesson_id))


@router.get("/summary", response_model=list[CourseProgressOut])
async def progress_summary(
    principal: CurrentPrincipal, aggregator: AggregatorDep
) -> list[CourseProgressOut]:
    return [
        CourseProgressOut(
            course_id=str(c.course.id), slug=c.course.slug, title=c.course.title, percent=c.percent
        )
        for c in await aggregator.all_courses_progress(principal)
    ]


@router.get("/last-visited", response_model=LastVisitedOut | None)
async def last_visited(
    principal: CurrentPrincipal, aggregator: AggregatorDep, resolver: ResolverDep
) -> LastVisitedOut | None:
    """Newest record, or null.  ``has_access`` is re-checked here for the link."""
    visited = await aggregator.last_visited(principal)
    if visited is None:
        return None
    return LastVisitedOut(
        course_id=str(visited.course.id),
        course_slug=visited.course.slug,
        module_id=str(visited.module.id),
        module_slug=visited.module.slug,
        lesson_id=str(visited.lesson.id),
        lesson_slug=visited.lesson.slug,
        completed=visited.record.completed,
        last_position=visited.record.last_position,
        updated_at=visited.record.updated_at,
        has_access=await resolver.has_access(principal, visited.course.id),
    )
