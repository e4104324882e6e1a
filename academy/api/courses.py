"""Course catalog as seen by the authenticated principal.

GET /v1/courses                     entitled courses with completion
GET /v1/courses/{course_id}         module/lesson tree with completion
GET /v1/courses/{course_id}/access  entitlement decision and its reason
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter
from pydantic import BaseModel

from academy.api.dependencies import (
    AggregatorDep,
    CatalogRepoDep,
    CurrentPrincipal,
    ProgressRepoDep,
    ResolverDep,
)
from academy.core.errors import NotFound

router = APIRouter(prefix="/v1/courses", tags=["courses"])


class CourseOut(BaseModel):
    id: str
    slug: str
    title: str
    description: str
    percent: int
    completed_lessons: int
    total_lessons: int


class LessonOut(BaseModel):
    id: str
    slug: str
    title: str
    order_index: int
    media_kind: str
    completed: bool
    last_position: float


class ModuleOut(BaseModel):
    id: str
    slug: str
    title: str
    order_index: int
    percent: int
    lessons: list[LessonOut]


class CourseDetailOut(CourseOut):
    modules: list[ModuleOut]


class AccessOut(BaseModel):
    course_id: str
    has_access: bool
    reason: str


@router.get("", response_model=list[CourseOut])
async def list_courses(principal: CurrentPrincipal, aggregator: AggregatorDep) -> list[CourseOut]:
    return [
        CourseOut(
            id=str(c.course.id),
            slug=c.course.slug,
            title=c.course.title,
            description=c.course.description,
            percent=c.percent,
            completed_lessons=c.completed_lessons,
            total_lessons=c.total_lessons,
        )
        for c in await aggregator.all_courses_progress(principal)
    ]


@router.get("/{course_id}", response_model=CourseDetailOut)
async def get_course(
    course_id: UUID,
    principal: CurrentPrincipal,
    resolver: ResolverDep,
    aggregator: AggregatorDep,
    catalog: CatalogRepoDep,
    progress: ProgressRepoDep,
) -> CourseDetailOut:
    await resolver.require_course(principal, course_id)
    completion = await aggregator.course_completion(principal, course_id)
    modules = await aggregator.module_completions(principal, course_id)

    lessons = await catalog.lessons_for_course(course_id)
    records = {
        r.lesson_id: r
        for r in await progress.list_for_principal(principal.id, {le.id for le in lessons})
    }

    module_views = []
    for mc in modules:
        lesson_views = []
        for lesson in await catalog.lessons_for_module(mc.module.id):
            record = records.get(lesson.id)
            lesson_views.append(
                LessonOut(
                    id=str(lesson.id),
                    slug=lesson.slug,
                    title=lesson.title,
                    order_index=lesson.order_index,
                    media_kind=str(lesson.media_kind),
                    completed=record.completed if record else False,
                    last_position=record.last_position if record else 0.0,
                )
            )
        module_views.append(
            ModuleOut(
                id=str(mc.module.id),
                slug=mc.module.slug,
                title=mc.module.title,
                order_index=mc.module.order_index,
                percent=mc.percent,
                lessons=lesson_views,
            )
        )

    course = completion.course
    return CourseDetailOut(
        id=str(course.id),
        slug=course.slug,
        title=course.title,
        description=course.description,
        percent=completion.percent,
        completed_lessons=completion.completed_lessons,
        total_lessons=completion.total_lessons,
        modules=module_views,
    )


@router.get("/{course_id}/access", response_model=AccessOut)
async def get_access(
    course_id: UUID,
    principal: CurrentPrincipal,
    resolver: ResolverDep,
    catalog: CatalogRepoDep,
) -> AccessOut:
    if await catalog.get_course(course_id) is None:
        raise NotFound("course", course_id)
    decision = await resolver.decide(principal, course_id)
    return AccessOut(
        course_id=str(course_id), has_access=decision.granted, reason=str(decision.reason)
    )
