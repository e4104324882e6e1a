from __future__ import annotations

import enum
from dataclasses import dataclass
from uuid import UUID, uuid4


class MediaKind(enum.StrEnum):
    TEXT = "text"
    VIDEO = "video"
    AUDIO = "audio"


@dataclass(frozen=True, slots=True)
class Course:
    id: UUID
    slug: str
    title: str
    description: str = ""

    @staticmethod
    def new(*, slug: str, title: str, description: str = "") -> Course:
        return Course(id=uuid4(), slug=slug, title=title, description=description)


@dataclass(frozen=True, slots=True)
class CourseModule:
    id: UUID
    course_id: UUID
    slug: str
    title: str
    order_index: int

    @staticmethod
    def new(*, course_id: UUID, slug: str, title: str, order_index: int) -> CourseModule:
        return CourseModule(
            id=uuid4(),
            course_id=course_id,
            slug=slug,
            title=title,
            order_index=order_index,
        )


@dataclass(frozen=True, slots=True)
class Lesson:
    id: UUID
    module_id: UUID
    slug: str
    title: str
    order_index: int
    media_kind: MediaKind = MediaKind.TEXT

    @staticmethod
    def new(
        *,
        module_id: UUID,
        slug: str,
        title: str,
        order_index: int,
        media_kind: MediaKind = MediaKind.TEXT,
    ) -> Lesson:
        return Lesson(
            id=uuid4(),
            module_id=module_id,
            slug=slug,
            title=title,
            order_index=order_index,
            media_kind=media_kind,
        )


@dataclass(frozen=True, slots=True)
class CourseGroupMapping:
    course_id: UUID
    group_id: str
