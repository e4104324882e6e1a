from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from academy.models.course import Course, CourseModule, Lesson


@dataclass(frozen=True, slots=True)
class ProgressRecord:
    """One record per (principal, lesson).  Upserted, never appended."""

    principal_id: UUID
    lesson_id: UUID
    completed: bool
    last_position: float
    updated_at: datetime


@dataclass(frozen=True, slots=True)
class ModuleCompletion:
    module: CourseModule
    percent: int
    completed_lessons: int
    total_lessons: int


@dataclass(frozen=True, slots=True)
class CourseCompletion:
    course: Course
    percent: int
    completed_lessons: int
    total_lessons: int


@dataclass(frozen=True, slots=True)
class LastVisited:
    """The (course, module, lesson) triple behind the newest progress record.

    Resolved without an entitlement check; callers re-check access
    before rendering a link.
    """

    course: Course
    module: CourseModule
    lesson: Lesson
    record: ProgressRecord
