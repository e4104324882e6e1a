from __future__ import annotations

from dataclasses import replace
from typing import Protocol
from uuid import UUID

from academy.models.course import Course, CourseModule, Lesson, MediaKind


class CatalogRepo(Protocol):
    async def list_courses(self) -> list[Course]: ...
    async def get_course(self, course_id: UUID) -> Course | None: ...
    async def get_module(self, module_id: UUID) -> CourseModule | None: ...
    async def get_lesson(self, lesson_id: UUID) -> Lesson | None: ...
    async def modules_for_course(self, course_id: UUID) -> list[CourseModule]: ...
    async def lessons_for_module(self, module_id: UUID) -> list[Lesson]: ...
    async def lessons_for_course(self, course_id: UUID) -> list[Lesson]: ...
    async def mapped_groups(self, course_id: UUID) -> frozenset[str]: ...
    async def all_mappings(self) -> dict[UUID, frozenset[str]]: ...
    async def set_course_groups(self, course_id: UUID, group_ids: frozenset[str]) -> None: ...
    async def add_course(self, *, slug: str, title: str, description: str = "") -> Course: ...
    async def add_module(self, course_id: UUID, *, slug: str, title: str) -> CourseModule: ...
    async def add_lesson(
        self,
        module_id: UUID,
        *,
        slug: str,
        title: str,
        media_kind: MediaKind = MediaKind.TEXT,
    ) -> Lesson: ...
    async def remove_lesson(self, lesson_id: UUID) -> None: ...


class InMemoryCatalogRepo:
    """Course -> module -> lesson tree plus course/group mappings.

    ``order_index`` is dense and zero-based within each parent: adds append
    at the end and removals renumber the remaining siblings.
    """

    def __init__(self) -> None:
        self._courses: dict[UUID, Course] = {}
        self._modules: dict[UUID, CourseModule] = {}
        self._lessons: dict[UUID, Lesson] = {}
        self._course_groups: dict[UUID, frozenset[str]] = {}

    async def list_courses(self) -> list[Course]:
        return sorted(self._courses.values(), key=lambda c: c.slug)

    async def get_course(self, course_id: UUID) -> Course | None:
        return self._courses.get(course_id)

    async def get_module(self, module_id: UUID) -> CourseModule | None:
        return self._modules.get(module_id)

    async def get_lesson(self, lesson_id: UUID) -> Lesson | None:
        return self._lessons.get(lesson_id)

    async def modules_for_course(self, course_id: UUID) -> list[CourseModule]:
        return sorted(
            (m for m in self._modules.values() if m.course_id == course_id),
            key=lambda m: m.order_index,
        )

    async def lessons_for_module(self, module_id: UUID) -> list[Lesson]:
        return sorted(
            (le for le in self._lessons.values() if le.module_id == module_id),
            key=lambda le: le.order_index,
        )

    async def lessons_for_course(self, course_id: UUID) -> list[Lesson]:
        lessons: list[Lesson] = []
        for module in await self.modules_for_course(course_id):
            lessons.extend(await self.lessons_for_module(module.id))
        return lessons

    async def mapped_groups(self, course_id: UUID) -> frozenset[str]:
        return self._course_groups.get(course_id, frozenset())

    async def all_mappings(self) -> dict[UUID, frozenset[str]]:
        return {cid: self._course_groups.get(cid, frozenset()) for cid in self._courses}

    async def set_course_groups(self, course_id: UUID, group_ids: frozenset[str]) -> None:
        if course_id not in self._courses:
            raise KeyError("course not found")
        self._course_groups[course_id] = frozenset(group_ids)

    async def add_course(self, *, slug: str, title: str, description: str = "") -> Course:
        if any(c.slug == slug for c in self._courses.values()):
            raise ValueError("course slug already exists")
        course = Course.new(slug=slug, title=title, description=description)
        self._courses[course.id] = course
        return course

    async def add_module(self, course_id: UUID, *, slug: str, title: str) -> CourseModule:
        if course_id not in self._courses:
            raise KeyError("course not found")
        siblings = await self.modules_for_course(course_id)
        if any(m.slug == slug for m in siblings):
            raise ValueError("module slug already exists in course")
        module = CourseModule.new(
            course_id=course_id, slug=slug, title=title, order_index=len(siblings)
        )
        self._modules[module.id] = module
        return module

    async def add_lesson(
        self,
        module_id: UUID,
        *,
        slug: str,
        title: str,
        media_kind: MediaKind = MediaKind.TEXT,
    ) -> Lesson:
        if module_id not in self._modules:
            raise KeyError("module not found")
        siblings = await self.lessons_for_module(module_id)
        if any(le.slug == slug for le in siblings):
            raise ValueError("lesson slug already exists in module")
        lesson = Lesson.new(
            module_id=module_id,
            slug=slug,
            title=title,
            order_index=len(siblings),
            media_kind=media_kind,
        )
        self._lessons[lesson.id] = lesson
        return lesson

    async def remove_lesson(self, lesson_id: UUID) -> None:
        lesson = self._lessons.pop(lesson_id, None)
        if lesson is None:
            raise KeyError("lesson not found")
        for index, sibling in enumerate(await self.lessons_for_module(lesson.module_id)):
            if sibling.order_index != index:
                self._lessons[sibling.id] = replace(sibling, order_index=index)
