"""PostgreSQL implementation of CatalogRepo."""

from __future__ import annotations

from uuid import UUID, uuid4

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from academy.db.tables import CourseGroupRow, CourseModuleRow, CourseRow, LessonRow
from academy.models.course import Course, CourseModule, Lesson, MediaKind


class PgCatalogRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def list_courses(self) -> list[Course]:
        rows = (await self._session.execute(select(CourseRow).order_by(CourseRow.slug))).scalars()
        return [_row_to_course(r) for r in rows]

    async def get_course(self, course_id: UUID) -> Course | None:
        row = await self._session.get(CourseRow, course_id)
        return None if row is None else _row_to_course(row)

    async def get_module(self, module_id: UUID) -> CourseModule | None:
        row = await self._session.get(CourseModuleRow, module_id)
        return None if row is None else _row_to_module(row)

    async def get_lesson(self, lesson_id: UUID) -> Lesson | None:
        row = await self._session.get(LessonRow, lesson_id)
        return None if row is None else _row_to_lesson(row)

    async def modules_for_course(self, course_id: UUID) -> list[CourseModule]:
        stmt = (
            select(CourseModuleRow)
            .where(CourseModuleRow.course_id == course_id)
            .order_by(CourseModuleRow.order_index)
        )
        return [_row_to_module(r) for r in (await self._session.execute(stmt)).scalars()]

    async def lessons_for_module(self, module_id: UUID) -> list[Lesson]:
        stmt = (
            select(LessonRow)
            .where(LessonRow.module_id == module_id)
            .order_by(LessonRow.order_index)
        )
        return [_row_to_lesson(r) for r in (await self._session.execute(stmt)).scalars()]

    async def lessons_for_course(self, course_id: UUID) -> list[Lesson]:
        stmt = (
            select(LessonRow)
            .join(CourseModuleRow, LessonRow.module_id == CourseModuleRow.id)
            .where(CourseModuleRow.course_id == course_id)
            .order_by(CourseModuleRow.order_index, LessonRow.order_index)
        )
        return [_row_to_lesson(r) for r in (await self._session.execute(stmt)).scalars()]

    async def mapped_groups(self, course_id: UUID) -> frozenset[str]:
        stmt = select(CourseGroupRow.group_id).where(CourseGroupRow.course_id == course_id)
        return frozenset((await self._session.execute(stmt)).scalars())

    async def all_mappings(self) -> dict[UUID, frozenset[str]]:
        mappings: dict[UUID, set[str]] = {
            cid: set() for cid in (await self._session.execute(select(CourseRow.id))).scalars()
        }
        for course_id, group_id in await self._session.execute(
            select(CourseGroupRow.course_id, CourseGroupRow.group_id)
        ):
            mappings.setdefault(course_id, set()).add(group_id)
        return {cid: frozenset(groups) for cid, groups in mappings.items()}

    async def set_course_groups(self, course_id: UUID, group_ids: frozenset[str]) -> None:
        if await self._session.get(CourseRow, course_id) is None:
            raise KeyError("course not found")
        async with self._session.begin_nested():
            await self._session.execute(
                delete(CourseGroupRow).where(CourseGroupRow.course_id == course_id)
            )
            if group_ids:
                await self._session.execute(
                    insert(CourseGroupRow),
                    [{"course_id": course_id, "group_id": g} for g in sorted(group_ids)],
                )

    async def add_course(self, *, slug: str, title: str, description: str = "") -> Course:
        row = CourseRow(id=uuid4(), slug=slug, title=title, description=description)
        self._session.add(row)
        await self._session.flush()
        return _row_to_course(row)

    async def add_module(self, course_id: UUID, *, slug: str, title: str) -> CourseModule:
        if await self._session.get(CourseRow, course_id) is None:
            raise KeyError("course not found")
        count = await self._session.scalar(
            select(func.count()).where(CourseModuleRow.course_id == course_id)
        )
        row = CourseModuleRow(
            id=uuid4(), course_id=course_id, slug=slug, title=title, order_index=count or 0
        )
        self._session.add(row)
        await self._session.flush()
        return _row_to_module(row)

    async def add_lesson(
        self,
        module_id: UUID,
        *,
        slug: str,
        title: str,
        media_kind: MediaKind = MediaKind.TEXT,
    ) -> Lesson:
        if await self._session.get(CourseModuleRow, module_id) is None:
            raise KeyError("module not found")
        count = await self._session.scalar(
            select(func.count()).where(LessonRow.module_id == module_id)
        )
        row = LessonRow(
            id=uuid4(),
            module_id=module_id,
            slug=slug,
            title=title,
            order_index=count or 0,
            media_kind=str(media_kind),
        )
        self._session.add(row)
        await self._session.flush()
        return _row_to_lesson(row)

    async def remove_lesson(self, lesson_id: UUID) -> None:
        row = await self._session.get(LessonRow, lesson_id)
        if row is None:
            raise KeyError("lesson not found")
        async with self._session.begin_nested():
            await self._session.execute(delete(LessonRow).where(LessonRow.id == lesson_id))
            await self._session.execute(
                update(LessonRow)
                .where(
                    LessonRow.module_id == row.module_id,
                    LessonRow.order_index > row.order_index,
                )
                .values(order_index=LessonRow.order_index - 1)
            )


def _row_to_course(row: CourseRow) -> Course:
    return Course(id=row.id, slug=row.slug, title=row.title, description=row.description or "")


def _row_to_module(row: CourseModuleRow) -> CourseModule:
    return CourseModule(
        id=row.id,
        course_id=row.course_id,
        slug=row.slug,
        title=row.title,
        order_index=row.order_index,
    )


def _row_to_lesson(row: LessonRow) -> Lesson:
    return Lesson(
        id=row.id,
        module_id=row.module_id,
        slug=row.slug,
        title=row.title,
        order_index=row.order_index,
        media_kind=MediaKind(row.media_kind),
    )
