"""Progress writes and completion aggregation.

Reads are computed on demand from the stored records; there is no
background recomputation, so every view reflects the last write.

Writes for the same (principal, lesson) pair run one at a time under a
per-key lock.  Position events arrive every few seconds while a lesson
is open, and the read-modify-write that applies the auto-completion
policy needs the prior record.  The repository upsert is keyed on the
same pair, so even without the lock two records can never exist.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Hashable
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from uuid import UUID

from academy.core.errors import NotFound
from academy.core.metrics import AUTO_COMPLETIONS, PROGRESS_WRITES
from academy.models.course import CourseModule, Lesson, MediaKind
from academy.models.principal import Principal
from academy.models.progress import (
    CourseCompletion,
    LastVisited,
    ModuleCompletion,
    ProgressRecord,
)
from academy.repos.catalog_repo import CatalogRepo
from academy.repos.progress_repo import ProgressRepo
from academy.services import auto_completion
from academy.services.access_resolver import AccessResolver

logger = logging.getLogger(__name__)


def completion_percent(completed: int, total: int) -> int:
    """round(100 * completed / total); an empty lesson set is 0, never 100."""
    if total <= 0:
        return 0
    return round(100 * completed / total)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class KeyedLock:
    """One asyncio.Lock per key, dropped once nobody holds or waits on it."""

    def __init__(self) -> None:
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._users: dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class ProgressAggregator:
    def __init__(
        self,
        progress: ProgressRepo,
        catalog: CatalogRepo,
        resolver: AccessResolver,
        *,
        locks: KeyedLock | None = None,
        clock: Callable[[], datetime] = _utcnow,
        threshold: float = auto_completion.COMPLETION_THRESHOLD,
    ) -> None:
        self._progress = progress
        self._catalog = catalog
        self._resolver = resolver
        self._locks = locks if locks is not None else KeyedLock()
        self._clock = clock
        self._threshold = threshold

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def _completed_ids(self, principal_id: UUID, lesson_ids: set[UUID]) -> set[UUID]:
        if not lesson_ids:
            return set()
        records = await self._progress.list_for_principal(principal_id, lesson_ids)
        return {r.lesson_id for r in records if r.completed}

    async def course_completion(self, principal: Principal, course_id: UUID) -> CourseCompletion:
        course = await self._catalog.get_course(course_id)
        if course is None:
            raise NotFound("course", course_id)
        lesson_ids = {le.id for le in await self._catalog.lessons_for_course(course_id)}
        done = len(await self._completed_ids(principal.id, lesson_ids))
        return CourseCompletion(
            course=course,
            percent=completion_percent(done, len(lesson_ids)),
            completed_lessons=done,
            total_lessons=len(lesson_ids),
        )

    async def module_completions(
        self, principal: Principal, course_id: UUID
    ) -> list[ModuleCompletion]:
        if await self._catalog.get_course(course_id) is None:
            raise NotFound("course", course_id)
        modules = await self._catalog.modules_for_course(course_id)
        lessons_by_module = {m.id: await self._catalog.lessons_for_module(m.id) for m in modules}
        all_ids = {le.id for lessons in lessons_by_module.values() for le in lessons}
        completed = await self._completed_ids(principal.id, all_ids)

        result = []
        for module in modules:
            ids = {le.id for le in lessons_by_module[module.id]}
            done = len(ids & completed)
            result.append(
                ModuleCompletion(
                    module=module,
                    percent=completion_percent(done, len(ids)),
                    completed_lessons=done,
                    total_lessons=len(ids),
                )
            )
        return result

    async def all_courses_progress(self, principal: Principal) -> list[CourseCompletion]:
        """Completion for every course the principal is entitled to, in catalog order."""
        accessible = await self._resolver.accessible_courses(principal)
        return [
            await self.course_completion(principal, course.id)
            for course in await self._catalog.list_courses()
            if course.id in accessible
        ]

    async def _resolve(self, record: ProgressRecord) -> LastVisited | None:
        lesson = await self._catalog.get_lesson(record.lesson_id)
        if lesson is None:
            return None
        module = await self._catalog.get_module(lesson.module_id)
        if module is None:
            return None
        course = await self._catalog.get_course(module.course_id)
        if course is None:
            return None
        return LastVisited(course=course, module=module, lesson=lesson, record=record)

    async def last_visited(self, principal: Principal) -> LastVisited | None:
        """Most recently touched lesson, resolved to its course and module.

        No entitlement check here.  A record whose lesson has since been
        removed is skipped in favour of the next newest one.
        """
        latest = await self._progress.latest_for_principal(principal.id)
        if latest is None:
            return None
        resolved = await self._resolve(latest)
        if resolved is not None:
            return resolved

        records = await self._progress.list_for_principal(principal.id)
        for record in sorted(records, key=lambda r: r.updated_at, reverse=True):
            resolved = await self._resolve(record)
            if resolved is not None:
                return resolved
        return None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def _entitled_lesson(
        self, principal: Principal, lesson_id: UUID
    ) -> tuple[Lesson, CourseModule]:
        lesson = await self._catalog.get_lesson(lesson_id)
        if lesson is None:
            raise NotFound("lesson", lesson_id)
        module = await self._catalog.get_module(lesson.module_id)
        if module is None:
            raise NotFound("module", lesson.module_id)
        await self._resolver.require_course(principal, module.course_id)
        return lesson, module

    async def _write(
        self, principal: Principal, lesson_id: UUID, *, completed: bool, position: float, kind: str
    ) -> ProgressRecord:
        record = await self._progress.upsert(
            principal.id,
            lesson_id,
            completed=completed,
            last_position=auto_completion.clamp_position(position),
            updated_at=self._clock(),
        )
        PROGRESS_WRITES.labels(kind=kind).inc()
        return record

    async def upsert_progress(
        self, principal: Principal, lesson_id: UUID, *, completed: bool, position: float
    ) -> ProgressRecord:
        """Set the record to exactly these values, creating it if needed."""
        await self._entitled_lesson(principal, lesson_id)
        async with self._locks.hold((principal.id, lesson_id)):
            return await self._write(
                principal, lesson_id, completed=completed, position=position, kind="upsert"
            )

    async def record_position(
        self, principal: Principal, lesson_id: UUID, position: float
    ) -> ProgressRecord:
        """Apply a playback (media) or scroll (text) position event.

        Completion only ever moves from false to true here.
        """
        lesson, _ = await self._entitled_lesson(principal, lesson_id)
        async with self._locks.hold((principal.id, lesson_id)):
            previous = await self._progress.get(principal.id, lesson_id)
            was_completed = previous.completed if previous is not None else False

            if lesson.media_kind is MediaKind.TEXT:
                completed = was_completed or auto_completion.reached_bottom(
                    position, threshold=self._threshold
                )
            else:
                completed = auto_completion.decide(
                    lesson.media_kind, position, was_completed, threshold=self._threshold
                )

            record = await self._write(
                principal, lesson_id, completed=completed, position=position, kind="position"
            )

        if completed and not was_completed:
            AUTO_COMPLETIONS.labels(media_kind=str(lesson.media_kind)).inc()
            logger.info(
                "Auto-completed lesson=%s principal=%s position=%.3f",
                lesson_id,
                principal.id,
                record.last_position,
            )
        return record

    async def mark_read(self, principal: Principal, lesson_id: UUID) -> ProgressRecord:
        await self._entitled_lesson(principal, lesson_id)
        async with self._locks.hold((principal.id, lesson_id)):
            return await self._write(
                principal, lesson_id, completed=True, position=1.0, kind="mark_read"
            )

    async def toggle_completion(self, principal: Principal, lesson_id: UUID) -> ProgressRecord:
        """Flip the completed flag.

        With ``upsert_progress`` one of the two writes that can un-complete
        a lesson; position events never do.
        """
        await self._entitled_lesson(principal, lesson_id)
        async with self._locks.hold((principal.id, lesson_id)):
            previous = await self._progress.get(principal.id, lesson_id)
            if previous is None:
                return await self._write(
                    principal, lesson_id, completed=True, position=0.0, kind="toggle"
                )
            return await self._write(
                principal,
                lesson_id,
                completed=not previous.completed,
                position=previous.last_position,
                kind="toggle",
            )
