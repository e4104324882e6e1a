from __future__ import annotations

from datetime import datetime
from typing import Protocol
from uuid import UUID

from academy.models.progress import ProgressRecord


class ProgressRepo(Protocol):
    async def get(self, principal_id: UUID, lesson_id: UUID) -> ProgressRecord | None: ...
    async def upsert(
        self,
        principal_id: UUID,
        lesson_id: UUID,
        *,
        completed: bool,
        last_position: float,
        updated_at: datetime,
    ) -> ProgressRecord: ...
    async def list_for_principal(
        self, principal_id: UUID, lesson_ids: set[UUID] | None = None
    ) -> list[ProgressRecord]: ...
    async def latest_for_principal(self, principal_id: UUID) -> ProgressRecord | None: ...


class InMemoryProgressRepo:
    """Keyed on (principal_id, lesson_id), so an upsert can never duplicate."""

    def __init__(self) -> None:
        self._store: dict[tuple[UUID, UUID], ProgressRecord] = {}

    async def get(self, principal_id: UUID, lesson_id: UUID) -> ProgressRecord | None:
        return self._store.get((principal_id, lesson_id))

    async def upsert(
        self,
        principal_id: UUID,
        lesson_id: UUID,
        *,
        completed: bool,
        last_position: float,
        updated_at: datetime,
    ) -> ProgressRecord:
        record = ProgressRecord(
            principal_id=principal_id,
            lesson_id=lesson_id,
            completed=completed,
            last_position=last_position,
            updated_at=updated_at,
        )
        self._store[(principal_id, lesson_id)] = record
        return record

    async def list_for_principal(
        self, principal_id: UUID, lesson_ids: set[UUID] | None = None
    ) -> list[ProgressRecord]:
        return [
            r
            for (p, lesson_id), r in self._store.items()
            if p == principal_id and (lesson_ids is None or lesson_id in lesson_ids)
        ]

    async def latest_for_principal(self, principal_id: UUID) -> ProgressRecord | None:
        records = await self.list_for_principal(principal_id)
        if not records:
            return None
        return max(records, key=lambda r: r.updated_at)
