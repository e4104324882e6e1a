"""PostgreSQL implementation of ProgressRepo."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from academy.db.tables import ProgressRecordRow
from academy.models.progress import ProgressRecord


class PgProgressRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, principal_id: UUID, lesson_id: UUID) -> ProgressRecord | None:
        stmt = select(ProgressRecordRow).where(
            ProgressRecordRow.principal_id == principal_id,
            ProgressRecordRow.lesson_id == lesson_id,
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        return None if row is None else _row_to_record(row)

    async def upsert(
        self,
        principal_id: UUID,
        lesson_id: UUID,
        *,
        completed: bool,
        last_position: float,
        updated_at: datetime,
    ) -> ProgressRecord:
        # Natural-key upsert: two concurrent writers for the same pair
        # collapse onto one row instead of racing to insert.
        stmt = (
            insert(ProgressRecordRow)
            .values(
                principal_id=principal_id,
                lesson_id=lesson_id,
                completed=completed,
                last_position=last_position,
                updated_at=updated_at,
            )
            .on_conflict_do_update(
                index_elements=[ProgressRecordRow.principal_id, ProgressRecordRow.lesson_id],
                set_={
                    "completed": completed,
                    "last_position": last_position,
                    "updated_at": updated_at,
                },
            )
            .returning(ProgressRecordRow)
            # get() may already hold this row in the session; RETURNING must
            # overwrite it rather than hand back the stale identity.
            .execution_options(populate_existing=True)
        )
        row = (await self._session.execute(stmt)).scalar_one()
        return _row_to_record(row)

    async def list_for_principal(
        self, principal_id: UUID, lesson_ids: set[UUID] | None = None
    ) -> list[ProgressRecord]:
        stmt = select(ProgressRecordRow).where(
            ProgressRecordRow.principal_id == principal_id
        )
        if lesson_ids is not None:
            if not lesson_ids:
                return []
            stmt = stmt.where(ProgressRecordRow.lesson_id.in_(lesson_ids))
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_record(r) for r in rows]

    async def latest_for_principal(self, principal_id: UUID) -> ProgressRecord | None:
        stmt = (
            select(ProgressRecordRow)
            .where(ProgressRecordRow.principal_id == principal_id)
            .order_by(ProgressRecordRow.updated_at.desc())
            .limit(1)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        return None if row is None else _row_to_record(row)


def _row_to_record(row: ProgressRecordRow) -> ProgressRecord:
    return ProgressRecord(
        principal_id=row.principal_id,
        lesson_id=row.lesson_id,
        completed=row.completed,
        last_position=row.last_position,
        updated_at=row.updated_at,
    )
