"""PostgreSQL implementation of FailedSignInRepo."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from academy.db.tables import FailedSignInRow
from academy.models.audit import FailedSignIn


class PgFailedSignInRepo:
    """Writes in a transaction of its own.

    A failed sign-in ends its request with an exception, which rolls the
    request's session back; the audit row has to outlive that.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def record(self, entry: FailedSignIn) -> None:
        async with self._session_factory() as session, session.begin():
            session.add(
                FailedSignInRow(
                    id=entry.id,
                    client_key=entry.client_key,
                    reason=entry.reason,
                    status_code=entry.status_code,
                    external_id=entry.external_id,
                    occurred_at=entry.occurred_at,
                )
            )

    async def recent(self, limit: int) -> list[FailedSignIn]:
        stmt = select(FailedSignInRow).order_by(FailedSignInRow.occurred_at.desc()).limit(limit)
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_row_to_entry(r) for r in rows]


def _row_to_entry(row: FailedSignInRow) -> FailedSignIn:
    return FailedSignIn(
        id=row.id,
        client_key=row.client_key,
        reason=row.reason,
        status_code=row.status_code,
        external_id=row.external_id,
        occurred_at=row.occurred_at,
    )
