"""PostgreSQL implementation of PrincipalRepo."""

from __future__ import annotations

import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import delete, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from academy.db.tables import PrincipalGroupRow, PrincipalRow
from academy.models.identity import IdentityPayload
from academy.models.principal import GroupEdge, Principal


class PgPrincipalRepo:
    """Satisfies the PrincipalRepo Protocol using PostgreSQL via SQLAlchemy."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_id(self, principal_id: UUID) -> Principal | None:
        stmt = select(PrincipalRow).where(PrincipalRow.id == principal_id)
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        return None if row is None else _row_to_principal(row)

    async def get_by_external_id(self, external_id: str) -> Principal | None:
        stmt = select(PrincipalRow).where(PrincipalRow.external_id == external_id)
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        return None if row is None else _row_to_principal(row)

    async def upsert_identity(self, payload: IdentityPayload) -> Principal:
        now = datetime.datetime.now(datetime.UTC)
        stmt = (
            insert(PrincipalRow)
            .values(
                id=uuid4(),
                external_id=payload.external_id,
                display_name=payload.display_name,
                avatar_ref=payload.avatar_ref,
                is_admin=payload.is_admin,
                group_ids=[],
                settings={},
                last_login=now,
            )
            .on_conflict_do_update(
                index_elements=[PrincipalRow.external_id],
                set_={
                    "display_name": payload.display_name,
                    "avatar_ref": payload.avatar_ref,
                    "is_admin": payload.is_admin,
                    "last_login": now,
                },
            )
            .returning(PrincipalRow)
            .execution_options(populate_existing=True)
        )
        row = (await self._session.execute(stmt)).scalar_one()
        return _row_to_principal(row)

    async def replace_groups(
        self, principal_id: UUID, group_ids: frozenset[str]
    ) -> Principal:
        # SAVEPOINT: edge table and array commit or roll back together even
        # when the caller's transaction continues afterwards.
        async with self._session.begin_nested():
            await self._session.execute(
                delete(PrincipalGroupRow).where(
                    PrincipalGroupRow.principal_id == principal_id
                )
            )
            if group_ids:
                await self._session.execute(
                    insert(PrincipalGroupRow),
                    [{"principal_id": principal_id, "group_id": g} for g in sorted(group_ids)],
                )
            result = await self._session.execute(
                update(PrincipalRow)
                .where(PrincipalRow.id == principal_id)
                .values(group_ids=sorted(group_ids))
                .returning(PrincipalRow)
                .execution_options(populate_existing=True)
            )
            row = result.scalar_one_or_none()
            if row is None:
                raise KeyError("principal not found")
        return _row_to_principal(row)

    async def list_group_edges(self, principal_id: UUID) -> list[GroupEdge]:
        stmt = (
            select(PrincipalGroupRow)
            .where(PrincipalGroupRow.principal_id == principal_id)
            .order_by(PrincipalGroupRow.group_id)
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [GroupEdge(principal_id=r.principal_id, group_id=r.group_id) for r in rows]

    async def update_settings(
        self, principal_id: UUID, settings: dict[str, Any]
    ) -> Principal:
        stmt = (
            update(PrincipalRow)
            .where(PrincipalRow.id == principal_id)
            .values(settings=settings)
            .returning(PrincipalRow)
            .execution_options(populate_existing=True)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            raise KeyError("principal not found")
        return _row_to_principal(row)


def _row_to_principal(row: PrincipalRow) -> Principal:
    return Principal(
        id=row.id,
        external_id=row.external_id,
        display_name=row.display_name or "",
        avatar_ref=row.avatar_ref,
        is_admin=row.is_admin,
        group_ids=frozenset(row.group_ids or ()),
        settings=dict(row.settings or {}),
    )
