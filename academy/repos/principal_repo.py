from __future__ import annotations

from dataclasses import replace
from typing import Any, Protocol
from uuid import UUID

from academy.models.identity import IdentityPayload
from academy.models.principal import GroupEdge, Principal


class PrincipalRepo(Protocol):
    async def get_by_id(self, principal_id: UUID) -> Principal | None: ...
    async def get_by_external_id(self, external_id: str) -> Principal | None: ...
    async def upsert_identity(self, payload: IdentityPayload) -> Principal: ...
    async def replace_groups(
        self, principal_id: UUID, group_ids: frozenset[str]
    ) -> Principal: ...
    async def list_group_edges(self, principal_id: UUID) -> list[GroupEdge]: ...
    async def update_settings(
        self, principal_id: UUID, settings: dict[str, Any]
    ) -> Principal: ...


class InMemoryPrincipalRepo:
    """Process-local principal store.

    The methods below never await between reading and writing, so each
    call is atomic with respect to other coroutines on the event loop.
    """

    def __init__(self) -> None:
        self._by_id: dict[UUID, Principal] = {}
        self._by_external_id: dict[str, UUID] = {}
        self._edges: set[tuple[UUID, str]] = set()

    async def get_by_id(self, principal_id: UUID) -> Principal | None:
        return self._by_id.get(principal_id)

    async def get_by_external_id(self, external_id: str) -> Principal | None:
        principal_id = self._by_external_id.get(external_id)
        if principal_id is None:
            return None
        return self._by_id[principal_id]

    async def add(self, principal: Principal) -> None:
        if principal.external_id in self._by_external_id:
            raise ValueError("external_id already exists")
        self._by_id[principal.id] = principal
        self._by_external_id[principal.external_id] = principal.id
        for group_id in principal.group_ids:
            self._edges.add((principal.id, group_id))

    async def upsert_identity(self, payload: IdentityPayload) -> Principal:
        existing = await self.get_by_external_id(payload.external_id)
        if existing is None:
            principal = Principal.new(
                external_id=payload.external_id,
                display_name=payload.display_name,
                avatar_ref=payload.avatar_ref,
                is_admin=payload.is_admin,
            )
            self._by_id[principal.id] = principal
            self._by_external_id[principal.external_id] = principal.id
            return principal

        updated = replace(
            existing,
            display_name=payload.display_name,
            avatar_ref=payload.avatar_ref,
            is_admin=payload.is_admin,
        )
        self._by_id[updated.id] = updated
        return updated

    async def replace_groups(
        self, principal_id: UUID, group_ids: frozenset[str]
    ) -> Principal:
        principal = self._by_id.get(principal_id)
        if principal is None:
            raise KeyError("principal not found")

        # Edge table and denormalized array change together, with no
        # suspension point in between.
        self._edges = {e for e in self._edges if e[0] != principal_id}
        self._edges.update((principal_id, g) for g in group_ids)
        updated = replace(principal, group_ids=frozenset(group_ids))
        self._by_id[principal_id] = updated
        return updated

    async def list_group_edges(self, principal_id: UUID) -> list[GroupEdge]:
        return sorted(
            (GroupEdge(principal_id=p, group_id=g) for p, g in self._edges if p == principal_id),
            key=lambda e: e.group_id,
        )

    async def update_settings(
        self, principal_id: UUID, settings: dict[str, Any]
    ) -> Principal:
        principal = self._by_id.get(principal_id)
        if principal is None:
            raise KeyError("principal not found")
        updated = replace(principal, settings=dict(settings))
        self._by_id[principal_id] = updated
        return updated
