from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any
from uuid import UUID, uuid4


@dataclass(frozen=True, slots=True)
class Principal:
    """A person known to this service, independent of any UI session.

    ``id`` is the stable internal identity; ``external_id`` is the identity
    provider's id (unique).  ``group_ids`` is the denormalized copy of the
    membership edge table; only ``PrincipalRepo.replace_groups`` writes it.
    """

    id: UUID
    external_id: str
    display_name: str = ""
    avatar_ref: str | None = None
    is_admin: bool = False
    group_ids: frozenset[str] = frozenset()
    settings: dict[str, Any] = field(default_factory=dict, hash=False, compare=False)

    @staticmethod
    def new(
        *,
        external_id: str,
        display_name: str = "",
        avatar_ref: str | None = None,
        is_admin: bool = False,
    ) -> Principal:
        return Principal(
            id=uuid4(),
            external_id=external_id,
            display_name=display_name,
            avatar_ref=avatar_ref,
            is_admin=is_admin,
        )

    @property
    def has_memberships(self) -> bool:
        return bool(self.group_ids)


@dataclass(frozen=True, slots=True)
class GroupEdge:
    """One row of the normalized membership table."""

    principal_id: UUID
    group_id: str
