from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class IdentityPayload:
    """Normalized identity attributes returned by a validated token.

    ``avatar_ref`` is always a full URL (or None), never a bare hash.
    """

    external_id: str
    display_name: str
    avatar_ref: str | None
    group_ids: frozenset[str]
    is_admin: bool


@dataclass(frozen=True, slots=True)
class LiveMembership:
    """Current group memberships as reported by the provider.

    ``is_member`` is False when the provider does not know the principal;
    that case carries zero groups and is not an error.
    """

    external_id: str
    username: str | None
    group_ids: frozenset[str]
    is_member: bool = True
