"""Administrator and course-entitlement decisions.

Admin status is an OR-fold over an ordered list of signal sources.
Each source answers True, False, or None ("no opinion", e.g. the data
it needs was never resolved).  The first True wins; order only affects
short-circuiting, never the outcome.  Sources that are unsure do not
veto, so admin status survives partial data as long as one signal
resolved.

Course entitlement:

    has_access(P, C) == is_admin(P) or (P.group_ids & mapped_groups(C))

Courses with no mapped groups are visible to admins only.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Protocol, runtime_checkable
from uuid import UUID

from academy.core.errors import NotFound, PermissionDenied
from academy.models.principal import Principal
from academy.repos.catalog_repo import CatalogRepo

logger = logging.getLogger(__name__)


@runtime_checkable
class AdminSignalSource(Protocol):
    name: str

    def check(self, principal: Principal) -> bool | None: ...


@dataclass(frozen=True, slots=True)
class ResolvedFlagSignal:
    """The ``is_admin`` flag already stored on the principal."""

    name: str = "flag"

    def check(self, principal: Principal) -> bool | None:
        return True if principal.is_admin else None


@dataclass(frozen=True, slots=True)
class ExternalIdAllowList:
    external_ids: frozenset[str]
    name: str = "external_id_allow_list"

    def check(self, principal: Principal) -> bool | None:
        if not principal.external_id:
            return None
        return principal.external_id in self.external_ids


@dataclass(frozen=True, slots=True)
class PrincipalIdAllowList:
    """Escape hatch for accounts whose external-id lookup fails."""

    principal_ids: frozenset[str]
    name: str = "principal_id_allow_list"

    def check(self, principal: Principal) -> bool | None:
        return str(principal.id) in self.principal_ids


def default_signals(
    admin_external_ids: Iterable[str], admin_principal_ids: Iterable[str]
) -> list[AdminSignalSource]:
    return [
        ResolvedFlagSignal(),
        ExternalIdAllowList(frozenset(admin_external_ids)),
        PrincipalIdAllowList(frozenset(admin_principal_ids)),
    ]


class AccessReason(enum.StrEnum):
    ADMIN = "admin"
    GROUP = "group"
    # Membership data never populated: not an explicit denial.
    NO_MEMBERSHIPS = "no_memberships"
    DENIED = "denied"


@dataclass(frozen=True, slots=True)
class AccessDecision:
    course_id: UUID
    reason: AccessReason

    @property
    def granted(self) -> bool:
        return self.reason in (AccessReason.ADMIN, AccessReason.GROUP)


class AccessResolver:
    """Pure queries over cached principal and mapping state."""

    def __init__(self, catalog: CatalogRepo, signals: Sequence[AdminSignalSource]) -> None:
        self._catalog = catalog
        self._signals = list(signals)

    def is_admin(self, principal: Principal) -> bool:
        for signal in self._signals:
            if signal.check(principal) is True:
                logger.debug("principal=%s admin via %s", principal.id, signal.name)
                return True
        return False

    async def decide(self, principal: Principal, course_id: UUID) -> AccessDecision:
        if self.is_admin(principal):
            return AccessDecision(course_id, AccessReason.ADMIN)
        if not principal.has_memberships:
            return AccessDecision(course_id, AccessReason.NO_MEMBERSHIPS)
        mapped = await self._catalog.mapped_groups(course_id)
        if principal.group_ids & mapped:
            return AccessDecision(course_id, AccessReason.GROUP)
        return AccessDecision(course_id, AccessReason.DENIED)

    async def has_access(self, principal: Principal, course_id: UUID) -> bool:
        return (await self.decide(principal, course_id)).granted

    async def accessible_courses(self, principal: Principal) -> set[UUID]:
        mappings = await self._catalog.all_mappings()
        if self.is_admin(principal):
            return set(mappings)
        return {cid for cid, groups in mappings.items() if principal.group_ids & groups}

    async def require_course(self, principal: Principal, course_id: UUID) -> AccessDecision:
        """Raise NotFound / PermissionDenied unless the principal is entitled."""
        if await self._catalog.get_course(course_id) is None:
            raise NotFound("course", course_id)
        decision = await self.decide(principal, course_id)
        if not decision.granted:
            logger.warning(
                "Access denied: principal=%s course=%s reason=%s",
                principal.id,
                course_id,
                decision.reason,
            )
            raise PermissionDenied(f"no access to course ({decision.reason})")
        return decision

    def require_admin(self, principal: Principal) -> None:
        if not self.is_admin(principal):
            logger.warning("Access denied: principal=%s is not an admin", principal.id)
            raise PermissionDenied("administrator access required")
