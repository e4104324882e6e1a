"""Sign-in: external identity token in, session token out.

Validation failures are counted per client in the shared cache.  The
count only bounds how the failure is reported: once it reaches
``max_attempts`` the caller is told to restart sign-in from the
identity provider rather than retry with the same token.  Network
failures are not counted; they are not the client's fault.

Every counted failure is also appended to the failed sign-in log that
administrators review.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from academy.core.errors import AuthenticationFailure
from academy.models.audit import FailedSignIn
from academy.models.principal import Principal
from academy.repos.failed_sign_in_repo import FailedSignInRepo
from academy.repos.principal_repo import PrincipalRepo
from academy.services import token_service
from academy.services.access_resolver import AccessResolver
from academy.services.cache import CacheService
from academy.services.membership_sync import GroupMembershipSync
from academy.services.token_gateway import (
    TokenValidationGateway,
    ValidationResult,
    raise_for_result,
)

logger = logging.getLogger(__name__)

FAILURE_WINDOW_SECONDS = 15 * 60


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _claimed_external_id(result: ValidationResult) -> str | None:
    body = result.error_body
    if isinstance(body, dict) and body.get("discord_id"):
        return str(body["discord_id"])
    return None


@dataclass(frozen=True, slots=True)
class SignInResult:
    principal: Principal
    access_token: str
    expires_in: int
    is_admin: bool


class SignInService:
    def __init__(
        self,
        gateway: TokenValidationGateway,
        principals: PrincipalRepo,
        membership: GroupMembershipSync,
        resolver: AccessResolver,
        cache: CacheService,
        audit: FailedSignInRepo,
        *,
        max_attempts: int = 3,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._gateway = gateway
        self._principals = principals
        self._membership = membership
        self._resolver = resolver
        self._cache = cache
        self._audit = audit
        self._max_attempts = max_attempts
        self._clock = clock

    @staticmethod
    def _failure_key(client_key: str) -> str:
        return f"signin:failures:{client_key}"

    async def sign_in(self, token: str | None, *, client_key: str) -> SignInResult:
        result = await self._gateway.validate(token)
        try:
            identity = raise_for_result(result)
        except AuthenticationFailure as exc:
            failures = await self._cache.incr(
                self._failure_key(client_key), FAILURE_WINDOW_SECONDS
            )
            exc.attempts_remaining = max(0, self._max_attempts - failures)
            logger.warning(
                "Sign-in failed reason=%s attempts_remaining=%d",
                exc.reason,
                exc.attempts_remaining,
            )
            await self._audit.record(
                FailedSignIn.new(
                    client_key=client_key,
                    reason=exc.reason,
                    status_code=exc.status_code,
                    external_id=_claimed_external_id(result),
                    occurred_at=self._clock(),
                )
            )
            raise

        await self._cache.delete(self._failure_key(client_key))

        principal = await self._principals.upsert_identity(identity)
        # An empty roles list means the provider did not resolve
        # memberships this time, not that they were revoked.
        if identity.group_ids:
            principal = await self._membership.reconcile(principal, identity.group_ids)

        access_token = token_service.create_access_token(sub=str(principal.id))
        is_admin = self._resolver.is_admin(principal)
        logger.info(
            "Signed in principal=%s groups=%d admin=%s",
            principal.id,
            len(principal.group_ids),
            is_admin,
        )
        return SignInResult(
            principal=principal,
            access_token=access_token,
            expires_in=token_service.ACCESS_TOKEN_TTL_MIN * 60,
            is_admin=is_admin,
        )
