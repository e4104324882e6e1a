"""FastAPI dependency wiring.

Services are constructed per request from their collaborators, so a
test can swap any one of them with ``app.dependency_overrides``.
Without DATABASE_URL the repositories are the process-wide in-memory
stores below; with it they are bound to the request's session.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator, AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Annotated
from uuid import UUID

import httpx
import jwt
from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from academy.core.config import SETTINGS
from academy.core.errors import AuthenticationFailure
from academy.core.logging import principal_id_var
from academy.db.engine import async_session_factory, get_optional_session
from academy.models.principal import Principal
from academy.repos.catalog_repo import CatalogRepo, InMemoryCatalogRepo
from academy.repos.failed_sign_in_repo import FailedSignInRepo, InMemoryFailedSignInRepo
from academy.repos.pg_catalog_repo import PgCatalogRepo
from academy.repos.pg_failed_sign_in_repo import PgFailedSignInRepo
from academy.repos.pg_principal_repo import PgPrincipalRepo
from academy.repos.pg_progress_repo import PgProgressRepo
from academy.repos.principal_repo import InMemoryPrincipalRepo, PrincipalRepo
from academy.repos.progress_repo import InMemoryProgressRepo, ProgressRepo
from academy.services import token_service
from academy.services.access_resolver import AccessResolver, default_signals
from academy.services.cache import cache_service
from academy.services.membership_sync import GroupMembershipSync
from academy.services.progress import KeyedLock, ProgressAggregator
from academy.services.sign_in import SignInService
from academy.services.token_gateway import TokenValidationGateway

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# In-memory stores (used when DATABASE_URL is not set)
# ---------------------------------------------------------------------------

principal_store = InMemoryPrincipalRepo()
catalog_store = InMemoryCatalogRepo()
progress_store = InMemoryProgressRepo()
failed_sign_in_store = InMemoryFailedSignInRepo()

# Shared by every request in this process so writes to one
# (principal, lesson) pair queue behind each other.
progress_locks = KeyedLock()

bearer_scheme = OAuth2PasswordBearer(tokenUrl="/v1/session", auto_error=False)

SessionDep = Annotated[AsyncSession | None, Depends(get_optional_session)]


def get_principal_repo(session: SessionDep) -> PrincipalRepo:
    return principal_store if session is None else PgPrincipalRepo(session)


def get_catalog_repo(session: SessionDep) -> CatalogRepo:
    return catalog_store if session is None else PgCatalogRepo(session)


def get_progress_repo(session: SessionDep) -> ProgressRepo:
    return progress_store if session is None else PgProgressRepo(session)


def get_failed_sign_in_repo() -> FailedSignInRepo:
    # Own sessions: the audit write must survive a failed request's rollback.
    if async_session_factory is None:
        return failed_sign_in_store
    return PgFailedSignInRepo(async_session_factory)


async def get_http_client() -> AsyncGenerator[httpx.AsyncClient, None]:
    """Outbound client for the identity and membership providers."""
    async with httpx.AsyncClient(
        timeout=httpx.Timeout(SETTINGS.identity_timeout_seconds)
    ) as client:
        yield client


PrincipalRepoDep = Annotated[PrincipalRepo, Depends(get_principal_repo)]
CatalogRepoDep = Annotated[CatalogRepo, Depends(get_catalog_repo)]
ProgressRepoDep = Annotated[ProgressRepo, Depends(get_progress_repo)]
FailedSignInRepoDep = Annotated[FailedSignInRepo, Depends(get_failed_sign_in_repo)]
HttpClientDep = Annotated[httpx.AsyncClient, Depends(get_http_client)]


def build_access_resolver(catalog: CatalogRepo) -> AccessResolver:
    return AccessResolver(
        catalog,
        default_signals(SETTINGS.admin_external_ids, SETTINGS.admin_principal_ids),
    )


def get_access_resolver(catalog: CatalogRepoDep) -> AccessResolver:
    return build_access_resolver(catalog)


ResolverDep = Annotated[AccessResolver, Depends(get_access_resolver)]


def get_token_gateway(client: HttpClientDep) -> TokenValidationGateway:
    return TokenValidationGateway(
        client,
        primary_url=SETTINGS.identity_primary_url,
        secondary_url=SETTINGS.identity_secondary_url,
        avatar_cdn_url=SETTINGS.avatar_cdn_url,
        timeout=SETTINGS.identity_timeout_seconds,
        min_token_length=SETTINGS.min_token_length,
    )


def get_membership_sync(
    client: HttpClientDep, principals: PrincipalRepoDep
) -> GroupMembershipSync:
    return GroupMembershipSync(
        client,
        principals,
        cache_service,
        api_url=SETTINGS.discord_api_url,
        guild_id=SETTINGS.discord_guild_id,
        bot_token=SETTINGS.discord_bot_token,
        timeout=SETTINGS.identity_timeout_seconds,
    )


MembershipSyncDep = Annotated[GroupMembershipSync, Depends(get_membership_sync)]


def get_sign_in_service(
    gateway: Annotated[TokenValidationGateway, Depends(get_token_gateway)],
    principals: PrincipalRepoDep,
    membership: MembershipSyncDep,
    resolver: ResolverDep,
    audit: FailedSignInRepoDep,
) -> SignInService:
    return SignInService(
        gateway,
        principals,
        membership,
        resolver,
        cache_service,
        audit,
        max_attempts=SETTINGS.max_sign_in_attempts,
    )


def build_progress_aggregator(
    progress: ProgressRepo, catalog: CatalogRepo, resolver: AccessResolver
) -> ProgressAggregator:
    return ProgressAggregator(
        progress,
        catalog,
        resolver,
        locks=progress_locks,
        threshold=SETTINGS.auto_complete_threshold,
    )


def get_progress_aggregator(
    progress: ProgressRepoDep, catalog: CatalogRepoDep, resolver: ResolverDep
) -> ProgressAggregator:
    return build_progress_aggregator(progress, catalog, resolver)


AggregatorDep = Annotated[ProgressAggregator, Depends(get_progress_aggregator)]

ReaderScope = Callable[
    [], AbstractAsyncContextManager[tuple[AccessResolver, ProgressAggregator]]
]


def get_reader_scope(resolver: ResolverDep, aggregator: AggregatorDep) -> ReaderScope:
    """Resolver and aggregator for one of several readers running side by side.

    An AsyncSession runs one statement at a time, so on PostgreSQL every
    scope opens its own read session.  In memory the request's services
    are handed out as they are.
    """

    @asynccontextmanager
    async def scope() -> AsyncIterator[tuple[AccessResolver, ProgressAggregator]]:
        if async_session_factory is None:
            yield resolver, aggregator
            return
        async with async_session_factory() as session, session.begin():
            catalog = PgCatalogRepo(session)
            own_resolver = build_access_resolver(catalog)
            yield own_resolver, build_progress_aggregator(
                PgProgressRepo(session), catalog, own_resolver
            )

    return scope


ReaderScopeDep = Annotated[ReaderScope, Depends(get_reader_scope)]


# ---------------------------------------------------------------------------
# Authentication guards
# ---------------------------------------------------------------------------


async def require_principal(
    raw_token: Annotated[str | None, Depends(bearer_scheme)],
    principals: PrincipalRepoDep,
) -> Principal:
    """Decode the session token and reload the principal it names.

    Admin flag and memberships come from the store, never from the
    token, so a reconcile is visible on the very next request.
    """
    if not raw_token:
        raise AuthenticationFailure("missing_token", attempts_remaining=0)
    try:
        claims = token_service.decode_access_token(raw_token)
    except jwt.ExpiredSignatureError:
        logger.warning("Expired session token rejected")
        raise AuthenticationFailure("token_expired", attempts_remaining=0) from None
    except jwt.InvalidTokenError as e:
        logger.warning("Invalid session token rejected: %s", e)
        raise AuthenticationFailure("invalid_token", attempts_remaining=0) from None

    try:
        principal_id = UUID(claims["sub"])
    except ValueError:
        raise AuthenticationFailure("invalid_token", attempts_remaining=0) from None

    principal = await principals.get_by_id(principal_id)
    if principal is None:
        logger.warning("Session token names unknown principal=%s", principal_id)
        raise AuthenticationFailure("unknown_principal", attempts_remaining=0)

    principal_id_var.set(str(principal.id))
    return principal


CurrentPrincipal = Annotated[Principal, Depends(require_principal)]


def require_admin(principal: CurrentPrincipal, resolver: ResolverDep) -> Principal:
    resolver.require_admin(principal)
    return principal


AdminPrincipal = Annotated[Principal, Depends(require_admin)]
