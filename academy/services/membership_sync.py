"""Keep the stored copy of a principal's group memberships in sync.

fetch_live  reads current memberships from the provider (read-only).
reconcile   writes a membership set onto both stored representations
            (edge table + denormalized array) as one atomic unit.

The provider enforces one global rate limit shared by every principal,
so this never runs on a timer and never retries on its own.  After a
429 the provider's Retry-After window is recorded in the shared cache
and every fetch inside that window fails fast with RateLimited, without
a network call.
"""

from __future__ import annotations

import asyncio
import logging
import math

import httpx

from academy.core.errors import RateLimited, TransientNetworkFailure
from academy.core.metrics import MEMBERSHIP_FETCHES
from academy.models.identity import LiveMembership
from academy.models.principal import Principal
from academy.repos.principal_repo import PrincipalRepo
from academy.services.cache import CacheService

logger = logging.getLogger(__name__)

# Used when a 429 arrives without a usable Retry-After.
DEFAULT_RETRY_AFTER = 60

_COOLDOWN_KEY = "membership:cooldown"


def parse_retry_after(response: httpx.Response) -> int:
    """Seconds to wait, from the Retry-After header or the JSON body."""
    raw = response.headers.get("Retry-After")
    if raw is None:
        try:
            raw = response.json().get("retry_after")
        except (ValueError, AttributeError):
            raw = None
    try:
        seconds = float(raw) if raw is not None else float(DEFAULT_RETRY_AFTER)
    except (TypeError, ValueError):
        seconds = float(DEFAULT_RETRY_AFTER)
    return max(1, math.ceil(seconds))


class GroupMembershipSync:
    def __init__(
        self,
        client: httpx.AsyncClient,
        principals: PrincipalRepo,
        cache: CacheService,
        *,
        api_url: str,
        guild_id: str,
        bot_token: str,
        timeout: float = 10.0,
    ) -> None:
        self._client = client
        self._principals = principals
        self._cache = cache
        self._api_url = api_url.rstrip("/")
        self._guild_id = guild_id
        self._bot_token = bot_token
        self._timeout = timeout

    async def fetch_live(self, principal: Principal) -> LiveMembership:
        remaining = await self._cache.ttl(_COOLDOWN_KEY)
        if remaining > 0:
            MEMBERSHIP_FETCHES.labels(outcome="cooling_down").inc()
            logger.info("Membership fetch skipped, provider cool-down %ds left", remaining)
            raise RateLimited(remaining)

        if not self._bot_token:
            raise RuntimeError("DISCORD_BOT_TOKEN is not configured")

        url = f"{self._api_url}/guilds/{self._guild_id}/members/{principal.external_id}"
        try:
            response = await asyncio.wait_for(
                self._client.get(url, headers={"Authorization": f"Bot {self._bot_token}"}),
                timeout=self._timeout,
            )
        except (TimeoutError, httpx.TimeoutException):
            MEMBERSHIP_FETCHES.labels(outcome="error").inc()
            logger.warning("Membership fetch timed out for principal=%s", principal.id)
            raise TransientNetworkFailure("membership_fetch", timed_out=True) from None
        except httpx.TransportError as exc:
            MEMBERSHIP_FETCHES.labels(outcome="error").inc()
            logger.warning("Membership provider unreachable: %s", exc)
            raise TransientNetworkFailure(
                "membership_fetch", timed_out=False, detail=type(exc).__name__
            ) from None

        if response.status_code == 404:
            MEMBERSHIP_FETCHES.labels(outcome="not_member").inc()
            logger.info("Principal %s is not a member of the group scope", principal.id)
            return LiveMembership(
                external_id=principal.external_id,
                username=None,
                group_ids=frozenset(),
                is_member=False,
            )

        if response.status_code == 429:
            retry_after = parse_retry_after(response)
            await self._cache.set(_COOLDOWN_KEY, str(retry_after), retry_after)
            MEMBERSHIP_FETCHES.labels(outcome="rate_limited").inc()
            logger.warning("Membership provider rate limited us for %ds", retry_after)
            raise RateLimited(retry_after)

        if not response.is_success:
            MEMBERSHIP_FETCHES.labels(outcome="error").inc()
            logger.error("Membership provider returned HTTP %d", response.status_code)
            raise TransientNetworkFailure(
                "membership_fetch",
                timed_out=False,
                detail=f"provider returned HTTP {response.status_code}",
            )

        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            user = body.get("user") or {}
            roles = body.get("roles") or []
        else:
            user = roles = None
        if not isinstance(user, dict) or not isinstance(roles, list):
            MEMBERSHIP_FETCHES.labels(outcome="error").inc()
            logger.error("Membership provider returned an unexpected body shape")
            raise TransientNetworkFailure(
                "membership_fetch", timed_out=False, detail="unexpected provider body"
            )

        MEMBERSHIP_FETCHES.labels(outcome="ok").inc()
        return LiveMembership(
            external_id=str(user.get("id") or principal.external_id),
            username=user.get("username"),
            group_ids=frozenset(str(r) for r in roles),
        )

    async def reconcile(self, principal: Principal, live_group_ids: frozenset[str]) -> Principal:
        """Replace the stored membership set with ``live_group_ids``.

        Idempotent: a second call with the same set leaves storage as is.
        """
        updated = await self._principals.replace_groups(principal.id, frozenset(live_group_ids))
        added = updated.group_ids - principal.group_ids
        removed = principal.group_ids - updated.group_ids
        logger.info(
            "Reconciled groups principal=%s count=%d added=%d removed=%d",
            principal.id,
            len(updated.group_ids),
            len(added),
            len(removed),
        )
        return updated

    async def sync(self, principal: Principal) -> Principal:
        live = await self.fetch_live(principal)
        return await self.reconcile(principal, live.group_ids)
