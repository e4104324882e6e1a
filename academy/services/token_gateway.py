"""Exchange an opaque session token for verified identity attributes.

Each validation attempt moves PENDING -> one terminal state:

    VALIDATED    2xx and a usable JSON payload
    REJECTED     token too short, non-2xx, unparseable or unusable body
    TIMED_OUT    an attempt exceeded the per-attempt deadline
    UNREACHABLE  connection-level failure

Endpoint fallback is deliberately narrow: exactly one extra hop, to the
secondary URL, and only when the primary answers 404 (the provider is
mid-migration between two URL shapes).  Nothing else is retried.
"""

from __future__ import annotations

import asyncio
import enum
import json
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from academy.core.errors import AuthenticationFailure, TransientNetworkFailure
from academy.core.metrics import TOKEN_VALIDATIONS
from academy.models.identity import IdentityPayload

logger = logging.getLogger(__name__)


class ValidationState(enum.StrEnum):
    PENDING = "pending"
    VALIDATED = "validated"
    REJECTED = "rejected"
    TIMED_OUT = "timed_out"
    UNREACHABLE = "unreachable"


class RejectReason(enum.StrEnum):
    MALFORMED_TOKEN = "malformed_token"
    HTTP_STATUS = "http_status"
    INVALID_JSON = "invalid_json"
    INVALID_PAYLOAD = "invalid_payload"


@dataclass(frozen=True, slots=True)
class ValidationResult:
    state: ValidationState
    identity: IdentityPayload | None = None
    reason: RejectReason | None = None
    endpoint: str | None = None
    status_code: int | None = None
    raw_body: str | None = None
    error_body: Any = None
    detail: str = ""

    @property
    def validated(self) -> bool:
        return self.state is ValidationState.VALIDATED


def normalize_avatar(cdn_url: str, external_id: str, avatar: str | None) -> str | None:
    """Full asset URL for an avatar; expands a bare hash via the CDN template."""
    if not avatar or not avatar.strip():
        return None
    avatar = avatar.strip()
    if avatar.startswith(("https://", "http://")):
        return avatar
    # Animated avatar hashes carry an a_ prefix.
    ext = "gif" if avatar.startswith("a_") else "png"
    return f"{cdn_url.rstrip('/')}/avatars/{external_id}/{avatar}.{ext}"


class TokenValidationGateway:
    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        primary_url: str,
        secondary_url: str,
        avatar_cdn_url: str,
        timeout: float = 10.0,
        min_token_length: int = 20,
    ) -> None:
        self._client = client
        self._primary_url = primary_url
        self._secondary_url = secondary_url
        self._avatar_cdn_url = avatar_cdn_url
        self._timeout = timeout
        self._min_token_length = min_token_length

    async def validate(self, token: str | None) -> ValidationResult:
        if not isinstance(token, str) or len(token.strip()) < self._min_token_length:
            logger.warning(
                "Token rejected before network call (length=%d)",
                len(token) if isinstance(token, str) else 0,
            )
            return self._finish(
                ValidationResult(
                    ValidationState.REJECTED,
                    reason=RejectReason.MALFORMED_TOKEN,
                    detail="token missing or too short",
                )
            )
        token = token.strip()

        endpoint = self._primary_url
        try:
            response = await self._get(endpoint, token)
            if response.status_code == 404:
                logger.info("Primary identity endpoint returned 404, trying secondary")
                endpoint = self._secondary_url
                response = await self._get(endpoint, token)
        except (TimeoutError, httpx.TimeoutException):
            logger.warning("Token validation timed out endpoint=%s", endpoint)
            return self._finish(
                ValidationResult(
                    ValidationState.TIMED_OUT,
                    endpoint=endpoint,
                    detail=f"no response within {self._timeout}s",
                )
            )
        except httpx.TransportError as exc:
            logger.warning("Identity endpoint unreachable endpoint=%s: %s", endpoint, exc)
            return self._finish(
                ValidationResult(
                    ValidationState.UNREACHABLE, endpoint=endpoint, detail=type(exc).__name__
                )
            )

        return self._finish(self._interpret(response, endpoint))

    async def _get(self, url: str, token: str) -> httpx.Response:
        # wait_for cancels the in-flight request when the deadline passes.
        return await asyncio.wait_for(
            self._client.get(
                url,
                headers={"Authorization": f"Bearer {token}", "Accept": "application/json"},
            ),
            timeout=self._timeout,
        )

    def _interpret(self, response: httpx.Response, endpoint: str) -> ValidationResult:
        body = response.text
        # The declared content-type is not trusted either way.
        try:
            parsed = json.loads(body) if body else None
        except ValueError:
            parsed = None

        if not response.is_success:
            logger.warning(
                "Identity endpoint rejected token status=%d endpoint=%s",
                response.status_code,
                endpoint,
            )
            return ValidationResult(
                ValidationState.REJECTED,
                reason=RejectReason.HTTP_STATUS,
                endpoint=endpoint,
                status_code=response.status_code,
                raw_body=body,
                error_body=parsed,
            )

        if parsed is None:
            logger.warning("Identity endpoint returned a non-JSON body endpoint=%s", endpoint)
            return ValidationResult(
                ValidationState.REJECTED,
                reason=RejectReason.INVALID_JSON,
                endpoint=endpoint,
                status_code=response.status_code,
                raw_body=body,
            )

        identity = self._normalize(parsed)
        if identity is None:
            return ValidationResult(
                ValidationState.REJECTED,
                reason=RejectReason.INVALID_PAYLOAD,
                endpoint=endpoint,
                status_code=response.status_code,
                raw_body=body,
                error_body=parsed,
            )

        return ValidationResult(
            ValidationState.VALIDATED,
            identity=identity,
            endpoint=endpoint,
            status_code=response.status_code,
        )

    def _normalize(self, data: Any) -> IdentityPayload | None:
        if not isinstance(data, dict) or not data.get("discord_id"):
            return None
        external_id = str(data["discord_id"])
        roles = data.get("roles") or []
        if not isinstance(roles, list):
            return None
        return IdentityPayload(
            external_id=external_id,
            display_name=str(data.get("discord_username") or ""),
            avatar_ref=normalize_avatar(
                self._avatar_cdn_url, external_id, data.get("discord_avatar")
            ),
            group_ids=frozenset(str(r) for r in roles),
            is_admin=bool(data.get("is_admin", False)),
        )

    @staticmethod
    def _finish(result: ValidationResult) -> ValidationResult:
        TOKEN_VALIDATIONS.labels(outcome=str(result.state)).inc()
        return result


def raise_for_result(result: ValidationResult) -> IdentityPayload:
    """Turn a non-validated result into the matching typed failure."""
    if result.state is ValidationState.VALIDATED and result.identity is not None:
        return result.identity
    if result.state is ValidationState.TIMED_OUT:
        raise TransientNetworkFailure("token_validation", timed_out=True, detail=result.detail)
    if result.state is ValidationState.UNREACHABLE:
        raise TransientNetworkFailure("token_validation", timed_out=False, detail=result.detail)
    raise AuthenticationFailure(
        str(result.reason or "rejected"),
        status_code=result.status_code,
        raw_body=result.raw_body,
    )
