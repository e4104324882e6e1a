from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from academy.core.errors import AuthenticationFailure, TransientNetworkFailure
from academy.services.token_gateway import (
    RejectReason,
    TokenValidationGateway,
    ValidationState,
    normalize_avatar,
    raise_for_result,
)

PRIMARY = "https://identity.test/api/user"
SECONDARY = "https://identity.test/api/v1/user"
CDN = "https://cdn.test"
TOKEN = "provider-token-0123456789abcdef"

PAYLOAD = {
    "discord_id": "555",
    "discord_username": "ada",
    "discord_avatar": "abc123",
    "roles": ["g1", "g2"],
    "is_admin": False,
}


def _validate(handler, token: str = TOKEN, *, timeout: float = 10.0):
    seen: list[httpx.Request] = []

    def _record(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    async def _main():
        async with httpx.AsyncClient(transport=httpx.MockTransport(_record)) as client:
            gateway = TokenValidationGateway(
                client,
                primary_url=PRIMARY,
                secondary_url=SECONDARY,
                avatar_cdn_url=CDN,
                timeout=timeout,
                min_token_length=20,
            )
            return await gateway.validate(token)

    return asyncio.run(_main()), seen


def test_primary_success() -> None:
    result, seen = _validate(lambda r: httpx.Response(200, json=PAYLOAD))
    assert result.state is ValidationState.VALIDATED
    assert result.endpoint == PRIMARY
    assert result.identity.external_id == "555"
    assert result.identity.display_name == "ada"
    assert result.identity.group_ids == frozenset({"g1", "g2"})
    assert len(seen) == 1
    assert seen[0].headers["Authorization"] == f"Bearer {TOKEN}"
    assert seen[0].headers["Accept"] == "application/json"


def test_primary_404_falls_back_to_secondary_with_non_json_content_type() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if str(request.url) == PRIMARY:
            return httpx.Response(404, text="Not Found")
        return httpx.Response(
            200, content=json.dumps(PAYLOAD).encode(), headers={"Content-Type": "text/html"}
        )

    result, seen = _validate(handler)
    assert result.state is ValidationState.VALIDATED
    assert result.endpoint == SECONDARY
    assert result.identity.external_id == "555"
    assert [str(r.url) for r in seen] == [PRIMARY, SECONDARY]
    assert seen[1].headers["Authorization"] == seen[0].headers["Authorization"]
    assert seen[1].headers["Accept"] == "application/json"


def test_fallback_is_a_single_hop() -> None:
    result, seen = _validate(lambda r: httpx.Response(404, json={"error": "gone"}))
    assert result.state is ValidationState.REJECTED
    assert result.reason is RejectReason.HTTP_STATUS
    assert result.status_code == 404
    assert result.error_body == {"error": "gone"}
    assert len(seen) == 2


def test_other_non_2xx_does_not_fall_back() -> None:
    result, seen = _validate(lambda r: httpx.Response(401, text="expired"))
    assert result.state is ValidationState.REJECTED
    assert result.status_code == 401
    assert result.raw_body == "expired"
    assert result.error_body is None
    assert len(seen) == 1


@pytest.mark.parametrize("token", ["", "short", "   padded-but-short   ", None])
def test_short_token_rejected_without_network(token) -> None:
    result, seen = _validate(lambda r: httpx.Response(200, json=PAYLOAD), token=token)
    assert result.state is ValidationState.REJECTED
    assert result.reason is RejectReason.MALFORMED_TOKEN
    assert seen == []


def test_unparseable_success_body_is_rejected_with_raw_body() -> None:
    result, _ = _validate(lambda r: httpx.Response(200, text="<html>login</html>"))
    assert result.state is ValidationState.REJECTED
    assert result.reason is RejectReason.INVALID_JSON
    assert result.raw_body == "<html>login</html>"


def test_payload_without_external_id_is_rejected() -> None:
    result, _ = _validate(lambda r: httpx.Response(200, json={"discord_username": "x"}))
    assert result.state is ValidationState.REJECTED
    assert result.reason is RejectReason.INVALID_PAYLOAD


def test_timeout_is_distinct_from_unreachable() -> None:
    def slow(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    def refused(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    timed_out, _ = _validate(slow)
    unreachable, _ = _validate(refused)
    assert timed_out.state is ValidationState.TIMED_OUT
    assert unreachable.state is ValidationState.UNREACHABLE


def test_deadline_cancels_hanging_attempt() -> None:
    class HangingTransport(httpx.AsyncBaseTransport):
        async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(30)
            return httpx.Response(200, json=PAYLOAD)

    async def _main():
        async with httpx.AsyncClient(transport=HangingTransport()) as client:
            gateway = TokenValidationGateway(
                client,
                primary_url=PRIMARY,
                secondary_url=SECONDARY,
                avatar_cdn_url=CDN,
                timeout=0.05,
            )
            return await gateway.validate(TOKEN)

    assert asyncio.run(_main()).state is ValidationState.TIMED_OUT


# ---- avatar normalization ----


def test_bare_hash_expanded_to_cdn_url() -> None:
    assert normalize_avatar(CDN, "555", "abc123") == f"{CDN}/avatars/555/abc123.png"


def test_animated_hash_uses_gif() -> None:
    assert normalize_avatar(CDN, "555", "a_abc123") == f"{CDN}/avatars/555/a_abc123.gif"


def test_full_url_kept() -> None:
    url = "https://cdn.other/avatars/555/abc.png"
    assert normalize_avatar(CDN, "555", url) == url


@pytest.mark.parametrize("value", [None, "", "   "])
def test_missing_avatar_is_none(value) -> None:
    assert normalize_avatar(CDN, "555", value) is None


def test_validated_identity_carries_expanded_avatar() -> None:
    result, _ = _validate(lambda r: httpx.Response(200, json=PAYLOAD))
    assert result.identity.avatar_ref == f"{CDN}/avatars/555/abc123.png"


# ---- result -> typed failure ----


def test_raise_for_result_maps_states() -> None:
    ok, _ = _validate(lambda r: httpx.Response(200, json=PAYLOAD))
    assert raise_for_result(ok).external_id == "555"

    rejected, _ = _validate(lambda r: httpx.Response(403, text="nope"))
    with pytest.raises(AuthenticationFailure) as auth:
        raise_for_result(rejected)
    assert auth.value.status_code == 403

    def refused(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    unreachable, _ = _validate(refused)
    with pytest.raises(TransientNetworkFailure) as net:
        raise_for_result(unreachable)
    assert net.value.timed_out is False
