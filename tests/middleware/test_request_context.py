from __future__ import annotations

import logging
import uuid

import pytest
from fastapi.testclient import TestClient


def test_request_id_generated_when_not_provided(client: TestClient) -> None:
    resp = client.get("/health")
    uuid.UUID(resp.headers["x-request-id"])


def test_request_id_echoed_when_provided(client: TestClient) -> None:
    resp = client.get("/health", headers={"X-Request-ID": "my-custom-request-id-123"})
    assert resp.headers.get("x-request-id") == "my-custom-request-id-123"


def test_request_id_present_on_error_responses(client: TestClient) -> None:
    resp = client.get("/auth/me")  # no session token
    assert resp.status_code == 401
    assert resp.headers.get("x-request-id") is not None


def test_summary_line_logged_per_request(
    client: TestClient, caplog: pytest.LogCaptureFixture
) -> None:
    with caplog.at_level(logging.INFO, logger="academy.middleware.request_context"):
        client.get("/health", headers={"X-Request-ID": "trace-me"})

    records = [r for r in caplog.records if r.name == "academy.middleware.request_context"]
    assert len(records) == 1
    assert records[0].request_id == "trace-me"  # type: ignore[attr-defined]
    assert records[0].status_code == 200  # type: ignore[attr-defined]
    assert "GET /health" in records[0].getMessage()


def test_oversized_inbound_request_id_is_replaced(client: TestClient) -> None:
    resp = client.get("/health", headers={"X-Request-ID": "x" * 500})
    uuid.UUID(resp.headers["x-request-id"])
