"""Per-request id and a single completion line per request.

The ids live in ContextVars (see ``academy.core.logging``) so every
log record emitted while serving the request carries them.
``require_principal`` fills in the principal id once the session token
has been checked.
"""

from __future__ import annotations

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from academy.core.logging import principal_id_var, request_id_var

__all__ = ["RequestContextMiddleware", "principal_id_var", "request_id_var"]

logger = logging.getLogger(__name__)

_MAX_INBOUND_ID = 128


def _request_id(request: Request) -> str:
    inbound = request.headers.get("x-request-id", "").strip()
    # Accept the caller's id for tracing, but not an unbounded one.
    if inbound and len(inbound) <= _MAX_INBOUND_ID:
        return inbound
    return str(uuid.uuid4())


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        rid = _request_id(request)
        rid_token = request_id_var.set(rid)
        pid_token = principal_id_var.set(None)
        started = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(rid_token)
            principal_id_var.reset(pid_token)

        elapsed_ms = round((time.perf_counter() - started) * 1000, 1)
        logger.info(
            "%s %s -> %d (%.1fms)",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
            extra={
                "request_id": rid,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": elapsed_ms,
            },
        )
        response.headers["X-Request-ID"] = rid
        return response
