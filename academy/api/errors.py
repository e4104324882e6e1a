"""Translate domain failures into HTTP responses.

Every body has the same shape: ``{"error": <code>, "detail": <message>}``
plus the fields a client needs to act on that failure (when to retry,
whether to restart sign-in).
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from academy.core.errors import (
    AuthenticationFailure,
    NotFound,
    PermissionDenied,
    RateLimited,
    TransientNetworkFailure,
)

logger = logging.getLogger(__name__)


def _body(exc: Exception, code: str, **extra) -> dict:
    return {"error": code, "detail": str(exc), **extra}


async def _authentication_failure(request: Request, exc: AuthenticationFailure) -> JSONResponse:
    body = _body(
        exc,
        exc.code,
        reason=exc.reason,
        action="restart_sign_in" if exc.restart_sign_in else "retry",
    )
    if exc.attempts_remaining is not None:
        body["attempts_remaining"] = exc.attempts_remaining
    if exc.status_code is not None:
        body["provider_status"] = exc.status_code
    return JSONResponse(
        body,
        status_code=status.HTTP_401_UNAUTHORIZED,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def _rate_limited(request: Request, exc: RateLimited) -> JSONResponse:
    return JSONResponse(
        _body(exc, exc.code, retry_after=exc.retry_after, operation=exc.operation),
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        headers={"Retry-After": str(exc.retry_after)},
    )


async def _permission_denied(request: Request, exc: PermissionDenied) -> JSONResponse:
    return JSONResponse(_body(exc, exc.code), status_code=status.HTTP_403_FORBIDDEN)


async def _not_found(request: Request, exc: NotFound) -> JSONResponse:
    return JSONResponse(
        _body(exc, exc.code, kind=exc.kind), status_code=status.HTTP_404_NOT_FOUND
    )


async def _network_failure(request: Request, exc: TransientNetworkFailure) -> JSONResponse:
    logger.warning("Upstream failure on %s %s: %s", request.method, request.url.path, exc)
    code = status.HTTP_504_GATEWAY_TIMEOUT if exc.timed_out else status.HTTP_502_BAD_GATEWAY
    return JSONResponse(
        _body(exc, exc.code, operation=exc.operation, timed_out=exc.timed_out),
        status_code=code,
    )


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AuthenticationFailure, _authentication_failure)  # type: ignore[arg-type]
    app.add_exception_handler(RateLimited, _rate_limited)  # type: ignore[arg-type]
    app.add_exception_handler(PermissionDenied, _permission_denied)  # type: ignore[arg-type]
    app.add_exception_handler(NotFound, _not_found)  # type: ignore[arg-type]
    app.add_exception_handler(TransientNetworkFailure, _network_failure)  # type: ignore[arg-type]
