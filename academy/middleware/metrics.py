"""HTTP request metrics.

Requests are labelled by the matched route template
(``/v1/courses/{course_id}``) rather than the concrete path, so a label
set per course or lesson id never appears.  Requests that matched no
route keep their raw path.
"""

from __future__ import annotations

import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from academy.core.metrics import ACTIVE_REQUESTS, REQUEST_COUNT, REQUEST_DURATION

# Scrapes are not traffic.
_UNINSTRUMENTED = frozenset({"/metrics"})


def _endpoint_label(request: Request) -> str:
    # The router writes the matched route into the shared scope.
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


def _observe(request: Request, status_code: int, seconds: float) -> None:
    endpoint = _endpoint_label(request)
    REQUEST_COUNT.labels(
        method=request.method, endpoint=endpoint, status_code=str(status_code)
    ).inc()
    REQUEST_DURATION.labels(method=request.method, endpoint=endpoint).observe(seconds)


class MetricsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path in _UNINSTRUMENTED:
            return await call_next(request)

        started = time.perf_counter()
        with ACTIVE_REQUESTS.track_inprogress():
            try:
                response = await call_next(request)
            except Exception:
                # Unhandled: the server error middleware answers 500.
                _observe(request, 500, time.perf_counter() - started)
                raise
        _observe(request, response.status_code, time.perf_counter() - started)
        return response
