"""Typed failures raised by the access-control and progress services.

Routers do not catch these; the handlers in ``academy.api.errors`` turn
each one into an HTTP response.  Services add context (which provider
call failed, how long to wait) and re-raise; nothing here is ever
collapsed into a plain boolean.
"""

from __future__ import annotations


class AcademyError(Exception):
    """Base class for every domain failure surfaced to callers."""

    code = "error"


class AuthenticationFailure(AcademyError):
    """Token missing, malformed, or rejected by the identity provider.

    ``attempts_remaining`` is filled in by the sign-in flow.  When it
    reaches zero the client must restart sign-in instead of retrying.
    """

    code = "authentication_failed"

    def __init__(
        self,
        reason: str,
        *,
        status_code: int | None = None,
        raw_body: str | None = None,
        attempts_remaining: int | None = None,
    ) -> None:
        super().__init__(reason)
        self.reason = reason
        self.status_code = status_code
        self.raw_body = raw_body
        self.attempts_remaining = attempts_remaining

    @property
    def restart_sign_in(self) -> bool:
        return self.attempts_remaining is not None and self.attempts_remaining <= 0


class RateLimited(AcademyError):
    """Throttled, either by the membership provider or by our own sign-in limit.

    Never retried automatically; ``retry_after`` is surfaced verbatim.
    """

    code = "rate_limited"

    def __init__(self, retry_after: int, *, operation: str = "membership_fetch") -> None:
        super().__init__(f"{operation} rate limited; retry after {retry_after}s")
        self.retry_after = retry_after
        self.operation = operation


class PermissionDenied(AcademyError):
    """Authenticated, but not entitled (course or admin)."""

    code = "permission_denied"

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class NotFound(AcademyError):
    code = "not_found"

    def __init__(self, kind: str, ident: object) -> None:
        super().__init__(f"{kind} {ident} not found")
        self.kind = kind
        self.ident = str(ident)


class TransientNetworkFailure(AcademyError):
    """Timeout or connection failure talking to an external service.

    Retryable by explicit user action only.
    """

    code = "network_failure"

    def __init__(self, operation: str, *, timed_out: bool, detail: str = "") -> None:
        kind = "timed out" if timed_out else "unreachable"
        super().__init__(f"{operation} {kind}{': ' + detail if detail else ''}")
        self.operation = operation
        self.timed_out = timed_out
        self.detail = detail
