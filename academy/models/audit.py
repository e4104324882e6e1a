from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID, uuid4


@dataclass(frozen=True, slots=True)
class FailedSignIn:
    """One rejected sign-in, kept for administrators to review.

    Never holds the submitted token.  ``external_id`` is set only when
    the provider's rejected body still named the account.
    """

    id: UUID
    client_key: str
    reason: str
    status_code: int | None
    external_id: str | None
    occurred_at: datetime

    @staticmethod
    def new(
        *,
        client_key: str,
        reason: str,
        occurred_at: datetime,
        status_code: int | None = None,
        external_id: str | None = None,
    ) -> FailedSignIn:
        return FailedSignIn(
            id=uuid4(),
            client_key=client_key,
            reason=reason,
            status_code=status_code,
            external_id=external_id,
            occurred_at=occurred_at,
        )
