"""POST /v1/session: exchange an identity-provider token for a session token."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from academy.api.dependencies import get_sign_in_service
from academy.api.profile import PrincipalOut
from academy.api.ratelimit import client_ip, require_rate_limit
from academy.services.rate_limiter import RateLimitConfig
from academy.services.sign_in import SignInService

router = APIRouter(prefix="/v1/session", tags=["session"])

# Each sign-in costs one outbound validation call: 5 burst, then 1 per 12s.
_SIGN_IN_LIMIT = RateLimitConfig(capacity=5, refill_rate=1 / 12)


class SessionIn(BaseModel):
    token: str


class SessionOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    principal: PrincipalOut
    is_admin: bool


@router.post(
    "",
    response_model=SessionOut,
    dependencies=[Depends(require_rate_limit(_SIGN_IN_LIMIT, operation="sign_in"))],
)
async def create_session(
    body: SessionIn,
    request: Request,
    service: Annotated[SignInService, Depends(get_sign_in_service)],
) -> SessionOut:
    result = await service.sign_in(body.token, client_key=client_ip(request))
    return SessionOut(
        access_token=result.access_token,
        expires_in=result.expires_in,
        principal=PrincipalOut.from_principal(result.principal, is_admin=result.is_admin),
        is_admin=result.is_admin,
    )
