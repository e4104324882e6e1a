"""Session tokens (ES256 JWT) issued after sign-in.

A session token names the principal and nothing else.  The admin flag
and group memberships are reloaded from the store on every request, so
a reconcile takes effect on the next call instead of at token expiry.

The signing key comes from SESSION_KEY_PATH (PEM, P-256).  Without it
an ephemeral key is generated at import: fine for dev and tests, but
every restart then signs everyone out.
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime, timedelta
from pathlib import Path

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from academy.core.config import SETTINGS

logger = logging.getLogger(__name__)

ALGORITHM = "ES256"
ISSUER = "academy-service"
AUDIENCE = "academy-session"
ACCESS_TOKEN_TTL_MIN = SETTINGS.session_ttl_minutes


def load_signing_key(path: str | None) -> ec.EllipticCurvePrivateKey:
    if not path:
        if SETTINGS.is_prod:
            logger.warning("SESSION_KEY_PATH not set; sessions will not survive a restart")
        return ec.generate_private_key(ec.SECP256R1())

    key = serialization.load_pem_private_key(Path(path).read_bytes(), password=None)
    if not isinstance(key, ec.EllipticCurvePrivateKey) or not isinstance(
        key.curve, ec.SECP256R1
    ):
        raise ValueError("SESSION_KEY_PATH must hold a P-256 EC private key")
    return key


_private_key = load_signing_key(SETTINGS.session_key_path)
_public_key = _private_key.public_key()


def create_access_token(*, sub: str, ttl_minutes: int = ACCESS_TOKEN_TTL_MIN) -> str:
    issued = datetime.now(UTC)
    return jwt.encode(
        {
            "iss": ISSUER,
            "aud": AUDIENCE,
            "sub": sub,
            "iat": issued,
            "exp": issued + timedelta(minutes=ttl_minutes),
            "jti": uuid.uuid4().hex,
        },
        _private_key,
        algorithm=ALGORITHM,
    )


def decode_access_token(token: str) -> dict:
    """Claims of a token this service signed.

    Raises ``jwt.ExpiredSignatureError`` or ``jwt.InvalidTokenError``.
    """
    return jwt.decode(
        token,
        _public_key,
        algorithms=[ALGORITHM],
        audience=AUDIENCE,
        issuer=ISSUER,
        options={"require": ["sub", "exp", "iat", "jti"]},
    )
