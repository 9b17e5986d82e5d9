"""JWT access token validation (ES256).

Tokens are issued by the platform's identity service.  This module owns
the verification side used by the require_user dependency, plus a
create_access_token helper for tests, demos and local development.
"""

from __future__ import annotations

import os
import uuid
from datetime import UTC, datetime, timedelta

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

ALGORITHM = "ES256"
ISSUER = "learning-platform"
AUDIENCE = "engagement-service"
ACCESS_TOKEN_TTL_MIN = 15


def _load_keys() -> tuple[ec.EllipticCurvePrivateKey | None, ec.EllipticCurvePublicKey]:
    """Load the verification key from JWT_PUBLIC_KEY_PEM when set.

    Without it (dev/test), an ephemeral key pair is generated on import so
    tokens minted by create_access_token verify in the same process.
    """
    pem = os.environ.get("JWT_PUBLIC_KEY_PEM", "").strip()
    if pem:
        public_key = serialization.load_pem_public_key(pem.encode("utf-8"))
        if not isinstance(public_key, ec.EllipticCurvePublicKey):
            raise ValueError("JWT_PUBLIC_KEY_PEM must be an EC public key")
        return None, public_key
    private_key = ec.generate_private_key(ec.SECP256R1())
    return private_key, private_key.public_key()


_private_key, _public_key = _load_keys()


def create_access_token(*, sub: str, roles: list[str] | None = None) -> str:
    """Build and sign a JWT access token with the local dev key."""
    if _private_key is None:
        raise RuntimeError("token issuance is disabled when JWT_PUBLIC_KEY_PEM is set")
    now = datetime.now(UTC)
    payload = {
        "sub": sub,
        "iss": ISSUER,
        "aud": AUDIENCE,
        "exp": now + timedelta(minutes=ACCESS_TOKEN_TTL_MIN),
        "iat": now,
        "jti": str(uuid.uuid4()),
        "roles": roles or ["learner"],
    }
    return jwt.encode(payload, _private_key, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Verify signature and claims, return the payload.

    Pins the algorithm to ES256 and validates exp, iss and aud.

    Raises jwt.ExpiredSignatureError, jwt.InvalidTokenError on failure.
    """
    return jwt.decode(
        token,
        _public_key,
        algorithms=[ALGORITHM],
        issuer=ISSUER,
        audience=AUDIENCE,
        options={"require": ["sub", "exp", "iat", "jti"]},
    )
