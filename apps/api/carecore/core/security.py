"""Security utilities for bearer token verification and shared secrets."""

import hmac
import secrets
from datetime import datetime, timedelta, timezone
from uuid import UUID

import jwt

from carecore.core.config import settings


# =============================================================================
# Bearer tokens (issued by the external identity provider)
# =============================================================================

def decode_bearer_token(token: str) -> dict:
    """
    Decode and verify an identity-provider JWT.

    Tries current secret first, then previous (for rotation support).

    Raises:
        jwt.InvalidTokenError: If token invalid with all secrets
    """
    last_error = None
    for secret in settings.jwt_secrets:
        try:
            return jwt.decode(
                token,
                secret,
                algorithms=["HS256"],
                audience=settings.JWT_AUDIENCE,
            )
        except jwt.InvalidTokenError as e:
            last_error = e
            continue
    raise last_error  # type: ignore


def create_bearer_token(user_id: UUID, expires_minutes: int = 60) -> str:
    """
    Mint a bearer token in the identity provider's format.

    Used by local tooling and tests; production tokens come from the provider.
    """
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "aud": settings.JWT_AUDIENCE,
        "iat": now,
        "exp": now + timedelta(minutes=expires_minutes),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm="HS256")


def extract_bearer(authorization: str | None) -> str | None:
    """Return the raw token from an Authorization header, if any."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


# =============================================================================
# Shared secrets and random tokens
# =============================================================================

def verify_secret(provided: str | None, expected: str) -> bool:
    """Constant-time comparison; an unset expected secret never matches."""
    if not expected or not provided:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def generate_pair_token() -> str:
    """Generate an unguessable device pairing token (256 bits, URL-safe base64)."""
    return secrets.token_urlsafe(32)


def generate_pairing_code() -> str:
    """Uniform 6-digit code in [100000, 999999]."""
    return str(100000 + secrets.randbelow(900000))
