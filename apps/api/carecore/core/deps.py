"""FastAPI dependencies for authentication and database access."""

from dataclasses import dataclass
from typing import Generator
from uuid import UUID

import jwt
from fastapi import Header
from sqlalchemy.orm import Session

from carecore.core.config import settings
from carecore.core.errors import Unauthenticated
from carecore.core.security import decode_bearer_token, extract_bearer, verify_secret
from carecore.db.session import SessionLocal


INTERNAL_SECRET_HEADER = "X-Internal-Secret"


@dataclass(frozen=True)
class Caller:
    """Authenticated caller: an end user, or a trusted backend service."""

    user_id: UUID | None = None
    internal: bool = False


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _user_id_from_authorization(authorization: str | None) -> UUID:
    token = extract_bearer(authorization)
    if not token:
        raise Unauthenticated("Missing or invalid authorization header")

    try:
        payload = decode_bearer_token(token)
    except jwt.InvalidTokenError:
        raise Unauthenticated("Authentication failed")

    try:
        return UUID(str(payload.get("sub")))
    except ValueError:
        raise Unauthenticated("Authentication failed")


def get_current_user_id(authorization: str | None = Header(default=None)) -> UUID:
    """
    Resolve the caller's user id from an identity-provider bearer token.

    Raises:
        Unauthenticated: header missing, token invalid/expired, or no subject
    """
    return _user_id_from_authorization(authorization)


def get_internal_caller(
    x_internal_secret: str | None = Header(default=None, alias=INTERNAL_SECRET_HEADER),
) -> Caller:
    """Service-to-service callers only."""
    if not verify_secret(x_internal_secret, settings.INTERNAL_SECRET):
        raise Unauthenticated("Invalid internal credentials")
    return Caller(internal=True)


def get_caller(
    authorization: str | None = Header(default=None),
    x_internal_secret: str | None = Header(default=None, alias=INTERNAL_SECRET_HEADER),
) -> Caller:
    """Internal secret if presented, otherwise an end-user bearer token."""
    if x_internal_secret:
        return get_internal_caller(x_internal_secret)
    return Caller(user_id=_user_id_from_authorization(authorization))
