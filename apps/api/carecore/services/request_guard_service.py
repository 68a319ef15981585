"""Request guard - sliding-window rate limits and origin allow-list.

Consulted by every mutating endpoint before any state change. Each check,
allowed or denied, appends a ``GuardAuditLog`` row.

Security guidelines:
- NEVER log tokens or pairing codes in audit details
- IP: Trust X-Forwarded-For only behind a load balancer (TRUST_PROXY_HEADERS)
"""

import logging
from urllib.parse import urlsplit

from fastapi import Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from carecore.core import rate_limit
from carecore.core.config import settings
from carecore.core.errors import ForbiddenOrigin, RateLimited
from carecore.db.enums import GuardCheckType
from carecore.db.models import GuardAuditLog

logger = logging.getLogger(__name__)


def get_client_ip(request: Request | None) -> str | None:
    """
    Extract client IP from request.

    Only trusts X-Forwarded-For when TRUST_PROXY_HEADERS=True (behind reverse proxy).
    """
    if not request:
        return None

    if settings.TRUST_PROXY_HEADERS:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            # X-Forwarded-For: client, proxy1, proxy2 - take first
            return forwarded.split(",")[0].strip()

    if request.client:
        return request.client.host

    return None


def get_user_agent(request: Request | None) -> str | None:
    if not request:
        return None
    user_agent = request.headers.get("user-agent")
    return user_agent[:500] if user_agent else None


def normalize_origin(origin: str | None) -> str | None:
    """Reduce an Origin header to scheme://host[:port]; None if unparseable."""
    candidate = (origin or "").strip()
    if not candidate:
        return None
    parts = urlsplit(candidate)
    if not parts.scheme or not parts.netloc:
        return None
    return f"{parts.scheme.lower()}://{parts.netloc.lower()}"


def is_origin_allowed(origin: str | None, allowlist: list[str] | None = None) -> bool:
    allowed = allowlist if allowlist is not None else settings.allowed_origins_list
    if not origin:
        return settings.ALLOW_MISSING_ORIGIN
    normalized = normalize_origin(origin)
    if normalized is None:
        return False
    return normalized in {normalize_origin(o) for o in allowed}


def _record(
    db: Session,
    *,
    check_type: GuardCheckType,
    endpoint: str,
    allowed: bool,
    identifier: str | None = None,
    origin: str | None = None,
    request: Request | None = None,
    detail: dict | None = None,
) -> None:
    entry = GuardAuditLog(
        check_type=check_type.value,
        endpoint=endpoint,
        identifier=identifier,
        origin=origin[:500] if origin else None,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
        allowed=allowed,
        detail=detail or {},
    )
    try:
        db.add(entry)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to write guard audit entry for %s", endpoint)


def enforce_rate_limit(
    db: Session,
    *,
    identifier: str,
    endpoint: str,
    max_requests: int,
    window_minutes: int,
    request: Request | None = None,
) -> None:
    """
    Count one request for (identifier, endpoint).

    Raises:
        RateLimited: quota exhausted; carries retry_after seconds
    """
    decision = rate_limit.check_rate_limit(identifier, endpoint, max_requests, window_minutes)
    _record(
        db,
        check_type=GuardCheckType.RATE_LIMIT,
        endpoint=endpoint,
        allowed=decision.allowed,
        identifier=identifier,
        request=request,
        detail={
            "max_requests": max_requests,
            "window_minutes": window_minutes,
            "remaining": decision.remaining,
            "retry_after": decision.retry_after,
        },
    )
    if not decision.allowed:
        logger.warning(
            "Rate limit exceeded: endpoint=%s identifier=%s retry_after=%s",
            endpoint,
            identifier,
            decision.retry_after,
        )
        raise RateLimited(retry_after=decision.retry_after)


def enforce_origin(
    db: Session,
    *,
    endpoint: str,
    origin: str | None,
    request: Request | None = None,
    require_header: bool = False,
) -> None:
    """
    Validate the request's declared origin against the allow-list.

    With ``require_header`` a missing Origin is denied even when native
    clients are otherwise allowed.

    Raises:
        ForbiddenOrigin: origin not on the allow-list
    """
    if require_header and not origin:
        allowed = False
    else:
        allowed = is_origin_allowed(origin)
    _record(
        db,
        check_type=GuardCheckType.ORIGIN,
        endpoint=endpoint,
        allowed=allowed,
        origin=origin,
        request=request,
    )
    if not allowed:
        logger.warning("Rejected origin for %s: %s", endpoint, origin or "<missing>")
        raise ForbiddenOrigin("Invalid origin")
