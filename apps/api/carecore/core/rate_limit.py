"""Rate limiting: app-wide slowapi limiter plus per-endpoint sliding windows."""

import logging
import math
import os
import time
from dataclasses import dataclass

from limits import RateLimitItemPerMinute
from limits.storage import storage_from_string
from limits.strategies import MovingWindowRateLimiter
from slowapi import Limiter
from slowapi.util import get_remote_address

from carecore.core.config import settings
from carecore.core.redis_client import get_redis_url, redis_available

logger = logging.getLogger(__name__)

# Configure rate limiter with Redis for multi-worker support
# Falls back to in-memory if Redis is not available (dev/test mode)
IS_TESTING = os.getenv("TESTING", "").lower() in ("1", "true", "yes")
DEFAULT_LIMITS = (
    []
    if IS_TESTING or settings.RATE_LIMIT_API <= 0
    else [f"{settings.RATE_LIMIT_API}/minute"]
)


def _storage_uri() -> str:
    url = get_redis_url()
    if IS_TESTING or not url:
        return "memory://"
    if not redis_available():
        logger.warning("Redis unavailable for rate limiting, using in-memory counters")
        return "memory://"
    return url


STORAGE_URI = _storage_uri()

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=STORAGE_URI,
    default_limits=DEFAULT_LIMITS,
)

# Sliding-window counters keyed by (endpoint, identifier). Shared through Redis
# when configured so every instance sees the same counts.
_window_storage = storage_from_string(STORAGE_URI)
_window_limiter = MovingWindowRateLimiter(_window_storage)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    retry_after: int | None = None


def check_rate_limit(
    identifier: str,
    endpoint: str,
    max_requests: int,
    window_minutes: int,
) -> RateLimitDecision:
    """
    Atomically count one request and decide allow/deny.

    A denied request is not counted. ``retry_after`` is the number of seconds
    until the oldest counted request leaves the window, so it never exceeds
    the window length.
    """
    item = RateLimitItemPerMinute(max_requests, window_minutes)
    if _window_limiter.hit(item, endpoint, identifier):
        stats = _window_limiter.get_window_stats(item, endpoint, identifier)
        return RateLimitDecision(allowed=True, remaining=stats[1])

    reset_time = _window_limiter.get_window_stats(item, endpoint, identifier)[0]
    window_seconds = window_minutes * 60
    retry_after = max(1, min(window_seconds, math.ceil(reset_time - time.time())))
    return RateLimitDecision(allowed=False, remaining=0, retry_after=retry_after)


def reset_rate_limits() -> None:
    """Clear all sliding-window counters (tests and local tooling)."""
    _window_storage.reset()
