"""Redis connection helpers for shared counters."""

from __future__ import annotations

import os

from carecore.core.config import settings

REDIS_DISABLED_URL = "memory://"
DEFAULT_REDIS_CONNECT_TIMEOUT_SECONDS = 1.0

_sync_client = None


def get_redis_url() -> str | None:
    url = settings.REDIS_URL or os.getenv("REDIS_URL", "")
    if not url or url.strip().lower() == REDIS_DISABLED_URL:
        return None
    return url.strip()


def get_sync_redis_client():
    url = get_redis_url()
    if not url:
        return None

    global _sync_client
    if _sync_client is None:
        import redis

        _sync_client = redis.from_url(
            url,
            socket_connect_timeout=DEFAULT_REDIS_CONNECT_TIMEOUT_SECONDS,
        )
    return _sync_client


def redis_available() -> bool:
    """Ping Redis once; False when disabled or unreachable."""
    client = get_sync_redis_client()
    if client is None:
        return False
    try:
        client.ping()
    except Exception:
        return False
    return True
