"""Notification Dispatcher - best-effort push delivery to a set of users.

The push transport itself is external. Callers treat ``send`` as
fire-and-forget: any ``NotificationDispatchFailure`` is caught and logged at
the call site and never fails the surrounding operation.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Protocol
from uuid import UUID

import httpx

from carecore.core.config import settings
from carecore.core.errors import NotificationDispatchFailure
from carecore.services.http_service import post_json_with_retries

logger = logging.getLogger(__name__)

PUSH_MAX_ATTEMPTS = 3
PUSH_RETRY_BASE_DELAY = 0.25
PUSH_RETRY_MAX_DELAY = 2.0


class NotificationDispatcher(Protocol):
    async def send(
        self,
        user_ids: list[UUID],
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
    ) -> None:
        """Deliver best-effort to every user id. Raises NotificationDispatchFailure."""


def _stringify(data: dict[str, Any] | None) -> dict[str, str]:
    # Push payload data values must be strings
    return {key: "" if value is None else str(value) for key, value in (data or {}).items()}


class PushGatewayDispatcher:
    """Posts notifications to the configured push gateway."""

    def __init__(self, url: str, token: str = "", timeout: float = 5.0) -> None:
        self.url = url
        self.token = token
        self.timeout = timeout

    async def send(
        self,
        user_ids: list[UUID],
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
    ) -> None:
        if not user_ids:
            return

        payload = {
            "user_ids": [str(user_id) for user_id in user_ids],
            "title": title,
            "body": body,
            "data": _stringify(data),
        }
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await post_json_with_retries(
                    client,
                    self.url,
                    payload,
                    headers=headers,
                    max_attempts=PUSH_MAX_ATTEMPTS,
                    base_delay=PUSH_RETRY_BASE_DELAY,
                    max_delay=PUSH_RETRY_MAX_DELAY,
                )
        except httpx.HTTPError as exc:
            raise NotificationDispatchFailure(
                f"Push gateway unreachable: {exc.__class__.__name__}"
            ) from exc

        if response.status_code >= 300:
            raise NotificationDispatchFailure(
                f"Push gateway returned {response.status_code}"
            )

        logger.info("Push sent to %d users: %s", len(user_ids), title)


class LoggingDispatcher:
    """Used when no push gateway is configured (dev and local runs)."""

    async def send(
        self,
        user_ids: list[UUID],
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
    ) -> None:
        logger.info(
            "Push gateway not configured; would notify %d users: %s",
            len(user_ids),
            title,
        )


@lru_cache(maxsize=1)
def get_dispatcher() -> NotificationDispatcher:
    """FastAPI dependency; override in tests."""
    if settings.PUSH_GATEWAY_URL:
        return PushGatewayDispatcher(
            settings.PUSH_GATEWAY_URL,
            token=settings.PUSH_GATEWAY_TOKEN,
            timeout=settings.PUSH_TIMEOUT_SECONDS,
        )
    return LoggingDispatcher()
