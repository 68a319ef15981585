"""Webhook handler registry."""

from __future__ import annotations

from carecore.services.webhooks.base import WebhookHandler
from carecore.services.webhooks.call_provider import CallProviderWebhookHandler

_HANDLERS: dict[str, WebhookHandler] = {
    "call-provider": CallProviderWebhookHandler(),
}


def get_handler(name: str) -> WebhookHandler:
    handler = _HANDLERS.get(name)
    if not handler:
        raise KeyError(f"Unknown webhook handler: {name}")
    return handler
