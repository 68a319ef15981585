"""Webhook handler interface."""

from __future__ import annotations

from typing import Protocol

from fastapi import Request, Response
from sqlalchemy.orm import Session

from carecore.services.notification_dispatcher import NotificationDispatcher

WebhookResult = dict | Response


class WebhookHandler(Protocol):
    async def handle(
        self,
        request: Request,
        db: Session,
        dispatcher: NotificationDispatcher,
    ) -> WebhookResult:
        """Handle a webhook request."""
