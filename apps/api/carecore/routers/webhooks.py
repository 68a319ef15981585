"""Webhooks router - call provider callbacks."""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from carecore.core.deps import get_db
from carecore.services.notification_dispatcher import NotificationDispatcher, get_dispatcher
from carecore.services.webhooks.registry import get_handler

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/call-provider")
async def call_provider_webhook(
    request: Request,
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Signed status callbacks from the voice call provider."""
    handler = get_handler("call-provider")
    return await handler.handle(request, db, dispatcher)
