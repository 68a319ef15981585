"""Call provider webhook handler."""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import re
import time
from uuid import UUID

from fastapi import HTTPException, Request
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from carecore.core.config import settings
from carecore.core.errors import InvalidRequest, NotFound, Unauthenticated
from carecore.db.enums import CallStatus
from carecore.db.models import CallProviderEvent
from carecore.services import call_session_service
from carecore.services.notification_dispatcher import NotificationDispatcher

logger = logging.getLogger(__name__)
MAX_PAYLOAD_BYTES = 1 * 1024 * 1024  # 1 MB
SIGNATURE_HEADER = "call-provider-signature"

_SIGNATURE_RE = re.compile(r"t=(\d+),\s*v0=([a-f0-9]+)", re.IGNORECASE)

# Provider vocabulary -> session status. Unlisted values pass through unchanged.
PROVIDER_STATUS_MAP: dict[str, str] = {
    "done": CallStatus.COMPLETED.value,
    "success": CallStatus.COMPLETED.value,
    "successful": CallStatus.COMPLETED.value,
    "completed": CallStatus.COMPLETED.value,
    "ok": CallStatus.COMPLETED.value,
    "cancelled": CallStatus.MISSED.value,
    "canceled": CallStatus.MISSED.value,
    "hangup": CallStatus.MISSED.value,
    "hang-up": CallStatus.MISSED.value,
    "no_answer": CallStatus.MISSED.value,
    "missed": CallStatus.MISSED.value,
    "busy": CallStatus.DECLINED.value,
    "rejected": CallStatus.DECLINED.value,
    "declined": CallStatus.DECLINED.value,
    "in_progress": CallStatus.ACTIVE.value,
    "answered": CallStatus.ACTIVE.value,
    "active": CallStatus.ACTIVE.value,
}


def normalize_provider_status(raw_status: str | None) -> str:
    value = (raw_status or "").strip().lower()
    return PROVIDER_STATUS_MAP.get(value, value)


def sign_payload(body: bytes, timestamp: int, secret: str) -> str:
    """Build a signature header value for a body (also used by tests)."""
    message = str(timestamp).encode("utf-8") + b"." + body
    digest = hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()
    return f"t={timestamp},v0={digest}"


def verify_signature(
    body: bytes,
    signature: str,
    secret: str,
    tolerance_seconds: int,
    now: float | None = None,
) -> bool:
    """
    Verify ``t=<unix>,v0=<hex>`` where hex = HMAC-SHA256(secret, "t.body").

    Signatures older than the tolerance are rejected.
    """
    match = _SIGNATURE_RE.search(signature or "")
    if not match:
        return False
    timestamp = int(match.group(1))
    now = time.time() if now is None else now
    if timestamp < now - tolerance_seconds:
        return False
    expected = sign_payload(body, timestamp, secret).split(",", 1)[1]
    supplied = f"v0={match.group(2).lower()}"
    return hmac.compare_digest(expected, supplied)


async def _read_body_safe(request: Request) -> bytes:
    content_length = request.headers.get("content-length")
    if content_length:
        try:
            if int(content_length) > MAX_PAYLOAD_BYTES:
                raise HTTPException(413, "Payload too large")
        except ValueError:
            pass

    chunks: list[bytes] = []
    total = 0
    async for chunk in request.stream():
        if not chunk:
            continue
        total += len(chunk)
        if total > MAX_PAYLOAD_BYTES:
            raise HTTPException(413, "Payload too large")
        chunks.append(chunk)
    return b"".join(chunks)


def _object_field(container: dict, key: str) -> dict:
    value = container.get(key) or {}
    if not isinstance(value, dict):
        raise InvalidRequest(f"Invalid payload: {key} must be an object")
    return value


def _parse_session_id(value) -> UUID | None:
    if not value:
        return None
    try:
        return UUID(str(value))
    except ValueError:
        return None


def _parse_duration(value) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return max(0, int(round(value)))


class CallProviderWebhookHandler:
    async def handle(
        self,
        request: Request,
        db: Session,
        dispatcher: NotificationDispatcher,
    ):
        """
        Receive call status callbacks from the voice provider.

        Security:
        - Validates the timestamped HMAC signature (CALL_PROVIDER_WEBHOOK_SECRET)
        - Deduplicates deliveries via the CallProviderEvent table
        """
        body = await _read_body_safe(request)

        if not settings.CALL_PROVIDER_WEBHOOK_SECRET:
            logger.error("CALL_PROVIDER_WEBHOOK_SECRET not configured")
            raise HTTPException(500, "Webhook not configured")

        signature = request.headers.get(SIGNATURE_HEADER, "")
        if not verify_signature(
            body,
            signature,
            settings.CALL_PROVIDER_WEBHOOK_SECRET,
            settings.CALL_PROVIDER_WEBHOOK_TOLERANCE_SECONDS,
        ):
            logger.warning("Call provider webhook invalid or stale signature")
            raise Unauthenticated("Invalid signature")

        try:
            payload = json.loads(body)
        except json.JSONDecodeError:
            raise InvalidRequest("Invalid JSON")
        if not isinstance(payload, dict):
            raise InvalidRequest("Invalid payload")

        data = _object_field(payload, "data")
        metadata = _object_field(data, "metadata")
        client_data = _object_field(data, "conversation_initiation_client_data")
        dynamic_variables = _object_field(client_data, "dynamic_variables")

        conversation_id = data.get("conversation_id")
        raw_status = data.get("status")
        if raw_status is not None and not isinstance(raw_status, str):
            raise InvalidRequest("Invalid payload: status must be a string")
        status = normalize_provider_status(raw_status)
        session_id = _parse_session_id(dynamic_variables.get("session_id"))
        duration = _parse_duration(metadata.get("call_duration_secs"))
        event_type = payload.get("type") or "call_status"

        provider_event_id = payload.get("event_id") or (
            f"{conversation_id}:{raw_status}"
            if conversation_id
            else hashlib.sha256(body).hexdigest()
        )

        # Dedupe: the row commits together with the session transition
        try:
            webhook_event = CallProviderEvent(
                provider_event_id=str(provider_event_id)[:255],
                event_type=str(event_type)[:100],
                session_id=session_id,
                payload=payload,
            )
            db.add(webhook_event)
            db.flush()
        except IntegrityError:
            db.rollback()
            logger.info("Call provider webhook duplicate event: %s", provider_event_id)
            return {"status": "ok", "message": "Duplicate event"}

        if not session_id or not status:
            logger.info("Call provider webhook without session or status: %s", event_type)
            db.commit()  # Commit the webhook event for audit
            return {"status": "ok", "message": "No session to update"}

        try:
            transition = await call_session_service.apply_status_update(
                db,
                dispatcher,
                session_id,
                status,
                call_uuid=conversation_id,
                duration=duration,
            )
        except NotFound:
            logger.info("Call provider webhook: no session %s", session_id)
            db.commit()
            return {"status": "ok", "message": "No matching session"}

        # Rejected transitions write nothing; keep the event row regardless
        db.commit()
        return {
            "status": "ok",
            "session_id": str(transition.session_id),
            "session_status": transition.status,
            "call_outcome": transition.call_outcome,
        }
