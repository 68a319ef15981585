"""Structured logging helpers (PII-safe)."""

from typing import Any
from uuid import UUID


def build_log_context(
    *,
    user_id: str | UUID | None = None,
    household_id: str | UUID | None = None,
    relative_id: str | UUID | None = None,
    session_id: str | UUID | None = None,
    request_id: str | None = None,
    route: str | None = None,
    method: str | None = None,
) -> dict[str, Any]:
    """Return a PII-safe log context dict."""
    context: dict[str, Any] = {}
    if user_id:
        context["user_id"] = str(user_id)
    if household_id:
        context["household_id"] = str(household_id)
    if relative_id:
        context["relative_id"] = str(relative_id)
    if session_id:
        context["session_id"] = str(session_id)
    if request_id:
        context["request_id"] = request_id
    if route:
        context["route"] = route
    if method:
        context["method"] = method
    return context
