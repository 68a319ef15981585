"""Domain error taxonomy shared by services and routers.

Every error carries a machine-readable ``reason`` and the HTTP status the
router surfaces. Only ``PersistenceFailure`` is retryable by callers;
``NotificationDispatchFailure`` never reaches a response.
"""


class CareCoreError(Exception):
    """Base exception for care coordination errors."""

    reason = "internal_error"
    status_code = 500
    retryable = False

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.reason.replace("_", " ").capitalize()
        super().__init__(self.message)


class Unauthenticated(CareCoreError):
    """No valid caller identity."""

    reason = "unauthenticated"
    status_code = 401


class Unauthorized(CareCoreError):
    """Identity present but lacks the capability."""

    reason = "unauthorized"
    status_code = 403


class ForbiddenOrigin(CareCoreError):
    """Request origin is not on the deployment allow-list."""

    reason = "forbidden_origin"
    status_code = 403


class RateLimited(CareCoreError):
    """Caller exceeded the sliding-window quota."""

    reason = "rate_limited"
    status_code = 429

    def __init__(self, message: str | None = None, retry_after: int | None = None) -> None:
        super().__init__(message or "Rate limit exceeded. Please wait before trying again.")
        self.retry_after = retry_after


class NotFound(CareCoreError):
    """Pairing, session, or relative is absent (or expired)."""

    reason = "not_found"
    status_code = 404


class AlreadyClaimed(CareCoreError):
    """Pairing already bound to a different identity."""

    reason = "already_claimed"
    status_code = 409


class InvalidRequest(CareCoreError):
    """Malformed or incomplete payload."""

    reason = "invalid_request"
    status_code = 400


class PersistenceFailure(CareCoreError):
    """Storage write or read failed; safe to retry with backoff."""

    reason = "persistence_failure"
    status_code = 503
    retryable = True


class NotificationDispatchFailure(CareCoreError):
    """Best-effort delivery failed. Always caught and logged by callers."""

    reason = "notification_dispatch_failure"
    status_code = 502
