"""Call session endpoints - status transitions and missed-call checks."""

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session

from carecore.core.config import settings
from carecore.core.deps import Caller, get_caller, get_db, get_internal_caller
from carecore.schemas.call import (
    MissedCallCheckRequest,
    MissedCallCheckResponse,
    UpdateCallStatusRequest,
    UpdateCallStatusResponse,
)
from carecore.services import call_session_service, missed_call_service, request_guard_service
from carecore.services.notification_dispatcher import NotificationDispatcher, get_dispatcher


router = APIRouter(prefix="/calls", tags=["calls"])


@router.options("/status", include_in_schema=False)
@router.options("/missed-check", include_in_schema=False)
def preflight() -> Response:
    return Response(status_code=204)


@router.post(
    "/status",
    response_model=UpdateCallStatusResponse,
    dependencies=[Depends(get_internal_caller)],
)
async def update_call_status(
    data: UpdateCallStatusRequest,
    request: Request,
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """
    Apply a call status transition (internal callers only).

    The transition commits before household members are notified; a failed
    notification never fails this request.
    """
    request_guard_service.enforce_origin(
        db, endpoint="update-call-status", origin=request.headers.get("origin"), request=request
    )
    request_guard_service.enforce_rate_limit(
        db,
        identifier=f"session:{data.session_id}",
        endpoint="update-call-status",
        max_requests=settings.RATE_LIMIT_CALL_STATUS,
        window_minutes=settings.RATE_LIMIT_WINDOW_MINUTES,
        request=request,
    )
    transition = await call_session_service.apply_status_update(
        db,
        dispatcher,
        data.session_id,
        data.status,
        call_uuid=data.call_uuid,
        duration=data.duration,
    )
    if not transition.applied:
        message = f"Call already {transition.status}; update ignored"
    elif not transition.recognized:
        message = f"Unrecognized status; call stays {transition.status}"
    else:
        message = "Call status updated successfully"
    return UpdateCallStatusResponse(
        session_id=transition.session_id,
        status=transition.status,
        call_outcome=transition.call_outcome,
        message=message,
    )


@router.post("/missed-check", response_model=MissedCallCheckResponse)
async def check_missed_calls(
    data: MissedCallCheckRequest,
    request: Request,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """
    Raise a missed_call event when a relative keeps missing calls.

    Household members call this with a bearer token; the scheduler uses the
    internal secret.
    """
    request_guard_service.enforce_origin(
        db, endpoint="check-missed-calls", origin=request.headers.get("origin"), request=request
    )
    request_guard_service.enforce_rate_limit(
        db,
        identifier=f"internal:{data.relative_id}" if caller.internal else str(caller.user_id),
        endpoint="check-missed-calls",
        max_requests=settings.RATE_LIMIT_MISSED_CALL_CHECK,
        window_minutes=settings.RATE_LIMIT_WINDOW_MINUTES,
        request=request,
    )
    result = await missed_call_service.check_missed_calls(
        db, dispatcher, data.relative_id, caller.user_id
    )
    return MissedCallCheckResponse(
        consecutive_missed=result.consecutive_missed,
        alert_submitted=result.alert_submitted,
        rules_processed=result.rules_processed,
        reason=None if result.alert_submitted else "Below missed-call threshold",
    )
