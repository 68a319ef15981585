"""Alert rule engine endpoint."""

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session

from carecore.core.config import settings
from carecore.core.deps import Caller, get_caller, get_db
from carecore.core.errors import Unauthorized
from carecore.schemas.alert import AlertEventRequest, AlertEventResponse
from carecore.services import alert_rule_service, membership_service, request_guard_service
from carecore.services.notification_dispatcher import NotificationDispatcher, get_dispatcher


router = APIRouter(prefix="/alerts", tags=["alerts"])


@router.options("/events", include_in_schema=False)
def preflight() -> Response:
    return Response(status_code=204)


@router.post("/events", response_model=AlertEventResponse)
async def process_alert_event(
    data: AlertEventRequest,
    request: Request,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """
    Evaluate a household's active rules for one domain event.

    Callable by backend services (internal secret) or household members.
    """
    request_guard_service.enforce_origin(
        db, endpoint="process-event", origin=request.headers.get("origin"), request=request
    )
    request_guard_service.enforce_rate_limit(
        db,
        identifier=f"internal:{data.household_id}" if caller.internal else str(caller.user_id),
        endpoint="process-event",
        max_requests=settings.RATE_LIMIT_PROCESS_EVENT,
        window_minutes=settings.RATE_LIMIT_WINDOW_MINUTES,
        request=request,
    )
    if not caller.internal and not membership_service.is_household_member(
        db, data.household_id, caller.user_id
    ):
        raise Unauthorized("Access denied")

    result = await alert_rule_service.process_event(
        db,
        dispatcher,
        data.type,
        data.household_id,
        relative_id=data.relative_id,
        data=data.data,
        idempotency_key=data.idempotency_key,
    )
    return AlertEventResponse(
        rules_processed=result.rules_processed,
        total_rules=result.total_rules,
        duplicate=result.duplicate,
    )
