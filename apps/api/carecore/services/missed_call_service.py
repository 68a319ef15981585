"""Consecutive missed-call detection feeding the alert rule engine."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy.orm import Session

from carecore.core.errors import NotFound, Unauthorized
from carecore.core.structured_logging import build_log_context
from carecore.db.enums import AlertRuleType, CallOutcome
from carecore.db.models import CallLog
from carecore.db.types import utcnow
from carecore.services import alert_rule_service, membership_service
from carecore.services.notification_dispatcher import NotificationDispatcher

logger = logging.getLogger(__name__)

LOOKBACK_DAYS = 7
MISSED_CALL_ALERT_THRESHOLD = 2
RECENT_LOG_LIMIT = 20


@dataclass(frozen=True)
class MissedCallCheck:
    consecutive_missed: int
    alert_submitted: bool
    rules_processed: int = 0


def count_consecutive_missed(db: Session, relative_id: UUID, now: datetime | None = None) -> int:
    """Most recent run of missed calls within the lookback window."""
    now = now or utcnow()
    outcomes = (
        db.query(CallLog.call_outcome)
        .filter(
            CallLog.relative_id == relative_id,
            CallLog.created_at >= now - timedelta(days=LOOKBACK_DAYS),
        )
        .order_by(CallLog.created_at.desc())
        .limit(RECENT_LOG_LIMIT)
        .all()
    )
    count = 0
    for (outcome,) in outcomes:
        if outcome != CallOutcome.MISSED.value:
            break
        count += 1
    return count


async def check_missed_calls(
    db: Session,
    dispatcher: NotificationDispatcher,
    relative_id: UUID,
    requesting_user_id: UUID | None,
    now: datetime | None = None,
) -> MissedCallCheck:
    """
    Submit a missed_call event when the relative missed enough calls in a row.

    ``requesting_user_id`` is None for internal callers (the scheduler),
    which skip the membership check.

    Raises:
        NotFound: relative does not exist
        Unauthorized: caller is not a member of the relative's household
    """
    relative = membership_service.get_relative(db, relative_id)
    if not relative:
        raise NotFound("Relative not found")
    if requesting_user_id is not None and not membership_service.is_household_member(
        db, relative.household_id, requesting_user_id
    ):
        raise Unauthorized("Access denied")

    consecutive_missed = count_consecutive_missed(db, relative_id, now)
    if consecutive_missed < MISSED_CALL_ALERT_THRESHOLD:
        return MissedCallCheck(consecutive_missed=consecutive_missed, alert_submitted=False)

    logger.info(
        "Relative has %d consecutive missed calls",
        consecutive_missed,
        extra=build_log_context(household_id=relative.household_id, relative_id=relative_id),
    )
    result = await alert_rule_service.process_event(
        db,
        dispatcher,
        AlertRuleType.MISSED_CALL,
        relative.household_id,
        relative_id=relative_id,
        data={"consecutive_missed": consecutive_missed},
    )
    return MissedCallCheck(
        consecutive_missed=consecutive_missed,
        alert_submitted=True,
        rules_processed=result.rules_processed,
    )
