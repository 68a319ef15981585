"""Call session state machine.

    initiated → active → completed | missed | declined

Terminal states are absorbing. A transition is applied in three steps, each
in its own transaction:

1. Durable transition on ``call_sessions`` (the only step that can fail the
   caller).
2. Mirror into ``call_logs`` (best-effort).
3. Fan-out notification to household members (best-effort, advisory).

Replays of the same (session, status) are plain overwrites: ``started_at``
and ``ended_at`` are written once, duration is never accumulated.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import func, or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from carecore.core.errors import NotFound, PersistenceFailure
from carecore.core.structured_logging import build_log_context
from carecore.db.enums import TERMINAL_CALL_STATUSES, CallOutcome, CallStatus, FamilyNotificationType
from carecore.db.models import CallLog, CallSession
from carecore.db.types import utcnow
from carecore.services import membership_service
from carecore.services.notification_dispatcher import NotificationDispatcher

logger = logging.getLogger(__name__)

CALL_OUTCOME_BY_STATUS: dict[str, CallOutcome] = {
    CallStatus.ACTIVE.value: CallOutcome.IN_PROGRESS,
    CallStatus.COMPLETED.value: CallOutcome.COMPLETED,
    CallStatus.MISSED.value: CallOutcome.MISSED,
    CallStatus.DECLINED.value: CallOutcome.DECLINED,
}

KNOWN_CALL_STATUSES = frozenset(status.value for status in CallStatus)

# Transitions that fan out a notification to the household
NOTIFY_STATUSES = frozenset({CallStatus.ACTIVE.value, CallStatus.COMPLETED.value})


@dataclass(frozen=True)
class StatusTransition:
    session_id: UUID
    household_id: UUID
    relative_id: UUID
    previous_status: str
    status: str
    call_outcome: str
    duration_seconds: int | None
    applied: bool
    recognized: bool = True

    @property
    def should_notify(self) -> bool:
        return self.applied and self.recognized and self.status in NOTIFY_STATUSES


def map_call_outcome(status: str) -> str:
    """
    Total mapping from session status to call-log outcome.

    Unknown provider statuses map to ``initiated`` with a warning; never raises.
    """
    outcome = CALL_OUTCOME_BY_STATUS.get(status)
    if outcome is None:
        if status != CallStatus.INITIATED.value:
            logger.warning("Unrecognized call status %r; mapping outcome to initiated", status)
        return CallOutcome.INITIATED.value
    return outcome.value


def get_session(db: Session, session_id: UUID) -> CallSession | None:
    return db.query(CallSession).filter(CallSession.id == session_id).first()


def _rejected(session: CallSession, new_status: str) -> StatusTransition:
    logger.warning(
        "Ignoring %s for session in terminal state %s",
        new_status,
        session.status,
        extra=build_log_context(session_id=session.id),
    )
    return StatusTransition(
        session_id=session.id,
        household_id=session.household_id,
        relative_id=session.relative_id,
        previous_status=session.status,
        status=session.status,
        call_outcome=map_call_outcome(session.status),
        duration_seconds=session.duration_seconds,
        applied=False,
    )


def update_status(
    db: Session,
    session_id: UUID,
    new_status: str,
    call_uuid: str | None = None,
    duration: int | None = None,
    now: datetime | None = None,
) -> StatusTransition:
    """
    Apply a status transition and mirror it into the call log.

    Raises:
        NotFound: unknown session (nothing written)
        PersistenceFailure: the session write failed (retryable)
    """
    now = now or utcnow()
    new_status = new_status.strip().lower()

    session = get_session(db, session_id)
    if not session:
        raise NotFound("Call session not found")

    previous_status = session.status
    if previous_status in TERMINAL_CALL_STATUSES and new_status != previous_status:
        return _rejected(session, new_status)

    # Unrecognized provider statuses leave the session where it is
    recognized = new_status in KNOWN_CALL_STATUSES
    values: dict = {"updated_at": now}
    if recognized:
        values["status"] = new_status
    if call_uuid:
        values["call_uuid"] = call_uuid

    if new_status == CallStatus.ACTIVE.value:
        values["started_at"] = func.coalesce(CallSession.started_at, now)

    duration_seconds = session.duration_seconds
    if new_status in TERMINAL_CALL_STATUSES:
        ended_at = session.ended_at or now
        values["ended_at"] = func.coalesce(CallSession.ended_at, now)
        if duration is not None:
            duration_seconds = duration
        elif duration_seconds is None and session.started_at:
            duration_seconds = max(0, int((ended_at - session.started_at).total_seconds()))
        values["duration_seconds"] = duration_seconds

    # Terminal states are absorbing, even against a concurrent writer
    stmt = (
        update(CallSession)
        .where(
            CallSession.id == session_id,
            or_(
                CallSession.status.notin_(TERMINAL_CALL_STATUSES),
                CallSession.status == new_status,
            ),
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    try:
        result = db.execute(stmt)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Error updating call session", extra=build_log_context(session_id=session_id))
        raise PersistenceFailure("Failed to update call session") from exc

    db.expire_all()
    if result.rowcount != 1:
        session = get_session(db, session_id)
        if not session:
            raise NotFound("Call session not found")
        return _rejected(session, new_status)

    call_outcome = map_call_outcome(new_status)
    transition = StatusTransition(
        session_id=session_id,
        household_id=session.household_id,
        relative_id=session.relative_id,
        previous_status=previous_status,
        status=new_status if recognized else previous_status,
        call_outcome=call_outcome,
        duration_seconds=duration_seconds,
        applied=True,
        recognized=recognized,
    )
    _mirror_call_log(db, transition, duration, now)

    logger.info(
        "Call session %s: %s -> %s",
        session_id,
        previous_status,
        transition.status,
        extra=build_log_context(
            session_id=session_id,
            household_id=transition.household_id,
            relative_id=transition.relative_id,
        ),
    )
    return transition


def _mirror_call_log(
    db: Session,
    transition: StatusTransition,
    duration: int | None,
    now: datetime,
) -> None:
    """One-way sync of the outcome into call_logs. Failures are logged only."""
    try:
        call_log = db.query(CallLog).filter(CallLog.session_id == transition.session_id).first()
        if call_log is None:
            call_log = CallLog(
                session_id=transition.session_id,
                household_id=transition.household_id,
                relative_id=transition.relative_id,
                created_at=now,
            )
            db.add(call_log)
        call_log.call_outcome = transition.call_outcome
        if duration is not None:
            call_log.call_duration = duration
        call_log.updated_at = now
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception(
            "Error updating call log", extra=build_log_context(session_id=transition.session_id)
        )


def _format_duration(seconds: int | None) -> str:
    if not seconds:
        return ""
    return f" ({seconds // 60}m {seconds % 60}s)"


async def notify_transition(
    db: Session,
    dispatcher: NotificationDispatcher,
    transition: StatusTransition,
) -> bool:
    """
    Tell every household member about a call starting or completing.

    Advisory only: every failure is logged and swallowed. Returns True when
    the dispatcher accepted the notification.
    """
    if not transition.should_notify:
        return False

    if transition.status == CallStatus.ACTIVE.value:
        title = "Call Started"
        body = "Call is now in progress"
    else:
        title = "Call Completed"
        body = f"Call completed{_format_duration(transition.duration_seconds)}"

    try:
        member_ids = membership_service.list_household_member_ids(db, transition.household_id)
        if not member_ids:
            return False
        await dispatcher.send(
            member_ids,
            title,
            body,
            data={
                "type": FamilyNotificationType.CALL_UPDATE.value,
                "sessionId": str(transition.session_id),
                "status": transition.status,
                "householdId": str(transition.household_id),
                "relativeId": str(transition.relative_id),
            },
        )
    except Exception:
        logger.exception(
            "Error sending family notifications",
            extra=build_log_context(
                session_id=transition.session_id, household_id=transition.household_id
            ),
        )
        return False
    return True


async def apply_status_update(
    db: Session,
    dispatcher: NotificationDispatcher,
    session_id: UUID,
    new_status: str,
    call_uuid: str | None = None,
    duration: int | None = None,
) -> StatusTransition:
    """Durable transition first, then the decoupled notification step."""
    transition = update_status(db, session_id, new_status, call_uuid=call_uuid, duration=duration)
    await notify_transition(db, dispatcher, transition)
    return transition
