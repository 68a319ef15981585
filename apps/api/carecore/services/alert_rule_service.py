"""Alert rule engine - converts domain events into family notifications.

Rules are stored as untyped JSON but evaluated through the tagged union in
``carecore.schemas.alert`` so every rule type has an explicit policy:

- missed_call: fires when consecutive_missed >= conditions.missed_calls
- health_concern: fires when health_score <= conditions.health_score
- emergency: always fires

Each firing rule is handled in isolation. A dispatch or insert failure for one
rule is logged and the loop continues.
"""

import logging
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from carecore.core.errors import InvalidRequest, PersistenceFailure
from carecore.core.structured_logging import build_log_context
from carecore.db.enums import AlertRuleType, FamilyNotificationType
from carecore.db.models import AlertRule, FamilyNotification, ProcessedAlertEvent
from carecore.db.types import utcnow
from carecore.schemas.alert import (
    EmergencyRule,
    HealthConcernEventData,
    HealthConcernRule,
    MissedCallEventData,
    MissedCallRule,
    RuleDefinition,
    rule_definition_adapter,
)
from carecore.services.notification_dispatcher import NotificationDispatcher

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AlertEventResult:
    rules_processed: int
    total_rules: int
    duplicate: bool = False


# =============================================================================
# Rule CRUD helpers
# =============================================================================


def parse_rule(rule: AlertRule) -> RuleDefinition:
    """Typed view of a stored rule. Raises pydantic ValidationError."""
    return rule_definition_adapter.validate_python(
        {
            "rule_type": rule.rule_type,
            "conditions": rule.conditions or {},
            "actions": rule.actions or {},
        }
    )


def create_rule(
    db: Session,
    household_id: UUID,
    rule_name: str,
    definition: dict[str, Any],
    created_by: UUID | None = None,
    is_active: bool = True,
) -> AlertRule:
    """Validate and store a rule. Raises InvalidRequest for a malformed definition."""
    try:
        parsed = rule_definition_adapter.validate_python(definition)
    except ValidationError as exc:
        raise InvalidRequest(f"Invalid alert rule: {exc.errors()[0]['msg']}") from exc

    rule = AlertRule(
        household_id=household_id,
        rule_name=rule_name,
        rule_type=parsed.rule_type,
        conditions=parsed.conditions.model_dump(mode="json"),
        actions=parsed.actions.model_dump(mode="json"),
        is_active=is_active,
        created_by=created_by,
    )
    try:
        db.add(rule)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to create alert rule")
        raise PersistenceFailure("Failed to create alert rule") from exc
    db.refresh(rule)
    return rule


def list_active_rules(db: Session, household_id: UUID, event_type: str) -> list[AlertRule]:
    return (
        db.query(AlertRule)
        .filter(
            AlertRule.household_id == household_id,
            AlertRule.rule_type == event_type,
            AlertRule.is_active.is_(True),
        )
        .order_by(AlertRule.created_at)
        .all()
    )


# =============================================================================
# Evaluation
# =============================================================================


def _parse_event_data(event_type: AlertRuleType, data: dict[str, Any]):
    try:
        if event_type == AlertRuleType.MISSED_CALL:
            return MissedCallEventData.model_validate(data)
        if event_type == AlertRuleType.HEALTH_CONCERN:
            return HealthConcernEventData.model_validate(data)
    except ValidationError as exc:
        raise InvalidRequest(f"Invalid event data: {exc.errors()[0]['msg']}") from exc
    return data


def rule_fires(rule: RuleDefinition, event_data: Any) -> bool:
    """Evaluation policy per rule type."""
    if isinstance(rule, MissedCallRule):
        count = event_data.consecutive_missed
        return count is not None and count >= rule.conditions.missed_calls
    if isinstance(rule, HealthConcernRule):
        score = event_data.health_score
        return score is not None and score <= rule.conditions.health_score
    if isinstance(rule, EmergencyRule):
        return True
    raise TypeError(f"Unhandled rule type: {type(rule).__name__}")


def _log_undelivered_channels(rule: AlertRule, parsed: RuleDefinition) -> None:
    actions = parsed.actions
    if actions.send_sms or actions.sms_recipients:
        logger.warning(
            "Alert rule %s requests SMS delivery; no SMS channel configured, skipping",
            rule.rule_name,
            extra=build_log_context(household_id=rule.household_id),
        )
    if actions.send_email or actions.email_recipients:
        logger.warning(
            "Alert rule %s requests email delivery; no email channel configured, skipping",
            rule.rule_name,
            extra=build_log_context(household_id=rule.household_id),
        )


async def _execute_actions(
    db: Session,
    dispatcher: NotificationDispatcher,
    rule: AlertRule,
    parsed: RuleDefinition,
    event_type: AlertRuleType,
    relative_id: UUID | None,
) -> None:
    actions = parsed.actions
    title = actions.notification_title or f"{rule.rule_name} Alert"
    body = actions.notification_body or f"Alert triggered for rule: {rule.rule_name}"

    if actions.notify_users:
        try:
            await dispatcher.send(
                list(actions.notify_users),
                title,
                body,
                data={
                    "type": "alert_rule",
                    "rule_id": str(rule.id),
                    "household_id": str(rule.household_id),
                    "relative_id": str(relative_id) if relative_id else None,
                    "alert_type": event_type.value,
                },
            )
        except Exception:
            logger.exception(
                "Error sending alert notification for rule %s",
                rule.id,
                extra=build_log_context(household_id=rule.household_id),
            )

    _log_undelivered_channels(rule, parsed)

    notification = FamilyNotification(
        household_id=rule.household_id,
        relative_id=relative_id,
        alert_rule_id=rule.id,
        title=title,
        message=actions.notification_body or f"Alert triggered: {rule.rule_name}",
        notification_type=FamilyNotificationType.ALERT.value,
        priority=actions.priority.value,
        sent_to_user_ids=[str(user_id) for user_id in actions.notify_users],
    )
    try:
        db.add(notification)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception(
            "Error recording family notification for rule %s",
            rule.id,
            extra=build_log_context(household_id=rule.household_id),
        )


# =============================================================================
# Idempotency
# =============================================================================


def _claim_idempotency_key(
    db: Session,
    household_id: UUID,
    idempotency_key: str,
    event_type: AlertRuleType,
) -> ProcessedAlertEvent | None:
    """
    Insert the dedupe row. Returns the existing row only when a previous
    delivery with this key finished evaluating every rule.

    A row left without ``completed_at`` belongs to a delivery that failed
    part-way, so the event is evaluated again.
    """
    marker = ProcessedAlertEvent(
        household_id=household_id,
        idempotency_key=idempotency_key,
        event_type=event_type.value,
    )
    try:
        db.add(marker)
        db.commit()
        return None
    except IntegrityError:
        db.rollback()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to record alert event key")
        raise PersistenceFailure("Failed to record alert event") from exc

    existing = (
        db.query(ProcessedAlertEvent)
        .filter(
            ProcessedAlertEvent.household_id == household_id,
            ProcessedAlertEvent.idempotency_key == idempotency_key,
        )
        .first()
    )
    if existing is not None and existing.completed_at is None:
        logger.warning(
            "Alert event %s was not completed earlier; evaluating again",
            idempotency_key,
            extra=build_log_context(household_id=household_id),
        )
        return None
    return existing


def _store_counts(
    db: Session,
    household_id: UUID,
    idempotency_key: str,
    result: AlertEventResult,
) -> None:
    try:
        db.query(ProcessedAlertEvent).filter(
            ProcessedAlertEvent.household_id == household_id,
            ProcessedAlertEvent.idempotency_key == idempotency_key,
        ).update(
            {
                ProcessedAlertEvent.rules_processed: result.rules_processed,
                ProcessedAlertEvent.total_rules: result.total_rules,
                ProcessedAlertEvent.completed_at: utcnow(),
            },
            synchronize_session=False,
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to store alert event counts")


# =============================================================================
# Entry point
# =============================================================================


async def process_event(
    db: Session,
    dispatcher: NotificationDispatcher,
    event_type: AlertRuleType | str,
    household_id: UUID,
    relative_id: UUID | None = None,
    data: dict[str, Any] | None = None,
    idempotency_key: str | None = None,
) -> AlertEventResult:
    """
    Evaluate the household's active rules for one domain event.

    Raises:
        InvalidRequest: unknown event type or malformed event data
        PersistenceFailure: rules could not be loaded
    """
    try:
        event_type = AlertRuleType(event_type)
    except ValueError as exc:
        raise InvalidRequest(f"Unknown event type: {event_type}") from exc
    event_data = _parse_event_data(event_type, data or {})

    if idempotency_key:
        seen = _claim_idempotency_key(db, household_id, idempotency_key, event_type)
        if seen is not None:
            logger.info(
                "Duplicate %s event %s ignored",
                event_type.value,
                idempotency_key,
                extra=build_log_context(household_id=household_id),
            )
            return AlertEventResult(
                rules_processed=seen.rules_processed,
                total_rules=seen.total_rules,
                duplicate=True,
            )

    try:
        rules = list_active_rules(db, household_id, event_type.value)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Error fetching alert rules")
        raise PersistenceFailure("Failed to fetch alert rules") from exc

    rules_processed = 0
    for rule in rules:
        try:
            parsed = parse_rule(rule)
        except ValidationError:
            logger.warning(
                "Skipping malformed alert rule %s",
                rule.id,
                extra=build_log_context(household_id=household_id),
            )
            continue

        if not rule_fires(parsed, event_data):
            continue

        logger.info(
            "Alert rule fired: %s (%s)",
            rule.rule_name,
            event_type.value,
            extra=build_log_context(household_id=household_id, relative_id=relative_id),
        )
        await _execute_actions(db, dispatcher, rule, parsed, event_type, relative_id)
        rules_processed += 1

    result = AlertEventResult(rules_processed=rules_processed, total_rules=len(rules))
    if idempotency_key:
        _store_counts(db, household_id, idempotency_key, result)
    return result
