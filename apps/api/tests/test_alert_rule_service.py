"""Tests for the alert rule engine."""

import logging
import uuid

import pytest
from sqlalchemy.exc import OperationalError

from carecore.core.errors import InvalidRequest, PersistenceFailure
from carecore.db.models import AlertRule, FamilyNotification, Household, ProcessedAlertEvent
from carecore.services import alert_rule_service


def _rule(db, household_id, name, rule_type, conditions, actions=None, is_active=True) -> AlertRule:
    rule = AlertRule(
        household_id=household_id,
        rule_name=name,
        rule_type=rule_type,
        conditions=conditions,
        actions=actions or {},
        is_active=is_active,
    )
    db.add(rule)
    db.commit()
    return rule


@pytest.mark.asyncio
async def test_missed_call_rule_fires_once_for_many_recipients(
    db, test_household, test_relative, fake_dispatcher
):
    recipients = [str(uuid.uuid4()) for _ in range(5)]
    rule = _rule(
        db,
        test_household.id,
        "Missed calls",
        "missed_call",
        {"missed_calls": 3},
        {"notify_users": recipients},
    )

    result = await alert_rule_service.process_event(
        db,
        fake_dispatcher,
        "missed_call",
        test_household.id,
        relative_id=test_relative.id,
        data={"consecutive_missed": 3},
    )

    assert result.rules_processed == 1
    assert result.total_rules == 1
    assert len(fake_dispatcher.sent) == 1
    assert len(fake_dispatcher.sent[0]["user_ids"]) == 5

    notifications = db.query(FamilyNotification).all()
    assert len(notifications) == 1
    notification = notifications[0]
    assert notification.alert_rule_id == rule.id
    assert notification.relative_id == test_relative.id
    assert notification.title == "Missed calls Alert"
    assert notification.message == "Alert triggered: Missed calls"
    assert notification.notification_type == "alert"
    assert notification.priority == "high"
    assert sorted(notification.sent_to_user_ids) == sorted(recipients)


@pytest.mark.asyncio
async def test_missed_call_below_threshold_does_not_fire(db, test_household, fake_dispatcher):
    _rule(db, test_household.id, "Missed calls", "missed_call", {"missed_calls": 3})

    result = await alert_rule_service.process_event(
        db, fake_dispatcher, "missed_call", test_household.id, data={"consecutive_missed": 2}
    )

    assert result.rules_processed == 0
    assert result.total_rules == 1
    assert db.query(FamilyNotification).count() == 0


@pytest.mark.asyncio
async def test_health_concern_fires_at_or_below_threshold(db, test_household, fake_dispatcher):
    _rule(db, test_household.id, "Low score", "health_concern", {"health_score": 2})

    low = await alert_rule_service.process_event(
        db, fake_dispatcher, "health_concern", test_household.id, data={"health_score": 2}
    )
    high = await alert_rule_service.process_event(
        db, fake_dispatcher, "health_concern", test_household.id, data={"health_score": 4}
    )
    missing = await alert_rule_service.process_event(
        db, fake_dispatcher, "health_concern", test_household.id, data={}
    )

    assert (low.rules_processed, high.rules_processed, missing.rules_processed) == (1, 0, 0)


@pytest.mark.asyncio
async def test_emergency_always_fires(db, test_household, fake_dispatcher):
    _rule(
        db,
        test_household.id,
        "Emergency",
        "emergency",
        {},
        {"notify_users": [str(uuid.uuid4())], "priority": "urgent", "notification_body": "Call now"},
    )

    result = await alert_rule_service.process_event(
        db, fake_dispatcher, "emergency", test_household.id, data={"anything": "ignored"}
    )

    assert result.rules_processed == 1
    notification = db.query(FamilyNotification).one()
    assert notification.priority == "urgent"
    assert notification.message == "Call now"
    assert fake_dispatcher.sent[0]["body"] == "Call now"
    assert fake_dispatcher.sent[0]["data"]["alert_type"] == "emergency"


@pytest.mark.asyncio
async def test_no_rules_is_not_an_error(db, test_household, fake_dispatcher):
    result = await alert_rule_service.process_event(
        db, fake_dispatcher, "emergency", test_household.id, data={}
    )
    assert (result.rules_processed, result.total_rules) == (0, 0)


@pytest.mark.asyncio
async def test_inactive_and_other_household_rules_ignored(db, test_household, fake_dispatcher):
    _rule(db, test_household.id, "Off", "emergency", {}, is_active=False)
    other = uuid.uuid4()
    db.add(Household(id=other, name="Other"))
    db.commit()
    _rule(db, other, "Elsewhere", "emergency", {})

    result = await alert_rule_service.process_event(
        db, fake_dispatcher, "emergency", test_household.id, data={}
    )

    assert result.total_rules == 0


@pytest.mark.asyncio
async def test_dispatch_failure_isolated_per_rule(db, test_household, fake_dispatcher, caplog):
    for name in ("First", "Second"):
        _rule(db, test_household.id, name, "emergency", {}, {"notify_users": [str(uuid.uuid4())]})
    fake_dispatcher.fail = True

    with caplog.at_level(logging.ERROR):
        result = await alert_rule_service.process_event(
            db, fake_dispatcher, "emergency", test_household.id, data={}
        )

    assert result.rules_processed == 2
    assert db.query(FamilyNotification).count() == 2
    assert caplog.text.count("Error sending alert notification") == 2


@pytest.mark.asyncio
async def test_sms_and_email_actions_are_logged_not_failed(db, test_household, fake_dispatcher, caplog):
    _rule(
        db,
        test_household.id,
        "Escalate",
        "emergency",
        {},
        {"send_sms": True, "sms_recipients": ["+15555550100"], "email_recipients": ["a@b.c"]},
    )

    with caplog.at_level(logging.WARNING):
        result = await alert_rule_service.process_event(
            db, fake_dispatcher, "emergency", test_household.id, data={}
        )

    assert result.rules_processed == 1
    assert "SMS" in caplog.text
    assert "email" in caplog.text
    # No push recipients configured: nothing dispatched, record still written
    assert fake_dispatcher.sent == []
    assert db.query(FamilyNotification).count() == 1


@pytest.mark.asyncio
async def test_malformed_rule_is_skipped(db, test_household, fake_dispatcher):
    _rule(db, test_household.id, "Broken", "missed_call", {"missed_calls": "lots"})
    _rule(db, test_household.id, "Good", "missed_call", {"missed_calls": 1})

    result = await alert_rule_service.process_event(
        db, fake_dispatcher, "missed_call", test_household.id, data={"consecutive_missed": 4}
    )

    assert result.total_rules == 2
    assert result.rules_processed == 1


@pytest.mark.asyncio
async def test_unknown_event_type_rejected(db, test_household, fake_dispatcher):
    with pytest.raises(InvalidRequest):
        await alert_rule_service.process_event(db, fake_dispatcher, "fall_detected", test_household.id)


@pytest.mark.asyncio
async def test_malformed_event_data_rejected(db, test_household, fake_dispatcher):
    with pytest.raises(InvalidRequest):
        await alert_rule_service.process_event(
            db, fake_dispatcher, "missed_call", test_household.id, data={"consecutive_missed": "many"}
        )


@pytest.mark.asyncio
async def test_idempotency_key_suppresses_second_submission(db, test_household, fake_dispatcher):
    _rule(db, test_household.id, "Emergency", "emergency", {}, {"notify_users": [str(uuid.uuid4())]})

    first = await alert_rule_service.process_event(
        db, fake_dispatcher, "emergency", test_household.id, data={}, idempotency_key="evt-1"
    )
    second = await alert_rule_service.process_event(
        db, fake_dispatcher, "emergency", test_household.id, data={}, idempotency_key="evt-1"
    )

    assert first.duplicate is False
    assert second.duplicate is True
    assert (second.rules_processed, second.total_rules) == (1, 1)
    assert len(fake_dispatcher.sent) == 1
    assert db.query(FamilyNotification).count() == 1
    assert db.query(ProcessedAlertEvent).count() == 1


@pytest.mark.asyncio
async def test_retry_after_rule_load_failure_still_fires(db, test_household, fake_dispatcher, monkeypatch):
    _rule(db, test_household.id, "Emergency", "emergency", {}, {"notify_users": [str(uuid.uuid4())]})
    real_list_active_rules = alert_rule_service.list_active_rules

    def failing_list_active_rules(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("connection reset"))

    monkeypatch.setattr(alert_rule_service, "list_active_rules", failing_list_active_rules)
    with pytest.raises(PersistenceFailure):
        await alert_rule_service.process_event(
            db, fake_dispatcher, "emergency", test_household.id, data={}, idempotency_key="evt-9"
        )
    monkeypatch.setattr(alert_rule_service, "list_active_rules", real_list_active_rules)

    retry = await alert_rule_service.process_event(
        db, fake_dispatcher, "emergency", test_household.id, data={}, idempotency_key="evt-9"
    )

    assert retry.duplicate is False
    assert (retry.rules_processed, retry.total_rules) == (1, 1)
    assert len(fake_dispatcher.sent) == 1
    assert db.query(FamilyNotification).count() == 1
    marker = db.query(ProcessedAlertEvent).one()
    assert marker.completed_at is not None


@pytest.mark.asyncio
async def test_retry_after_crash_mid_evaluation_still_fires(db, test_household, fake_dispatcher, monkeypatch):
    _rule(db, test_household.id, "Emergency", "emergency", {})
    real_execute_actions = alert_rule_service._execute_actions

    async def crashing_execute_actions(*args, **kwargs):
        raise RuntimeError("worker killed")

    monkeypatch.setattr(alert_rule_service, "_execute_actions", crashing_execute_actions)
    with pytest.raises(RuntimeError):
        await alert_rule_service.process_event(
            db, fake_dispatcher, "emergency", test_household.id, data={}, idempotency_key="evt-10"
        )
    monkeypatch.setattr(alert_rule_service, "_execute_actions", real_execute_actions)

    retry = await alert_rule_service.process_event(
        db, fake_dispatcher, "emergency", test_household.id, data={}, idempotency_key="evt-10"
    )
    replay = await alert_rule_service.process_event(
        db, fake_dispatcher, "emergency", test_household.id, data={}, idempotency_key="evt-10"
    )

    assert retry.duplicate is False
    assert retry.rules_processed == 1
    assert replay.duplicate is True
    assert db.query(FamilyNotification).count() == 1


@pytest.mark.asyncio
async def test_without_key_each_submission_fires(db, test_household, fake_dispatcher):
    _rule(db, test_household.id, "Emergency", "emergency", {})

    for _ in range(2):
        await alert_rule_service.process_event(db, fake_dispatcher, "emergency", test_household.id)

    assert db.query(FamilyNotification).count() == 2


def test_create_rule_validates_definition(db, test_household, admin_user):
    rule = alert_rule_service.create_rule(
        db,
        test_household.id,
        "Missed calls",
        {"rule_type": "missed_call", "conditions": {"missed_calls": 2}, "actions": {"send_sms": True}},
        created_by=admin_user.id,
    )
    assert rule.conditions == {"missed_calls": 2}
    assert rule.actions["send_sms"] is True
    assert rule.actions["priority"] == "high"

    with pytest.raises(InvalidRequest):
        alert_rule_service.create_rule(
            db, test_household.id, "Bad", {"rule_type": "missed_call", "conditions": {}}
        )
    with pytest.raises(InvalidRequest):
        alert_rule_service.create_rule(
            db, test_household.id, "Bad", {"rule_type": "fall_detected", "conditions": {}}
        )
