"""Tests for consecutive missed-call detection."""

import uuid
from datetime import timedelta

import pytest

from carecore.core.errors import NotFound, Unauthorized
from carecore.db.models import AlertRule, CallLog, CallSession, FamilyNotification
from carecore.db.types import utcnow
from carecore.services import missed_call_service


def _history(db, household, relative, outcomes, start_days_ago=1):
    """Outcomes listed oldest first."""
    base = utcnow() - timedelta(days=start_days_ago)
    for offset, outcome in enumerate(outcomes):
        session = CallSession(household_id=household.id, relative_id=relative.id, status=outcome)
        db.add(session)
        db.flush()
        db.add(
            CallLog(
                session_id=session.id,
                household_id=household.id,
                relative_id=relative.id,
                call_outcome=outcome,
                created_at=base + timedelta(minutes=offset),
            )
        )
    db.commit()


def test_counts_most_recent_run_only(db, test_household, test_relative):
    _history(db, test_household, test_relative, ["missed", "completed", "missed", "missed"])
    assert missed_call_service.count_consecutive_missed(db, test_relative.id) == 2


def test_ignores_calls_older_than_lookback(db, test_household, test_relative):
    _history(db, test_household, test_relative, ["missed", "missed", "missed"], start_days_ago=8)
    assert missed_call_service.count_consecutive_missed(db, test_relative.id) == 0


@pytest.mark.asyncio
async def test_submits_missed_call_event_at_threshold(
    db, test_household, test_relative, member_user, fake_dispatcher
):
    _history(db, test_household, test_relative, ["completed", "missed", "missed"])
    db.add(
        AlertRule(
            household_id=test_household.id,
            rule_name="Two misses",
            rule_type="missed_call",
            conditions={"missed_calls": 2},
            actions={"notify_users": [str(member_user.id)]},
        )
    )
    db.commit()

    result = await missed_call_service.check_missed_calls(
        db, fake_dispatcher, test_relative.id, member_user.id
    )

    assert result.consecutive_missed == 2
    assert result.alert_submitted is True
    assert result.rules_processed == 1
    assert db.query(FamilyNotification).count() == 1


@pytest.mark.asyncio
async def test_below_threshold_submits_nothing(db, test_household, test_relative, member_user, fake_dispatcher):
    _history(db, test_household, test_relative, ["missed"])

    result = await missed_call_service.check_missed_calls(
        db, fake_dispatcher, test_relative.id, member_user.id
    )

    assert result.alert_submitted is False
    assert result.consecutive_missed == 1


@pytest.mark.asyncio
async def test_requires_household_membership(db, test_relative, outsider_user, fake_dispatcher):
    with pytest.raises(Unauthorized):
        await missed_call_service.check_missed_calls(
            db, fake_dispatcher, test_relative.id, outsider_user.id
        )


@pytest.mark.asyncio
async def test_unknown_relative(db, member_user, fake_dispatcher):
    with pytest.raises(NotFound):
        await missed_call_service.check_missed_calls(db, fake_dispatcher, uuid.uuid4(), member_user.id)


@pytest.mark.asyncio
async def test_internal_caller_skips_membership_check(db, test_relative, fake_dispatcher):
    result = await missed_call_service.check_missed_calls(db, fake_dispatcher, test_relative.id, None)

    assert result.consecutive_missed == 0
    assert result.alert_submitted is False
