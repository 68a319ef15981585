"""Enum definitions for application constants."""

from enum import Enum


class HouseholdRole(str, Enum):
    """
    Household membership roles.

    - ADMIN: may pair devices, manage alert rules
    - MEMBER: receives call and alert notifications
    """
    ADMIN = "admin"
    MEMBER = "member"

    @classmethod
    def has_value(cls, value: str) -> bool:
        """Check if value is a valid role."""
        return value in cls._value2member_map_


class CallStatus(str, Enum):
    """
    Call session lifecycle.

        initiated → active → completed | missed | declined

    Terminal states are absorbing.
    """
    INITIATED = "initiated"
    ACTIVE = "active"
    COMPLETED = "completed"
    MISSED = "missed"
    DECLINED = "declined"

    @classmethod
    def has_value(cls, value: str) -> bool:
        return value in cls._value2member_map_


TERMINAL_CALL_STATUSES = frozenset(
    {CallStatus.COMPLETED.value, CallStatus.MISSED.value, CallStatus.DECLINED.value}
)


class CallOutcome(str, Enum):
    """Denormalized outcome mirrored into call logs."""
    INITIATED = "initiated"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    MISSED = "missed"
    DECLINED = "declined"


class AlertRuleType(str, Enum):
    """Domain events an alert rule can react to."""
    MISSED_CALL = "missed_call"
    HEALTH_CONCERN = "health_concern"
    EMERGENCY = "emergency"


class AlertPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class FamilyNotificationType(str, Enum):
    ALERT = "alert"
    CALL_UPDATE = "call_update"


class GuardCheckType(str, Enum):
    """Kinds of request guard checks written to the audit log."""
    RATE_LIMIT = "rate_limit"
    ORIGIN = "origin"
