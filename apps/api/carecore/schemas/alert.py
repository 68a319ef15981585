"""Pydantic schemas for alert rules and domain events."""

from typing import Annotated, Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from carecore.db.enums import AlertPriority, AlertRuleType


# =============================================================================
# Rule Actions (shared by all rule types)
# =============================================================================


class AlertActions(BaseModel):
    """
    Actions executed when a rule fires.

    SMS and email fields are accepted and stored but have no delivery path;
    the engine logs when they are configured.
    """

    model_config = ConfigDict(extra="ignore")

    notify_users: list[UUID] = Field(default_factory=list)
    notification_title: str | None = Field(default=None, max_length=255)
    notification_body: str | None = None
    priority: AlertPriority = AlertPriority.HIGH
    send_sms: bool = False
    sms_recipients: list[str] = Field(default_factory=list)
    send_email: bool = False
    email_recipients: list[str] = Field(default_factory=list)


# =============================================================================
# Rule Conditions (one shape per rule type)
# =============================================================================


class MissedCallConditions(BaseModel):
    model_config = ConfigDict(extra="ignore")

    missed_calls: int = Field(ge=1)


class HealthConcernConditions(BaseModel):
    model_config = ConfigDict(extra="ignore")

    health_score: float


class EmergencyConditions(BaseModel):
    """No threshold: an active emergency rule is consent to notify."""

    model_config = ConfigDict(extra="ignore")


class MissedCallRule(BaseModel):
    rule_type: Literal["missed_call"] = "missed_call"
    conditions: MissedCallConditions
    actions: AlertActions = Field(default_factory=AlertActions)


class HealthConcernRule(BaseModel):
    rule_type: Literal["health_concern"] = "health_concern"
    conditions: HealthConcernConditions
    actions: AlertActions = Field(default_factory=AlertActions)


class EmergencyRule(BaseModel):
    rule_type: Literal["emergency"] = "emergency"
    conditions: EmergencyConditions = Field(default_factory=EmergencyConditions)
    actions: AlertActions = Field(default_factory=AlertActions)


# Tagged union keyed by rule_type
RuleDefinition = Annotated[
    MissedCallRule | HealthConcernRule | EmergencyRule,
    Field(discriminator="rule_type"),
]

rule_definition_adapter: TypeAdapter[RuleDefinition] = TypeAdapter(RuleDefinition)


# =============================================================================
# Domain Events
# =============================================================================


class MissedCallEventData(BaseModel):
    model_config = ConfigDict(extra="allow")

    consecutive_missed: int | None = None


class HealthConcernEventData(BaseModel):
    model_config = ConfigDict(extra="allow")

    health_score: float | None = None


class AlertEventRequest(BaseModel):
    type: AlertRuleType
    household_id: UUID
    relative_id: UUID | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    idempotency_key: str | None = Field(default=None, min_length=1, max_length=255)


class AlertEventResponse(BaseModel):
    success: bool = True
    rules_processed: int
    total_rules: int
    duplicate: bool = False
