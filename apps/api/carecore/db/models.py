"""SQLAlchemy ORM models."""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from carecore.db.base import Base
from carecore.db.enums import CallOutcome, CallStatus
from carecore.db.types import JSONType, utcnow


# =============================================================================
# Tenancy
# =============================================================================

class Household(Base):
    """
    Tenant boundary: owns relatives, devices, call sessions, and alert rules.

    Created at onboarding; never mutated by this service.
    """
    __tablename__ = "households"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    members: Mapped[list["HouseholdMember"]] = relationship(back_populates="household")
    relatives: Mapped[list["Relative"]] = relationship(back_populates="household")


class User(Base):
    """Identity known to the external identity provider (``sub`` claim)."""
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


class HouseholdMember(Base):
    """Links a user to a household with a role (admin or member)."""
    __tablename__ = "household_members"
    __table_args__ = (
        UniqueConstraint("household_id", "user_id", name="uq_household_members_user"),
        Index("idx_household_members_user", "user_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    household_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("households.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    role: Mapped[str] = mapped_column(String(50), nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    household: Mapped["Household"] = relationship(back_populates="members")


class Relative(Base):
    """The elder under care. Read-only here."""
    __tablename__ = "relatives"
    __table_args__ = (
        Index("idx_relatives_household", "household_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    household_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("households.id", ondelete="CASCADE"), nullable=False
    )
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    household: Mapped["Household"] = relationship(back_populates="relatives")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


# =============================================================================
# Device pairing
# =============================================================================

class DevicePair(Base):
    """
    One-time pairing request binding an elder device to a household+relative.

    Expired rows are excluded by query, never deleted. ``claim_version`` is
    bumped on every claim write and used as the compare-and-swap guard.
    """
    __tablename__ = "device_pairs"
    __table_args__ = (
        Index("idx_device_pairs_code_live", "code_6", "expires_at"),
        Index("idx_device_pairs_household", "household_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    household_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("households.id", ondelete="CASCADE"), nullable=False
    )
    relative_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("relatives.id", ondelete="CASCADE"), nullable=False
    )
    code_6: Mapped[str] = mapped_column(String(6), nullable=False)
    pair_token: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    created_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)

    claimed_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    claimed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    device_info: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    claim_version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    relative: Mapped["Relative"] = relationship()


# =============================================================================
# Calls
# =============================================================================

class CallSession(Base):
    """
    One call between the relative and the companion/family.

    Created by the call-initiation path; mutated only by the call session
    state machine.
    """
    __tablename__ = "call_sessions"
    __table_args__ = (
        Index("idx_call_sessions_household", "household_id", "created_at"),
        Index("idx_call_sessions_call_uuid", "call_uuid"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    household_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("households.id", ondelete="CASCADE"), nullable=False
    )
    relative_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("relatives.id", ondelete="CASCADE"), nullable=False
    )
    # Raw provider vocabulary is tolerated; see CallStatus for the known states
    status: Mapped[str] = mapped_column(
        String(50), default=CallStatus.INITIATED.value, nullable=False
    )
    room_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    call_uuid: Mapped[str | None] = mapped_column(String(255), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    ended_at: Mapped[datetime | None] = mapped_column(nullable=True)
    duration_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


class CallLog(Base):
    """Denormalized outcome record, synchronized one-way from CallSession.status."""
    __tablename__ = "call_logs"
    __table_args__ = (
        Index("idx_call_logs_relative_created", "relative_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    session_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("call_sessions.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    household_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("households.id", ondelete="CASCADE"), nullable=False
    )
    relative_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("relatives.id", ondelete="CASCADE"), nullable=False
    )
    call_outcome: Mapped[str] = mapped_column(
        String(50), default=CallOutcome.INITIATED.value, nullable=False
    )
    call_duration: Mapped[int | None] = mapped_column(Integer, nullable=True)
    provider: Mapped[str | None] = mapped_column(String(50), nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


class CallProviderEvent(Base):
    """Raw call-provider webhook deliveries, unique per provider event id."""
    __tablename__ = "call_provider_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    provider_event_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    event_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    session_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    payload: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


# =============================================================================
# Alerts
# =============================================================================

class AlertRule(Base):
    """
    Household-configured condition/action pair.

    ``conditions`` and ``actions`` are validated against the typed variant for
    ``rule_type`` (see schemas.alert) before evaluation.
    """
    __tablename__ = "alert_rules"
    __table_args__ = (
        Index("idx_alert_rules_lookup", "household_id", "rule_type", "is_active"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    household_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("households.id", ondelete="CASCADE"), nullable=False
    )
    rule_name: Mapped[str] = mapped_column(String(255), nullable=False)
    rule_type: Mapped[str] = mapped_column(String(50), nullable=False)
    conditions: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    actions: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


class FamilyNotification(Base):
    """Append-only record of a fired alert (one row per firing rule)."""
    __tablename__ = "family_notifications"
    __table_args__ = (
        Index("idx_family_notifications_household", "household_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    household_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("households.id", ondelete="CASCADE"), nullable=False
    )
    relative_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    alert_rule_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    notification_type: Mapped[str] = mapped_column(String(50), nullable=False)
    priority: Mapped[str] = mapped_column(String(20), nullable=False)
    sent_to_user_ids: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


class ProcessedAlertEvent(Base):
    """Idempotency keys for submitted domain events."""
    __tablename__ = "processed_alert_events"
    __table_args__ = (
        UniqueConstraint(
            "household_id", "idempotency_key", name="uq_processed_alert_events_key"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    household_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("households.id", ondelete="CASCADE"), nullable=False
    )
    idempotency_key: Mapped[str] = mapped_column(String(255), nullable=False)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    rules_processed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_rules: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    # Set once every rule has been evaluated; an unset row is retried
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


# =============================================================================
# Request guard audit
# =============================================================================

class GuardAuditLog(Base):
    """Every rate-limit and origin check, allowed or denied."""
    __tablename__ = "guard_audit_log"
    __table_args__ = (
        Index("idx_guard_audit_endpoint", "endpoint", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    check_type: Mapped[str] = mapped_column(String(20), nullable=False)
    endpoint: Mapped[str] = mapped_column(String(100), nullable=False)
    identifier: Mapped[str | None] = mapped_column(String(255), nullable=True)
    origin: Mapped[str | None] = mapped_column(String(500), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)
    allowed: Mapped[bool] = mapped_column(Boolean, nullable=False)
    detail: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
