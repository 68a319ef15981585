"""Baseline migration - households, pairing, calls, alerts

Revision ID: 0001_baseline
Revises:
Create Date: 2026-10-19

Creates tenancy, device pairing, call session, alert rule and request guard
tables.
"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = '0001_baseline'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create all tables."""

    # ==========================================================================
    # Enable required extensions
    # ==========================================================================
    op.execute('CREATE EXTENSION IF NOT EXISTS pgcrypto')  # For gen_random_uuid()

    # ==========================================================================
    # Tenancy
    # ==========================================================================
    op.execute('''
        CREATE TABLE households (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            name VARCHAR(255) NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')

    op.execute('''
        CREATE TABLE users (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            email VARCHAR(255),
            display_name VARCHAR(255),
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')

    op.execute('''
        CREATE TABLE household_members (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            household_id UUID NOT NULL REFERENCES households(id) ON DELETE CASCADE,
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            role VARCHAR(50) NOT NULL CHECK (role IN ('admin', 'member')),
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_household_members_user UNIQUE (household_id, user_id)
        )
    ''')
    op.execute('CREATE INDEX idx_household_members_user ON household_members(user_id)')

    op.execute('''
        CREATE TABLE relatives (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            household_id UUID NOT NULL REFERENCES households(id) ON DELETE CASCADE,
            first_name VARCHAR(100) NOT NULL,
            last_name VARCHAR(100) NOT NULL DEFAULT '',
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX idx_relatives_household ON relatives(household_id)')

    # ==========================================================================
    # Device pairing
    # ==========================================================================
    op.execute('''
        CREATE TABLE device_pairs (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            household_id UUID NOT NULL REFERENCES households(id) ON DELETE CASCADE,
            relative_id UUID NOT NULL REFERENCES relatives(id) ON DELETE CASCADE,
            code_6 VARCHAR(6) NOT NULL,
            pair_token VARCHAR(128) UNIQUE NOT NULL,
            created_by UUID REFERENCES users(id) ON DELETE SET NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            expires_at TIMESTAMPTZ NOT NULL,
            claimed_by UUID,
            claimed_at TIMESTAMPTZ,
            device_info JSONB NOT NULL DEFAULT '{}'::jsonb,
            claim_version INTEGER NOT NULL DEFAULT 0,
            CHECK (expires_at > created_at)
        )
    ''')
    op.execute('CREATE INDEX idx_device_pairs_code_live ON device_pairs(code_6, expires_at)')
    op.execute('CREATE INDEX idx_device_pairs_household ON device_pairs(household_id)')

    # ==========================================================================
    # Calls
    # ==========================================================================
    op.execute('''
        CREATE TABLE call_sessions (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            household_id UUID NOT NULL REFERENCES households(id) ON DELETE CASCADE,
            relative_id UUID NOT NULL REFERENCES relatives(id) ON DELETE CASCADE,
            status VARCHAR(50) NOT NULL DEFAULT 'initiated',
            room_id VARCHAR(255),
            call_uuid VARCHAR(255),
            started_at TIMESTAMPTZ,
            ended_at TIMESTAMPTZ,
            duration_seconds INTEGER,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX idx_call_sessions_household ON call_sessions(household_id, created_at)')
    op.execute('CREATE INDEX idx_call_sessions_call_uuid ON call_sessions(call_uuid)')

    op.execute('''
        CREATE TABLE call_logs (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            session_id UUID UNIQUE NOT NULL REFERENCES call_sessions(id) ON DELETE CASCADE,
            household_id UUID NOT NULL REFERENCES households(id) ON DELETE CASCADE,
            relative_id UUID NOT NULL REFERENCES relatives(id) ON DELETE CASCADE,
            call_outcome VARCHAR(50) NOT NULL DEFAULT 'initiated',
            call_duration INTEGER,
            provider VARCHAR(50),
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX idx_call_logs_relative_created ON call_logs(relative_id, created_at)')

    op.execute('''
        CREATE TABLE call_provider_events (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            provider_event_id VARCHAR(255) UNIQUE NOT NULL,
            event_type VARCHAR(100),
            session_id UUID,
            payload JSONB NOT NULL DEFAULT '{}'::jsonb,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')

    # ==========================================================================
    # Alerts
    # ==========================================================================
    op.execute('''
        CREATE TABLE alert_rules (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            household_id UUID NOT NULL REFERENCES households(id) ON DELETE CASCADE,
            rule_name VARCHAR(255) NOT NULL,
            rule_type VARCHAR(50) NOT NULL,
            conditions JSONB NOT NULL DEFAULT '{}'::jsonb,
            actions JSONB NOT NULL DEFAULT '{}'::jsonb,
            is_active BOOLEAN NOT NULL DEFAULT true,
            created_by UUID,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX idx_alert_rules_lookup ON alert_rules(household_id, rule_type, is_active)')

    op.execute('''
        CREATE TABLE family_notifications (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            household_id UUID NOT NULL REFERENCES households(id) ON DELETE CASCADE,
            relative_id UUID,
            alert_rule_id UUID,
            title VARCHAR(255) NOT NULL,
            message TEXT,
            notification_type VARCHAR(50) NOT NULL,
            priority VARCHAR(20) NOT NULL,
            sent_to_user_ids JSONB NOT NULL DEFAULT '[]'::jsonb,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute(
        'CREATE INDEX idx_family_notifications_household '
        'ON family_notifications(household_id, created_at)'
    )

    op.execute('''
        CREATE TABLE processed_alert_events (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            household_id UUID NOT NULL REFERENCES households(id) ON DELETE CASCADE,
            idempotency_key VARCHAR(255) NOT NULL,
            event_type VARCHAR(50) NOT NULL,
            rules_processed INTEGER NOT NULL DEFAULT 0,
            total_rules INTEGER NOT NULL DEFAULT 0,
            completed_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_processed_alert_events_key UNIQUE (household_id, idempotency_key)
        )
    ''')

    # ==========================================================================
    # Request guard audit
    # ==========================================================================
    op.execute('''
        CREATE TABLE guard_audit_log (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            check_type VARCHAR(20) NOT NULL,
            endpoint VARCHAR(100) NOT NULL,
            identifier VARCHAR(255),
            origin VARCHAR(500),
            ip_address VARCHAR(64),
            user_agent VARCHAR(500),
            allowed BOOLEAN NOT NULL,
            detail JSONB NOT NULL DEFAULT '{}'::jsonb,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX idx_guard_audit_endpoint ON guard_audit_log(endpoint, created_at)')


def downgrade() -> None:
    """Drop all tables."""
    for table in (
        'guard_audit_log',
        'processed_alert_events',
        'family_notifications',
        'alert_rules',
        'call_provider_events',
        'call_logs',
        'call_sessions',
        'device_pairs',
        'relatives',
        'household_members',
        'users',
        'households',
    ):
        op.execute(f'DROP TABLE IF EXISTS {table} CASCADE')
