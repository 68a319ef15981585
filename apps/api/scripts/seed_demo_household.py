"""
Seed script to create a demo household with an admin, a family member, a relative,
one call session and a default set of alert rules.
Run with: python -m scripts.seed_demo_household
"""

import os

from carecore.core.security import create_bearer_token
from carecore.db.enums import CallOutcome, CallStatus, HouseholdRole
from carecore.db.models import (
    CallLog,
    CallSession,
    Household,
    HouseholdMember,
    Relative,
    User,
)
from carecore.db.session import SessionLocal
from carecore.services import alert_rule_service

DEFAULT_RULES = [
    (
        "Missed calls",
        {"rule_type": "missed_call", "conditions": {"missed_calls": 2}},
    ),
    (
        "Low wellbeing score",
        {"rule_type": "health_concern", "conditions": {"health_score": 2}},
    ),
    (
        "Emergency",
        {"rule_type": "emergency", "conditions": {}, "actions": {"priority": "urgent"}},
    ),
]


def mask_email(email: str) -> str:
    local, _, domain = email.partition("@")
    if not domain:
        return "***"
    return f"{local[:1]}***@{domain}"


def main():
    """Main entry point."""
    print("Seeding demo household...")

    db = SessionLocal()

    try:
        household = Household(name=os.getenv("SEED_HOUSEHOLD_NAME", "Demo Family"))
        db.add(household)
        db.flush()

        admin = User(email=os.getenv("SEED_ADMIN_EMAIL", "admin@example.com"), display_name="Demo Admin")
        member = User(email="member@example.com", display_name="Demo Member")
        db.add_all([admin, member])
        db.flush()

        db.add_all(
            [
                HouseholdMember(household_id=household.id, user_id=admin.id, role=HouseholdRole.ADMIN.value),
                HouseholdMember(household_id=household.id, user_id=member.id, role=HouseholdRole.MEMBER.value),
            ]
        )
        relative = Relative(household_id=household.id, first_name="Rose", last_name="Demo")
        db.add(relative)
        db.flush()

        session = CallSession(
            household_id=household.id,
            relative_id=relative.id,
            status=CallStatus.INITIATED.value,
        )
        db.add(session)
        db.flush()
        db.add(
            CallLog(
                session_id=session.id,
                household_id=household.id,
                relative_id=relative.id,
                call_outcome=CallOutcome.INITIATED.value,
                provider="in_app",
            )
        )
        db.commit()

        notify = [str(admin.id), str(member.id)]
        for rule_name, definition in DEFAULT_RULES:
            actions = {**definition.get("actions", {}), "notify_users": notify}
            alert_rule_service.create_rule(
                db,
                household.id,
                rule_name,
                {**definition, "actions": actions},
                created_by=admin.id,
            )

        print("\nDemo data seeded successfully!")
        print(f"  - household: {household.name} ({household.id})")
        print(f"  - admin: {mask_email(admin.email)} ({admin.id})")
        print(f"  - relative: {relative.full_name} ({relative.id})")
        print(f"  - call session: {session.id}")
        print(f"  - {len(DEFAULT_RULES)} alert rules")
        print(f"\nAdmin bearer token (60 min):\n{create_bearer_token(admin.id)}")

    except Exception as e:
        print(f"ERROR: {e}")
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    main()
