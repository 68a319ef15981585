"""Membership service - household membership lookups and capability checks."""

import logging
from uuid import UUID

from sqlalchemy.orm import Session

from carecore.db.enums import HouseholdRole
from carecore.db.models import HouseholdMember, Relative


logger = logging.getLogger(__name__)


def get_membership(db: Session, household_id: UUID, user_id: UUID) -> HouseholdMember | None:
    """Get membership scoped to a household."""
    return (
        db.query(HouseholdMember)
        .filter(
            HouseholdMember.household_id == household_id,
            HouseholdMember.user_id == user_id,
        )
        .first()
    )


def is_household_member(db: Session, household_id: UUID, user_id: UUID) -> bool:
    return get_membership(db, household_id, user_id) is not None


def is_household_admin(db: Session, household_id: UUID, user_id: UUID) -> bool:
    membership = get_membership(db, household_id, user_id)
    return membership is not None and membership.role == HouseholdRole.ADMIN.value


def list_household_member_ids(db: Session, household_id: UUID) -> list[UUID]:
    """All user ids in the household, admins first for stable ordering."""
    rows = (
        db.query(HouseholdMember.user_id, HouseholdMember.role)
        .filter(HouseholdMember.household_id == household_id)
        .order_by(HouseholdMember.created_at)
        .all()
    )
    admins = [user_id for user_id, role in rows if role == HouseholdRole.ADMIN.value]
    others = [user_id for user_id, role in rows if role != HouseholdRole.ADMIN.value]
    return admins + others


def get_relative(db: Session, relative_id: UUID) -> Relative | None:
    return db.query(Relative).filter(Relative.id == relative_id).first()
