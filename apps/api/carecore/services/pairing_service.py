"""Pairing service - issues short-lived pairing codes and tokens.

A pairing request binds an elder device to a household+relative. The 6-digit
code is shown to the admin (display/QR); the token only travels through the
device-side claim flow. Expiry is enforced at read time: expired rows are
excluded from every lookup and never purged here.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from carecore.core.config import settings
from carecore.core.errors import NotFound, PersistenceFailure, Unauthorized
from carecore.core.security import generate_pair_token, generate_pairing_code
from carecore.core.structured_logging import build_log_context
from carecore.db.models import DevicePair
from carecore.db.types import utcnow
from carecore.services import membership_service

logger = logging.getLogger(__name__)

# Regenerate the code while it collides with a live, unclaimed request
PAIRING_CODE_MAX_ATTEMPTS = 5


@dataclass(frozen=True)
class PairingIssued:
    pairing_id: UUID
    household_id: UUID
    relative_id: UUID
    code: str
    created_at: datetime
    expires_at: datetime


def _live_filter(now: datetime):
    return DevicePair.expires_at > now


def code_in_use(db: Session, code: str, now: datetime | None = None) -> bool:
    """True when an unexpired, unclaimed request already uses this code."""
    now = now or utcnow()
    return (
        db.query(DevicePair.id)
        .filter(
            DevicePair.code_6 == code,
            _live_filter(now),
            DevicePair.claimed_by.is_(None),
        )
        .first()
        is not None
    )


def _generate_unique_code(db: Session, now: datetime) -> str:
    code = generate_pairing_code()
    for _ in range(PAIRING_CODE_MAX_ATTEMPTS - 1):
        if not code_in_use(db, code, now):
            return code
        code = generate_pairing_code()
    # Uniqueness is for collision avoidance only; the token disambiguates
    logger.warning("Pairing code collision persisted after %d attempts", PAIRING_CODE_MAX_ATTEMPTS)
    return code


def initiate_pairing(
    db: Session,
    relative_id: UUID,
    requesting_user_id: UUID,
    now: datetime | None = None,
) -> PairingIssued:
    """
    Issue a pairing code for a relative's device.

    Raises:
        NotFound: relative does not exist
        Unauthorized: caller is not an admin of the relative's household
        PersistenceFailure: insert failed (retryable)
    """
    relative = membership_service.get_relative(db, relative_id)
    if not relative:
        raise NotFound("Relative not found")

    if not membership_service.is_household_admin(db, relative.household_id, requesting_user_id):
        raise Unauthorized("Access denied. Must be household admin.")

    now = now or utcnow()
    expires_at = now + timedelta(minutes=settings.PAIRING_TTL_MINUTES)
    code = _generate_unique_code(db, now)

    pair = DevicePair(
        household_id=relative.household_id,
        relative_id=relative.id,
        code_6=code,
        pair_token=generate_pair_token(),
        created_by=requesting_user_id,
        created_at=now,
        expires_at=expires_at,
        device_info={},
    )
    try:
        db.add(pair)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to create pairing request")
        raise PersistenceFailure("Failed to create pairing session") from exc

    logger.info(
        "Pairing initiated",
        extra=build_log_context(
            user_id=requesting_user_id,
            household_id=relative.household_id,
            relative_id=relative.id,
        ),
    )
    return PairingIssued(
        pairing_id=pair.id,
        household_id=relative.household_id,
        relative_id=relative.id,
        code=code,
        created_at=now,
        expires_at=expires_at,
    )


def get_live_pair_by_token(
    db: Session,
    pair_token: str,
    household_id: UUID,
    now: datetime | None = None,
) -> DevicePair | None:
    """Lookup by (token, household); expired rows are treated as absent."""
    now = now or utcnow()
    return (
        db.query(DevicePair)
        .filter(
            DevicePair.pair_token == pair_token,
            DevicePair.household_id == household_id,
            _live_filter(now),
        )
        .first()
    )


def find_claimable_pair_by_code(
    db: Session,
    code: str,
    now: datetime | None = None,
) -> DevicePair | None:
    """Newest unexpired, unclaimed request carrying this code."""
    now = now or utcnow()
    return (
        db.query(DevicePair)
        .filter(
            DevicePair.code_6 == code,
            _live_filter(now),
            DevicePair.claimed_by.is_(None),
        )
        .order_by(DevicePair.created_at.desc())
        .first()
    )
