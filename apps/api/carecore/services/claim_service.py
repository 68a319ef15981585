"""Claim resolver - binds a pairing to a concrete device/user identity.

Both claim paths write through a single conditional UPDATE guarded by
``claim_version`` (compare-and-swap). A writer that loses the race re-reads
the row and re-applies the conflict rule, so two concurrent claims with
different identities can never both succeed.

``device_info`` is merged in SQL (JSONB ``||`` / SQLite ``json_patch``) so
fields written by other processes survive.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import literal, func, update
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from carecore.core.errors import AlreadyClaimed, NotFound, PersistenceFailure
from carecore.core.structured_logging import build_log_context
from carecore.db.models import DevicePair
from carecore.db.types import utcnow
from carecore.services import pairing_service

logger = logging.getLogger(__name__)

# device_info key holding the identity that owns chat access
IDENTITY_KEY = "identity_user_id"

# Re-reads after losing a compare-and-swap before giving up (retryable)
CLAIM_MAX_ATTEMPTS = 3


@dataclass(frozen=True)
class ClaimResult:
    user_id: UUID
    household_id: UUID
    first_time_access: bool = False


@dataclass(frozen=True)
class DeviceClaimResult:
    pairing_token: str
    household_id: UUID
    relative_id: UUID
    relative_name: str


def stored_identity(device_info: dict | None) -> str | None:
    """Identity recorded by a previous chat-access claim, if any."""
    value = (device_info or {}).get(IDENTITY_KEY)
    return str(value) if value else None


def _merged_device_info(db: Session, patch: dict[str, Any]):
    if db.get_bind().dialect.name == "postgresql":
        return DevicePair.device_info.op("||")(literal(patch, type_=JSONB))
    return func.json_patch(DevicePair.device_info, json.dumps(patch))


def conditional_claim_update(
    db: Session,
    *,
    pair_id: UUID,
    expected_version: int,
    claimed_by: UUID,
    claimed_at: datetime,
    device_info_patch: dict[str, Any],
    require_unclaimed: bool = False,
) -> bool:
    """
    Compare-and-swap the claim owner.

    Returns False (and writes nothing) when the row changed since it was read.
    The caller owns commit/rollback.
    """
    conditions = [
        DevicePair.id == pair_id,
        DevicePair.claim_version == expected_version,
    ]
    if require_unclaimed:
        conditions.append(DevicePair.claimed_by.is_(None))

    stmt = (
        update(DevicePair)
        .where(*conditions)
        .values(
            claimed_by=claimed_by,
            claimed_at=claimed_at,
            device_info=_merged_device_info(db, device_info_patch),
            claim_version=DevicePair.claim_version + 1,
        )
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    return result.rowcount == 1


def claim_access(
    db: Session,
    pairing_token: str,
    household_id: UUID,
    claiming_user_id: UUID,
    now: datetime | None = None,
) -> ClaimResult:
    """
    Bind chat access for a paired device to the calling identity.

    Conflict rule: a pairing that already stores an identity can only be
    re-claimed by that identity. A pairing claimed structurally (by code) but
    without a stored identity is taken over by the first chat claim.

    Raises:
        NotFound: no live pairing for (token, household)
        AlreadyClaimed: another identity owns the pairing
        PersistenceFailure: write failed or kept racing (retryable)
    """
    claimant = str(claiming_user_id)

    for attempt in range(CLAIM_MAX_ATTEMPTS):
        now_at = now or utcnow()
        pair = pairing_service.get_live_pair_by_token(db, pairing_token, household_id, now_at)
        if not pair:
            raise NotFound("Device pairing not found. Please complete pairing first.")

        prior_identity = stored_identity(pair.device_info)
        if prior_identity and prior_identity != claimant:
            logger.warning(
                "Pairing already claimed by another identity",
                extra=build_log_context(user_id=claiming_user_id, household_id=household_id),
            )
            raise AlreadyClaimed("This device is already claimed by another user")

        first_time_access = prior_identity is None
        if first_time_access and pair.claimed_by and str(pair.claimed_by) != claimant:
            logger.info(
                "First-time chat access for paired device: claimant %s -> %s",
                pair.claimed_by,
                claimant,
                extra=build_log_context(household_id=household_id),
            )

        expected_version = pair.claim_version
        try:
            swapped = conditional_claim_update(
                db,
                pair_id=pair.id,
                expected_version=expected_version,
                claimed_by=claiming_user_id,
                claimed_at=pair.claimed_at or now_at,
                device_info_patch={
                    IDENTITY_KEY: claimant,
                    "chat_access_claimed_at": now_at.isoformat(),
                },
            )
            if swapped:
                db.commit()
                logger.info(
                    "Chat access claimed",
                    extra=build_log_context(user_id=claiming_user_id, household_id=household_id),
                )
                return ClaimResult(
                    user_id=claiming_user_id,
                    household_id=household_id,
                    first_time_access=first_time_access,
                )
            db.rollback()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("Failed to claim chat access")
            raise PersistenceFailure("Failed to claim chat access") from exc

        logger.info("Claim lost compare-and-swap (attempt %d), re-reading", attempt + 1)

    raise PersistenceFailure("Pairing is being updated concurrently. Please retry.")


def claim_pairing_code(
    db: Session,
    code: str,
    claiming_user_id: UUID,
    device_fingerprint: str | None = None,
    claim_ip: str | None = None,
    now: datetime | None = None,
) -> DeviceClaimResult:
    """
    Device-side claim: the elder device presents the 6-digit code.

    Only unexpired, unclaimed requests qualify. The pair token is returned so
    the device can later claim chat access.

    Raises:
        NotFound: no live, unclaimed request with this code
        AlreadyClaimed: another device claimed it first
        PersistenceFailure: write failed (retryable)
    """
    now = now or utcnow()
    pair = pairing_service.find_claimable_pair_by_code(db, code, now)
    if not pair:
        raise NotFound("Invalid or expired pairing code")

    pairing_token = pair.pair_token
    household_id = pair.household_id
    relative_id = pair.relative_id
    relative_name = pair.relative.full_name if pair.relative else "Your Family"

    patch: dict[str, Any] = {
        "claimed_by_user_id": str(claiming_user_id),
        "claim_ip": claim_ip or "unknown",
        "paired_at": now.isoformat(),
    }
    if device_fingerprint:
        patch["device_fingerprint"] = device_fingerprint

    try:
        swapped = conditional_claim_update(
            db,
            pair_id=pair.id,
            expected_version=pair.claim_version,
            claimed_by=claiming_user_id,
            claimed_at=now,
            device_info_patch=patch,
            require_unclaimed=True,
        )
        if not swapped:
            db.rollback()
            raise AlreadyClaimed("Pairing code was already used")
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to claim pairing code")
        raise PersistenceFailure("Failed to claim pairing code") from exc

    logger.info(
        "Device paired",
        extra=build_log_context(
            user_id=claiming_user_id, household_id=household_id, relative_id=relative_id
        ),
    )
    return DeviceClaimResult(
        pairing_token=pairing_token,
        household_id=household_id,
        relative_id=relative_id,
        relative_name=relative_name or "Your Family",
    )
