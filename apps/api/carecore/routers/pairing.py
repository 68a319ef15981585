"""Device pairing endpoints - code issuance, device claim, chat access claim."""

from uuid import UUID

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session

from carecore.core.config import settings
from carecore.core.deps import get_current_user_id, get_db
from carecore.schemas.pairing import (
    ClaimAccessRequest,
    ClaimAccessResponse,
    PairingClaimRequest,
    PairingClaimResponse,
    PairingInitRequest,
    PairingInitResponse,
)
from carecore.services import claim_service, pairing_service, request_guard_service


router = APIRouter(prefix="/pairing", tags=["pairing"])


@router.options("/init", include_in_schema=False)
@router.options("/claim", include_in_schema=False)
@router.options("/claim-access", include_in_schema=False)
def preflight() -> Response:
    """CORS preflight no-op (the middleware answers real preflights)."""
    return Response(status_code=204)


@router.post("/init", response_model=PairingInitResponse)
def init_pairing(
    data: PairingInitRequest,
    request: Request,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """
    Issue a 6-digit pairing code for a relative's device.

    Household admins only. The pair token stays server-side until the
    device claims the code.
    """
    request_guard_service.enforce_origin(
        db, endpoint="pair-init", origin=request.headers.get("origin"), request=request
    )
    request_guard_service.enforce_rate_limit(
        db,
        identifier=str(user_id),
        endpoint="pair-init",
        max_requests=settings.RATE_LIMIT_PAIR_INIT,
        window_minutes=settings.RATE_LIMIT_WINDOW_MINUTES,
        request=request,
    )
    issued = pairing_service.initiate_pairing(db, data.relative_id, user_id)
    return PairingInitResponse(pairing_code=issued.code, expires_at=issued.expires_at)


@router.post("/claim", response_model=PairingClaimResponse)
def claim_pairing_code(
    data: PairingClaimRequest,
    request: Request,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Device-side claim of a pairing code. Returns the pair token."""
    client_ip = request_guard_service.get_client_ip(request) or "unknown"
    origin = request.headers.get("origin")
    # Native devices send no Origin; browsers are held to the allow-list
    if origin:
        request_guard_service.enforce_origin(
            db, endpoint="pair-claim", origin=origin, request=request
        )
    request_guard_service.enforce_rate_limit(
        db,
        identifier=client_ip,
        endpoint="pair-claim",
        max_requests=settings.RATE_LIMIT_PAIR_CLAIM,
        window_minutes=settings.RATE_LIMIT_WINDOW_MINUTES,
        request=request,
    )
    result = claim_service.claim_pairing_code(
        db,
        data.pairing_code,
        user_id,
        device_fingerprint=data.device_fingerprint,
        claim_ip=client_ip,
    )
    return PairingClaimResponse(
        pairing_token=result.pairing_token,
        household_id=result.household_id,
        relative_id=result.relative_id,
        relative_name=result.relative_name,
    )


@router.post("/claim-access", response_model=ClaimAccessResponse)
def claim_chat_access(
    data: ClaimAccessRequest,
    request: Request,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Bind chat access for a paired device to the calling identity."""
    request_guard_service.enforce_origin(
        db, endpoint="claim-chat-access", origin=request.headers.get("origin"), request=request
    )
    request_guard_service.enforce_rate_limit(
        db,
        identifier=str(user_id),
        endpoint="claim-chat-access",
        max_requests=settings.RATE_LIMIT_CLAIM_ACCESS,
        window_minutes=settings.RATE_LIMIT_WINDOW_MINUTES,
        request=request,
    )
    result = claim_service.claim_access(db, data.pairing_token, data.household_id, user_id)
    return ClaimAccessResponse(user_id=result.user_id, household_id=result.household_id)
