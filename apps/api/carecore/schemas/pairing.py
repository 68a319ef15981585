"""Pairing and claim request/response schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class PairingInitRequest(BaseModel):
    relative_id: UUID


class PairingInitResponse(BaseModel):
    """The pair token is never returned to the admin."""
    success: bool = True
    pairing_code: str
    expires_at: datetime


class PairingClaimRequest(BaseModel):
    """Elder device presents the 6-digit code shown to the admin."""
    pairing_code: str = Field(pattern=r"^\d{6}$")
    device_fingerprint: str | None = Field(default=None, max_length=255)


class PairingClaimResponse(BaseModel):
    success: bool = True
    pairing_token: str
    household_id: UUID
    relative_id: UUID
    relative_name: str


class ClaimAccessRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    pairing_token: str = Field(alias="pairingToken", min_length=1, max_length=128)
    household_id: UUID = Field(alias="householdId")


class ClaimAccessResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    message: str = "Chat access claimed successfully"
    user_id: UUID = Field(serialization_alias="userId")
    household_id: UUID = Field(serialization_alias="householdId")
