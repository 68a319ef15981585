"""Call session schemas."""

from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class UpdateCallStatusRequest(BaseModel):
    """
    Status comes from the call provider or the in-app client.

    Unknown status strings are accepted; they map to the ``initiated`` outcome.
    """
    model_config = ConfigDict(populate_by_name=True)

    session_id: UUID = Field(alias="sessionId")
    status: str = Field(min_length=1, max_length=50)
    call_uuid: str | None = Field(default=None, alias="callUuid", max_length=255)
    duration: int | None = Field(default=None, ge=0)


class UpdateCallStatusResponse(BaseModel):
    success: bool = True
    session_id: UUID = Field(serialization_alias="sessionId")
    status: str
    call_outcome: str = Field(serialization_alias="callOutcome")
    message: str = "Call status updated successfully"


class MissedCallCheckRequest(BaseModel):
    relative_id: UUID


class MissedCallCheckResponse(BaseModel):
    success: bool = True
    consecutive_missed: int
    alert_submitted: bool
    rules_processed: int = 0
    reason: str | None = None
