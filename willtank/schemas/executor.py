"""Pydantic schemas for the public executor unlock portal and document gate.

Field names follow the JSON payloads the unlock page already consumes
(camelCase on the PIN submission response).
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class PinSlotRead(BaseModel):
    index: int
    contact_type: str
    contact_name: str
    used: bool


class ExecutorStatusRead(BaseModel):
    """check-executor-verification response."""
    verification_id: UUID
    status: str
    pins_required: int
    pins_received: int
    expires_at: datetime
    user_name: str
    executor_name: str | None
    slots: list[PinSlotRead] = []


class PinSubmission(BaseModel):
    """Ordered PIN list, one entry per slot."""
    pins: list[str] = Field(..., min_length=1, max_length=50)


class UnlockResponse(BaseModel):
    """submit-executor-pins response."""
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    status: str
    invalid_pins: list[int] = Field(default_factory=list, alias="invalidPins")
    message: str = ""
    access_token: str | None = Field(None, alias="accessToken")
    access_expires_at: datetime | None = Field(None, alias="accessExpiresAt")


class DocumentRead(BaseModel):
    id: UUID
    kind: str
    name: str
    content_type: str
    size: int
    created_at: datetime


class DocumentListResponse(BaseModel):
    documents: list[DocumentRead]
    expires_at: datetime


class DownloadUrlResponse(BaseModel):
    url: str
    expires_in: int


class AccessStatusRead(BaseModel):
    active: bool
    expires_at: datetime
    seconds_remaining: int
    revoked: bool
    archive_downloaded: bool
