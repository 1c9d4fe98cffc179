"""Pydantic schemas for contact status checks."""

from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from willtank.db.enums import StatusCheckResponse


class StatusCheckAnswer(BaseModel):
    """A contact's answer from the e-mailed status check link."""
    status: StatusCheckResponse
    message: str | None = Field(None, max_length=1000)


class StatusCheckAnswerResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    message: str
    verification_id: UUID | None = Field(None, alias="verificationId")


class StatusCheckScheduled(BaseModel):
    job_id: UUID
    message: str


class SendStatusCheckRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: UUID = Field(..., alias="userId")


class SendStatusCheckResponse(BaseModel):
    success: bool
    total: int
    successful: int
    failed: int
