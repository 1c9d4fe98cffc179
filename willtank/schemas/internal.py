"""Pydantic schemas for internal (cron/service) endpoints."""

from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class TriggerVerificationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: UUID = Field(..., alias="userId")


class TriggerVerificationResponse(BaseModel):
    verification_id: UUID
    status: str
    created: bool
    pins_created: int = 0
    emails_failed: int = 0


class SendExecutorPinRequest(BaseModel):
    """Single PIN email. Required fields are checked by the service."""
    model_config = ConfigDict(populate_by_name=True)

    contact_id: UUID | None = Field(None, alias="contactId")
    contact_name: str | None = Field(None, alias="contactName")
    contact_email: str | None = Field(None, alias="contactEmail")
    executor_email: str | None = Field(None, alias="executorEmail")
    executor_name: str | None = Field(None, alias="executorName")
    deceased_name: str | None = Field(None, alias="deceasedName")
    pin: str | None = None


class SendExecutorPinResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    message: str
    email_id: str | None = Field(None, alias="emailId")


class ScanResponse(BaseModel):
    scanned: int
    reminders_scheduled: int
    requests_created: int
    already_open: int
    errors: int


class ProcessJobsResponse(BaseModel):
    processed: int
    succeeded: int
    failed: int


class ExpireRequestsResponse(BaseModel):
    expired: int
