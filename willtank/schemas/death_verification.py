"""Pydantic schemas for owner-side death-verification settings and check-ins."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from willtank.db.enums import NotificationChannel, UnlockMode


class SettingsRead(BaseModel):
    """Current verification settings."""
    id: UUID
    user_id: UUID
    check_in_frequency_days: int
    grace_period_days: int
    check_in_enabled: bool
    notification_preferences: list[NotificationChannel]
    unlock_mode: UnlockMode
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class SettingsUpdate(BaseModel):
    """Partial update of verification settings."""
    check_in_frequency_days: int | None = Field(None, gt=0, le=365)
    grace_period_days: int | None = Field(None, ge=0, le=365)
    check_in_enabled: bool | None = None
    notification_preferences: list[NotificationChannel] | None = None
    unlock_mode: UnlockMode | None = None


class CheckinRead(BaseModel):
    """One check-in record."""
    id: UUID
    checked_in_at: datetime
    next_check_in: datetime
    status: str

    model_config = {"from_attributes": True}


class CheckinStatusRead(BaseModel):
    """Where the user stands against the next due check-in."""
    last_checked_in_at: datetime | None
    next_check_in: datetime | None
    grace_deadline: datetime | None
    days_remaining: int | None
    is_overdue: bool
    check_in_enabled: bool


class VerificationRequestRead(BaseModel):
    """Owner view of a verification request. Never exposes PINs or tokens."""
    id: UUID
    status: str
    trigger_reason: str
    initiated_by: str
    expires_at: datetime
    completed_at: datetime | None
    archive_downloaded_at: datetime | None
    verification_result: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class VerificationLogRead(BaseModel):
    """Audit log entry."""
    id: int
    action: str
    details: dict | None
    created_at: datetime

    model_config = {"from_attributes": True}


class VerificationLogListResponse(BaseModel):
    items: list[VerificationLogRead]
    chain_valid: bool
