"""Pydantic schemas for beneficiaries, executors and trusted contacts."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

from willtank.db.enums import ContactType


class ContactCreate(BaseModel):
    contact_type: ContactType
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr | None = None
    phone: str | None = Field(None, max_length=50)
    relationship: str | None = Field(None, max_length=100)
    is_primary: bool = False


class ContactRead(BaseModel):
    id: UUID
    contact_type: ContactType
    name: str
    email: str | None
    phone: str | None
    relationship: str | None = Field(None, validation_alias="relationship_label")
    is_primary: bool
    created_at: datetime

    model_config = {"from_attributes": True}
