"""Pydantic schemas for the will text and uploaded documents."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from willtank.db.enums import WillStatus


class WillUpsert(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    content: str = Field("", max_length=500_000)
    status: WillStatus = WillStatus.DRAFT


class WillRead(BaseModel):
    id: UUID
    title: str
    content: str
    status: WillStatus
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class WillDocumentRead(BaseModel):
    id: UUID
    filename: str
    content_type: str
    file_size: int
    checksum_sha256: str
    created_at: datetime

    model_config = {"from_attributes": True}
