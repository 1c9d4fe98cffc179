"""Pydantic schemas for the dev-only executor access harness."""

from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class TestExecutorAccessRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    action: str
    user_id: UUID = Field(..., alias="userId")
