"""Pydantic schemas for profile membership."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ProfileUpdate(BaseModel):
    """Request body for registering scope membership."""

    display_name: str = Field(..., min_length=1, max_length=120)
    college_id: Optional[str] = Field(None, max_length=64)
    company_id: Optional[str] = Field(None, max_length=64)


class ProfileRead(BaseModel):
    """Lightweight projection of profile details."""

    model_config = ConfigDict(from_attributes=True)

    user_id: UUID
    display_name: str
    college_id: Optional[str]
    company_id: Optional[str]
    updated_at: datetime
