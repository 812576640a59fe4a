"""Score state response schema."""

from datetime import date
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ScoreRead(BaseModel):
    """Aggregated score state for a user."""

    model_config = ConfigDict(from_attributes=True)

    user_id: UUID
    xp: int = Field(..., ge=0)
    streak_count: int = Field(..., ge=0, description="Streak as of the last qualifying event.")
    current_streak: int = Field(0, ge=0, description="Streak as of today; zero once a day was missed.")
    streak_at_risk: bool = Field(False, description="True when the streak is alive but today has no activity yet.")
    longest_streak: int = Field(..., ge=0)
    streak_last_date: Optional[date]
    placements_count: int = Field(..., ge=0)
    applications_count: int = Field(..., ge=0)
    events_applied: int = Field(..., ge=0)
    last_event_id: Optional[int]
