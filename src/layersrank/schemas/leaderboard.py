"""Leaderboard response schemas."""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from ..domain.leaderboard import Metric, Scope


class LeaderboardEntryRead(BaseModel):
    """Ranked leaderboard entry."""

    model_config = ConfigDict(from_attributes=True)

    user_id: UUID
    rank: int = Field(..., ge=1)
    score: int
    scope_id: Optional[str] = None
    display_name: Optional[str] = None


class LeaderboardRead(BaseModel):
    """A ranked view over one snapshot of scores."""

    scope: Scope
    metric: Metric
    scope_id: Optional[str]
    taken_at: datetime
    entries: List[LeaderboardEntryRead]


class StandingRead(BaseModel):
    """One user's position in a leaderboard scope."""

    user_id: UUID
    scope: Scope
    metric: Metric
    rank: int = Field(..., ge=1)
    score: int
    total_participants: int = Field(..., ge=1)
    percentile: int = Field(..., ge=0, le=100)
    points_to_next_rank: int = Field(0, ge=0, description="Points needed to pass the user ranked directly above.")
    points_to_top10: int = Field(0, ge=0, description="Points needed to enter the top 10% of the scope.")
    nearby: List[LeaderboardEntryRead]
