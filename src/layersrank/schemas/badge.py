"""Pydantic schemas for badge endpoints."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from ..domain.leaderboard import Metric
from ..models import BadgeStatus


class BadgeRead(BaseModel):
    """Catalogue badge with the user's progress."""

    badge_id: str
    name: str
    category: str
    rarity: str
    metric: Metric
    threshold: int
    xp_reward: int
    status: BadgeStatus
    progress_value: int = Field(..., ge=0)
    unlocked_at: Optional[datetime]
    earned: bool


class BadgeCollection(BaseModel):
    """Badge gallery for one user."""

    badges: List[BadgeRead]
    total: int
    earned: int
    completion: int = Field(..., ge=0, le=100, description="Earned share of the shown badges, in percent.")
