"""SQLAlchemy models for the LayersRank engine."""

from .badge_progress import BadgeProgress, BadgeStatus
from .event import Event, EventSource, EventType
from .profile import Profile
from .score_state import ScoreState

__all__ = [
    "BadgeProgress",
    "BadgeStatus",
    "Event",
    "EventSource",
    "EventType",
    "Profile",
    "ScoreState",
]
