"""Public schema exports."""

from .badge import BadgeCollection, BadgeRead
from .event import EventBatch, EventBatchReceipt, EventCreate, EventRead, EventReceipt
from .leaderboard import LeaderboardEntryRead, LeaderboardRead, StandingRead
from .profile import ProfileRead, ProfileUpdate
from .score import ScoreRead

__all__ = [
	"BadgeCollection",
	"BadgeRead",
	"EventBatch",
	"EventBatchReceipt",
	"EventCreate",
	"EventRead",
	"EventReceipt",
	"LeaderboardEntryRead",
	"LeaderboardRead",
	"ProfileRead",
	"ProfileUpdate",
	"ScoreRead",
	"StandingRead",
]
