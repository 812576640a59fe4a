"""Pure domain types shared by the services."""

from .badges import BadgeDefinition, BadgeState, InProgress, Locked, Unlocked, advance, load_catalogue
from .leaderboard import Leaderboard, LeaderboardEntry, Metric, Scope, percentile

__all__ = [
    "BadgeDefinition",
    "BadgeState",
    "InProgress",
    "Leaderboard",
    "LeaderboardEntry",
    "Locked",
    "Metric",
    "Scope",
    "Unlocked",
    "advance",
    "load_catalogue",
    "percentile",
]
