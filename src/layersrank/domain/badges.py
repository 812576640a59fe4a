"""Badge catalogue and the per-badge state machine."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

from .leaderboard import Metric

RARITY_ORDER = {"legendary": 0, "epic": 1, "rare": 2, "uncommon": 3, "common": 4}


@dataclass(frozen=True)
class BadgeDefinition:
    badge_id: str
    name: str
    category: str
    rarity: str
    metric: Metric
    threshold: int
    xp_reward: int = 0

    def __post_init__(self) -> None:
        if self.threshold <= 0:
            raise ValueError(f"Badge {self.badge_id} needs a positive threshold.")
        if self.rarity not in RARITY_ORDER:
            raise ValueError(f"Badge {self.badge_id} has unknown rarity {self.rarity!r}.")


DEFAULT_CATALOGUE: tuple[BadgeDefinition, ...] = (
    BadgeDefinition("first_application", "First Step", "activity", "common", Metric.APPLICATIONS, 1, 50),
    BadgeDefinition("ten_applications", "Go-Getter", "activity", "uncommon", Metric.APPLICATIONS, 10, 100),
    BadgeDefinition("fifty_applications", "Unstoppable", "activity", "rare", Metric.APPLICATIONS, 50, 250),
    BadgeDefinition("hundred_applications", "Application Legend", "activity", "epic", Metric.APPLICATIONS, 100, 500),
    BadgeDefinition("streak_7", "Week Warrior", "streak", "uncommon", Metric.STREAK, 7, 75),
    BadgeDefinition("streak_30", "Monthly Master", "streak", "rare", Metric.STREAK, 30, 200),
    BadgeDefinition("streak_100", "Century Champion", "streak", "legendary", Metric.STREAK, 100, 500),
    BadgeDefinition("first_placement", "Placed!", "placement", "rare", Metric.PLACEMENTS, 1, 200),
    BadgeDefinition("xp_1000", "Rising Star", "xp", "uncommon", Metric.XP, 1000, 0),
    BadgeDefinition("xp_10000", "LayersRank Elite", "xp", "epic", Metric.XP, 10000, 0),
)


def load_catalogue(path: Optional[str] = None) -> tuple[BadgeDefinition, ...]:
    """Return the badge catalogue, read from a JSON list when ``path`` is given.

    Each JSON item carries the ``BadgeDefinition`` fields; ``metric`` uses the
    leaderboard metric values (``xp``, ``streak``, ``placements``, ``applications``).
    """

    if not path:
        return DEFAULT_CATALOGUE

    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    badges = tuple(
        BadgeDefinition(
            badge_id=item["badge_id"],
            name=item.get("name", item["badge_id"]),
            category=item["category"],
            rarity=item["rarity"],
            metric=Metric(item["metric"]),
            threshold=int(item["threshold"]),
            xp_reward=int(item.get("xp_reward", 0)),
        )
        for item in raw
    )
    ids = [badge.badge_id for badge in badges]
    if len(ids) != len(set(ids)):
        raise ValueError("Badge catalogue contains duplicate badge ids.")
    return badges


# Tagged badge state. Unlocked is terminal.


@dataclass(frozen=True)
class Locked:
    progress: int = 0


@dataclass(frozen=True)
class InProgress:
    progress: int


@dataclass(frozen=True)
class Unlocked:
    progress: int
    at: datetime


BadgeState = Union[Locked, InProgress, Unlocked]


def advance(state: BadgeState, progress: int, threshold: int, now: datetime) -> BadgeState:
    """Apply the latest progress reading to ``state``.

    ``LOCKED`` moves to ``IN_PROGRESS`` once any progress exists and on to
    ``UNLOCKED`` when the threshold is met, possibly within one call. An
    ``Unlocked`` state is returned as-is.
    """

    if isinstance(state, Unlocked):
        return state

    progress = max(progress, 0)
    if progress >= threshold:
        return Unlocked(progress=progress, at=now)
    if progress > 0 or isinstance(state, InProgress):
        # A started badge stays started even if the metric dips back to zero.
        return InProgress(progress=progress)
    return Locked()


def sort_key(definition: BadgeDefinition, earned: bool) -> tuple:
    """Earned badges first, then by rarity, then by id."""

    return (0 if earned else 1, RARITY_ORDER[definition.rarity], definition.badge_id)
