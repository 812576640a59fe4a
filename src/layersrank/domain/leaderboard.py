"""Leaderboard value types."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Iterator, Optional, Sequence, Tuple
from uuid import UUID


class Scope(str, enum.Enum):
    GLOBAL = "global"
    COLLEGE = "college"
    COMPANY = "company"


class Metric(str, enum.Enum):
    XP = "xp"
    STREAK = "streak"
    PLACEMENTS = "placements"
    APPLICATIONS = "applications"


@dataclass(frozen=True)
class LeaderboardEntry:
    user_id: UUID
    rank: int
    score: int
    scope_id: Optional[str]


class Leaderboard:
    """Ranked view over one consistent snapshot of scores.

    ``rows`` must already be sorted by descending score then ascending user id.
    Entries are built lazily on iteration; iterating again starts over.
    """

    def __init__(
        self,
        scope: Scope,
        metric: Metric,
        scope_id: Optional[str],
        rows: Sequence[Tuple[UUID, int]],
        taken_at: datetime,
    ) -> None:
        self.scope = scope
        self.metric = metric
        self.scope_id = scope_id
        self.taken_at = taken_at
        self._rows = tuple(rows)

    def __iter__(self) -> Iterator[LeaderboardEntry]:
        for position, (user_id, score) in enumerate(self._rows, start=1):
            yield LeaderboardEntry(user_id=user_id, rank=position, score=score, scope_id=self.scope_id)

    def __len__(self) -> int:
        return len(self._rows)

    def head(self, limit: int) -> "Leaderboard":
        """Return the first ``limit`` entries as a new leaderboard over the same snapshot."""

        return Leaderboard(self.scope, self.metric, self.scope_id, self._rows[:limit], self.taken_at)


def percentile(rank: int, total: int) -> int:
    """Share of participants at or below ``rank``, as a whole percentage."""

    if total <= 0:
        return 0
    return round((total - rank + 1) / total * 100)
