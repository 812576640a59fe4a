"""Leaderboard materialization over score state."""

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import Select, case, func, select
from sqlalchemy.orm import Session

from ..core.config import get_settings
from ..core.database import store_guard
from ..domain.leaderboard import Leaderboard, LeaderboardEntry, Metric, Scope, percentile
from ..models import Profile, ScoreState
from ..utils.datetime import local_day, utcnow

logger = logging.getLogger(__name__)

METRIC_COLUMNS = {
    Metric.XP: ScoreState.xp,
    Metric.PLACEMENTS: ScoreState.placements_count,
    Metric.APPLICATIONS: ScoreState.applications_count,
}


def _metric_column(metric: Metric):
    if metric != Metric.STREAK:
        return METRIC_COLUMNS[metric]
    # Live streak: zero once a full day has passed without a qualifying event.
    yesterday = local_day(utcnow(), get_settings().streak_timezone) - timedelta(days=1)
    return case((ScoreState.streak_last_date >= yesterday, ScoreState.streak_count), else_=0)


class ScopeRequired(Exception):
    """Raised when a college/company leaderboard is requested without a scope id."""

    def __init__(self, detail: str, status_code: int = 400) -> None:
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code


@dataclass(frozen=True)
class Standing:
    user_id: UUID
    rank: int
    score: int
    total: int
    percentile: int
    points_to_next_rank: int = 0
    points_to_top10: int = 0


def _scoped(stmt: Select, scope: Scope, scope_id: Optional[str]) -> Select:
    if scope == Scope.GLOBAL:
        return stmt
    if not scope_id:
        raise ScopeRequired(f"A scope_id is required for the {scope.value} leaderboard.")
    membership = Profile.college_id if scope == Scope.COLLEGE else Profile.company_id
    return stmt.join(Profile, Profile.user_id == ScoreState.user_id).where(membership == scope_id)


def _ranked(scope: Scope, metric: Metric, scope_id: Optional[str]):
    column = _metric_column(metric)
    stmt = select(
        ScoreState.user_id.label("user_id"),
        column.label("score"),
        func.row_number().over(order_by=(column.desc(), ScoreState.user_id.asc())).label("rank"),
        func.count().over().label("total"),
    )
    return _scoped(stmt, scope, scope_id).cte("ranked")


def _clamp_limit(limit: int) -> int:
    return max(1, min(limit, get_settings().leaderboard_max_limit))


def rank(
    session: Session,
    *,
    scope: Scope,
    metric: Metric = Metric.XP,
    limit: int = 20,
    scope_id: Optional[str] = None,
) -> Leaderboard:
    """Return the top ``limit`` users for a scope, ordered by score desc then user id asc.

    The rows come from a single statement, so the result is always a full sort
    of one snapshot.
    """

    scope_key = scope_id if scope != Scope.GLOBAL else None
    column = _metric_column(metric)
    stmt = _scoped(select(ScoreState.user_id, column), scope, scope_key)
    stmt = stmt.order_by(column.desc(), ScoreState.user_id.asc()).limit(_clamp_limit(limit))

    with store_guard("leaderboard"):
        rows = session.execute(stmt).all()

    return Leaderboard(
        scope=scope,
        metric=metric,
        scope_id=scope_key,
        rows=[(user_id, int(score or 0)) for user_id, score in rows],
        taken_at=utcnow(),
    )


def user_standing(
    session: Session,
    *,
    user_id: UUID,
    scope: Scope,
    metric: Metric = Metric.XP,
    scope_id: Optional[str] = None,
) -> Optional[Standing]:
    """Rank, score and percentile of one user, or ``None`` when they are not ranked in the scope.

    Also reports the points needed to pass the user directly above and to reach
    the top 10% of the scope (zero when already there).
    """

    ranked = _ranked(scope, metric, scope_id)
    stmt = select(ranked.c.rank, ranked.c.score, ranked.c.total).where(ranked.c.user_id == user_id)

    with store_guard("standing"):
        row = session.execute(stmt).one_or_none()
        if row is None:
            return None

        position, score, total = int(row.rank), int(row.score or 0), int(row.total)
        top10_rank = math.ceil(total / 10)
        targets = select(ranked.c.rank, ranked.c.score).where(ranked.c.rank.in_([position - 1, top10_rank]))
        scores_at = {int(at): int(value or 0) for at, value in session.execute(targets).all()}

    ahead = scores_at.get(position - 1)
    return Standing(
        user_id=user_id,
        rank=position,
        score=score,
        total=total,
        percentile=percentile(position, total),
        points_to_next_rank=ahead - score + 1 if ahead is not None else 0,
        points_to_top10=scores_at[top10_rank] - score + 1 if position > top10_rank else 0,
    )


def nearby(
    session: Session,
    *,
    user_id: UUID,
    scope: Scope,
    metric: Metric = Metric.XP,
    scope_id: Optional[str] = None,
    radius: int = 2,
) -> List[LeaderboardEntry]:
    """Entries within ``radius`` positions above and below the user, in rank order."""

    ranked = _ranked(scope, metric, scope_id)
    mine = select(ranked.c.rank).where(ranked.c.user_id == user_id).scalar_subquery()
    stmt = (
        select(ranked.c.user_id, ranked.c.rank, ranked.c.score)
        .where(ranked.c.rank.between(mine - radius, mine + radius))
        .order_by(ranked.c.rank.asc())
    )

    with store_guard("nearby"):
        rows = session.execute(stmt).all()

    scope_key = scope_id if scope != Scope.GLOBAL else None
    return [
        LeaderboardEntry(user_id=row.user_id, rank=int(row.rank), score=int(row.score or 0), scope_id=scope_key)
        for row in rows
    ]


class LeaderboardCache:
    """Keeps recent leaderboard snapshots; expired snapshots are replaced, never patched."""

    def __init__(self, max_age_seconds: Optional[float] = None) -> None:
        self._max_age = get_settings().leaderboard_cache_seconds if max_age_seconds is None else max_age_seconds
        self._lock = threading.Lock()
        self._snapshots: Dict[Tuple[Scope, Metric, Optional[str]], Tuple[float, Leaderboard]] = {}

    def get(
        self,
        session: Session,
        *,
        scope: Scope,
        metric: Metric = Metric.XP,
        limit: int = 20,
        scope_id: Optional[str] = None,
    ) -> Leaderboard:
        key = (scope, metric, scope_id if scope != Scope.GLOBAL else None)
        limit = _clamp_limit(limit)
        now = time.monotonic()

        with self._lock:
            cached = self._snapshots.get(key)
        if cached is not None and now - cached[0] < self._max_age:
            return cached[1].head(limit)

        snapshot = rank(
            session,
            scope=scope,
            metric=metric,
            limit=get_settings().leaderboard_max_limit,
            scope_id=scope_id,
        )
        with self._lock:
            self._snapshots[key] = (now, snapshot)
        logger.debug("refreshed leaderboard snapshot %s (%d entries)", key, len(snapshot))
        return snapshot.head(limit)

    def invalidate(self) -> None:
        with self._lock:
            self._snapshots.clear()
