"""Badge evaluation driven by aggregated score state."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from typing import Dict, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.config import get_settings
from ..core.database import store_guard
from ..domain.badges import (
    BadgeDefinition,
    BadgeState,
    InProgress,
    Locked,
    Unlocked,
    advance,
    load_catalogue,
    sort_key,
)
from ..domain.leaderboard import Metric
from ..models import BadgeProgress, BadgeStatus, EventSource, EventType, ScoreState
from ..utils.datetime import to_naive_utc, utcnow
from . import event_service
from .aggregation_service import ScoreSnapshot, get_score

logger = logging.getLogger(__name__)


class BadgeEvaluationStale(Exception):
    """Raised when score state moved while badges were being evaluated."""

    def __init__(self, detail: str, status_code: int = 409) -> None:
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code


@dataclass(frozen=True)
class BadgeView:
    """Catalogue badge merged with one user's progress."""

    definition: BadgeDefinition
    status: BadgeStatus
    progress_value: int
    unlocked_at: Optional[datetime]

    @property
    def earned(self) -> bool:
        return self.status == BadgeStatus.UNLOCKED


@lru_cache(maxsize=1)
def catalogue() -> tuple[BadgeDefinition, ...]:
    return load_catalogue(get_settings().badge_catalogue_path)


def _progress_for(definition: BadgeDefinition, score: ScoreSnapshot) -> int:
    if definition.metric == Metric.XP:
        return score.xp
    if definition.metric == Metric.STREAK:
        # Streak badges reward the best run, which cannot be lost later.
        return score.longest_streak
    if definition.metric == Metric.PLACEMENTS:
        return score.placements_count
    return score.applications_count


def _to_state(row: Optional[BadgeProgress]) -> BadgeState:
    if row is None or row.status == BadgeStatus.LOCKED:
        return Locked()
    if row.status == BadgeStatus.UNLOCKED:
        return Unlocked(progress=row.progress_value, at=row.unlocked_at)
    return InProgress(progress=row.progress_value)


def _status_of(state: BadgeState) -> BadgeStatus:
    if isinstance(state, Unlocked):
        return BadgeStatus.UNLOCKED
    if isinstance(state, InProgress):
        return BadgeStatus.IN_PROGRESS
    return BadgeStatus.LOCKED


def _load_progress(session: Session, user_id: UUID) -> Dict[str, BadgeProgress]:
    stmt = (
        select(BadgeProgress)
        .where(BadgeProgress.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    return {row.badge_id: row for row in session.execute(stmt).scalars().all()}


def _current_cursor(session: Session, user_id: UUID) -> Optional[int]:
    stmt = select(ScoreState.last_event_id).where(ScoreState.user_id == user_id)
    return session.execute(stmt).scalar_one_or_none()


def _record_reward(session: Session, user_id: UUID, definition: BadgeDefinition, at: datetime) -> None:
    try:
        event_service.record(
            session,
            user_id=user_id,
            event_type=EventType.ACHIEVEMENT,
            source=EventSource.DIRECT,
            event_name="BADGE_EARNED",
            reward_value=definition.xp_reward,
            occurred_at=at,
            metadata={
                "badge_id": definition.badge_id,
                "category": definition.category,
                "rarity": definition.rarity,
            },
            idempotency_key=f"badge:{user_id}:{definition.badge_id}",
            replay=False,
        )
    except event_service.DuplicateEvent as exc:
        # Another evaluator paid this reward first. A lost insert race has also
        # rolled back this call's badge writes.
        raise BadgeEvaluationStale(
            f"Reward for {definition.badge_id} was already recorded for {user_id}."
        ) from exc


def evaluate(session: Session, user_id: UUID, *, now: Optional[datetime] = None) -> List[BadgeDefinition]:
    """Advance every catalogue badge for the user and return the newly unlocked ones.

    Decisions are made against the latest score state. If that state's cursor
    moves before the writes, ``BadgeEvaluationStale`` is raised and nothing is
    written by this call. The caller owns the commit.
    """

    moment = to_naive_utc(now) if now else utcnow()

    with store_guard("badge evaluation"):
        score = get_score(session, user_id)
        existing = _load_progress(session, user_id)

        decisions = []
        for definition in catalogue():
            row = existing.get(definition.badge_id)
            before = _to_state(row)
            after = advance(before, _progress_for(definition, score), definition.threshold, moment)
            if after != before or row is None:
                decisions.append((definition, row, before, after))

        if _current_cursor(session, user_id) != score.last_event_id:
            raise BadgeEvaluationStale(f"Score state for {user_id} changed during badge evaluation.")

        unlocked: List[BadgeDefinition] = []
        for definition, row, before, after in decisions:
            status = _status_of(after)
            unlocked_at = after.at if isinstance(after, Unlocked) else None
            if row is None:
                session.add(
                    BadgeProgress(
                        user_id=user_id,
                        badge_id=definition.badge_id,
                        category=definition.category,
                        rarity=definition.rarity,
                        status=status,
                        progress_value=after.progress,
                        unlocked_at=unlocked_at,
                        evaluated_cursor=score.last_event_id,
                        updated_at=moment,
                    )
                )
            else:
                # Never touch a row that is already unlocked.
                stmt = (
                    update(BadgeProgress)
                    .where(
                        BadgeProgress.user_id == user_id,
                        BadgeProgress.badge_id == definition.badge_id,
                        BadgeProgress.status != BadgeStatus.UNLOCKED,
                    )
                    .values(
                        status=status,
                        progress_value=after.progress,
                        unlocked_at=unlocked_at,
                        evaluated_cursor=score.last_event_id,
                        updated_at=moment,
                    )
                    .execution_options(synchronize_session=False)
                )
                if session.execute(stmt).rowcount != 1:
                    continue
            if isinstance(after, Unlocked) and not isinstance(before, Unlocked):
                unlocked.append(definition)
        try:
            session.flush()
        except IntegrityError as exc:
            session.rollback()
            raise BadgeEvaluationStale(f"Badge rows for {user_id} were created concurrently.") from exc

        for definition in unlocked:
            if definition.xp_reward > 0:
                _record_reward(session, user_id, definition, moment)

    for definition in unlocked:
        logger.info("badge %s unlocked for %s", definition.badge_id, user_id)
    return unlocked


def evaluate_with_retry(
    session: Session,
    user_id: UUID,
    *,
    now: Optional[datetime] = None,
    max_attempts: Optional[int] = None,
) -> List[BadgeDefinition]:
    """Run ``evaluate``, re-fetching score state after each stale read."""

    attempts = max_attempts or get_settings().badge_max_retries
    for attempt in range(1, attempts + 1):
        try:
            return evaluate(session, user_id, now=now)
        except BadgeEvaluationStale:
            session.rollback()
            if attempt == attempts:
                raise
            logger.warning("stale badge evaluation for %s (attempt %d/%d), retrying", user_id, attempt, attempts)
    raise AssertionError("unreachable")


def get_badges(session: Session, user_id: UUID, *, category: Optional[str] = None) -> Sequence[BadgeView]:
    """Full catalogue with the user's progress, earned first, then rarest first."""

    with store_guard("badge read"):
        existing = _load_progress(session, user_id)

    views = []
    for definition in catalogue():
        if category and definition.category != category:
            continue
        row = existing.get(definition.badge_id)
        views.append(
            BadgeView(
                definition=definition,
                status=row.status if row is not None else BadgeStatus.LOCKED,
                progress_value=row.progress_value if row is not None else 0,
                unlocked_at=row.unlocked_at if row is not None else None,
            )
        )
    views.sort(key=lambda view: sort_key(view.definition, view.earned))
    return views
