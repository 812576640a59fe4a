"""Metric aggregation: folds the event log into per-user score state."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, replace
from datetime import date, datetime
from typing import Iterable, Optional, Sequence
from uuid import UUID

from sqlalchemy import insert, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.config import get_settings
from ..core.database import store_guard
from ..models import Event, EventType, ScoreState
from ..utils.datetime import local_day, utcnow
from .event_service import read_since

logger = logging.getLogger(__name__)


class AggregationConflict(Exception):
    """Raised when another writer advanced the user's cursor first."""

    def __init__(self, detail: str, status_code: int = 409) -> None:
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code


@dataclass(frozen=True)
class ScoreSnapshot:
    """Value copy of a ``ScoreState`` row."""

    user_id: UUID
    xp: int = 0
    streak_count: int = 0
    longest_streak: int = 0
    streak_last_date: Optional[date] = None
    placements_count: int = 0
    applications_count: int = 0
    events_applied: int = 0
    last_event_id: Optional[int] = None
    last_occurred_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: ScoreState) -> "ScoreSnapshot":
        return cls(
            user_id=row.user_id,
            xp=row.xp,
            streak_count=row.streak_count,
            longest_streak=row.longest_streak,
            streak_last_date=row.streak_last_date,
            placements_count=row.placements_count,
            applications_count=row.applications_count,
            events_applied=row.events_applied,
            last_event_id=row.last_event_id,
            last_occurred_at=row.last_occurred_at,
        )

    def values(self) -> dict:
        data = asdict(self)
        data.pop("user_id")
        return data

    def streak_on(self, today: date) -> int:
        """Streak as seen on ``today``: zero once a full day has been missed."""

        if self.streak_last_date is None or (today - self.streak_last_date).days > 1:
            return 0
        return self.streak_count


def _advance_streak(snapshot: ScoreSnapshot, day: date) -> ScoreSnapshot:
    last = snapshot.streak_last_date
    if last is None:
        streak = 1
    elif day <= last:
        # Same calendar day.
        return snapshot
    elif (day - last).days == 1:
        streak = snapshot.streak_count + 1
    else:
        streak = 1
    return replace(
        snapshot,
        streak_count=streak,
        streak_last_date=day,
        longest_streak=max(snapshot.longest_streak, streak),
    )


def fold(
    snapshot: ScoreSnapshot,
    events: Iterable[Event],
    *,
    tz_name: str = "UTC",
    qualifying_types: Optional[Iterable[str]] = None,
) -> ScoreSnapshot:
    """Apply ``events`` (already in fold order) on top of ``snapshot``."""

    qualifying = {str(kind).upper() for kind in (qualifying_types or ())}
    state = snapshot
    for event in events:
        kind = event.event_type
        state = replace(
            state,
            xp=max(state.xp + event.reward_value, 0),
            placements_count=state.placements_count + (1 if kind == EventType.PLACEMENT else 0),
            applications_count=state.applications_count + (1 if kind == EventType.APPLICATION else 0),
            events_applied=state.events_applied + 1,
            last_event_id=(
                event.event_id
                if state.last_event_id is None
                else max(state.last_event_id, event.event_id)
            ),
            last_occurred_at=(
                event.occurred_at
                if state.last_occurred_at is None
                else max(state.last_occurred_at, event.occurred_at)
            ),
        )
        if kind.value in qualifying:
            state = _advance_streak(state, local_day(event.occurred_at, tz_name))
    return state


def _fold_with_settings(snapshot: ScoreSnapshot, events: Sequence[Event]) -> ScoreSnapshot:
    settings = get_settings()
    return fold(
        snapshot,
        events,
        tz_name=settings.streak_timezone,
        qualifying_types=settings.streak_qualifying_types,
    )


def _is_backdated(current: ScoreSnapshot, pending: Sequence[Event]) -> bool:
    # Pending ids are all above the cursor, so on an occurred_at tie they already sort last.
    if current.last_occurred_at is None:
        return False
    return pending[0].occurred_at < current.last_occurred_at


def _load_state(session: Session, user_id: UUID) -> Optional[ScoreState]:
    stmt = (
        select(ScoreState)
        .where(ScoreState.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    return session.execute(stmt).scalar_one_or_none()


def _compare_and_set(
    session: Session,
    *,
    expected_cursor: Optional[int],
    exists: bool,
    new_state: ScoreSnapshot,
) -> None:
    values = new_state.values()
    values["updated_at"] = utcnow()

    if not exists:
        try:
            session.execute(insert(ScoreState).values(user_id=new_state.user_id, **values))
        except IntegrityError as exc:
            session.rollback()
            raise AggregationConflict(
                f"Score state for {new_state.user_id} was created concurrently."
            ) from exc
        return

    cursor_matches = (
        ScoreState.last_event_id.is_(None)
        if expected_cursor is None
        else ScoreState.last_event_id == expected_cursor
    )
    stmt = (
        update(ScoreState)
        .where(ScoreState.user_id == new_state.user_id, cursor_matches)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = session.execute(stmt)
    if result.rowcount != 1:
        raise AggregationConflict(
            f"Cursor for {new_state.user_id} moved past {expected_cursor}; re-read and retry."
        )


def get_score(session: Session, user_id: UUID) -> ScoreSnapshot:
    """Return the stored score state, or an empty one for users never aggregated."""

    with store_guard("score read"):
        row = _load_state(session, user_id)
    return ScoreSnapshot.from_row(row) if row is not None else ScoreSnapshot(user_id=user_id)


def apply_pending(session: Session, user_id: UUID) -> ScoreSnapshot:
    """Fold events past the stored cursor into the user's state.

    Pending events that all sort after the last folded event are appended to
    the stored state. A backdated event (``occurred_at`` earlier than anything
    already folded) triggers a refold of the whole log instead, so the result
    never depends on how events were batched.

    Raises ``AggregationConflict`` when a concurrent call advanced the cursor
    between the read and the write. The caller owns the commit.
    """

    with store_guard("aggregation"):
        row = _load_state(session, user_id)
        current = ScoreSnapshot.from_row(row) if row is not None else ScoreSnapshot(user_id=user_id)

        events = read_since(session, user_id, current.last_event_id)
        if not events:
            return current

        if _is_backdated(current, events):
            logger.info("backdated event for %s, refolding from the full log", user_id)
            events = read_since(session, user_id, None)
            new_state = _fold_with_settings(ScoreSnapshot(user_id=user_id), events)
        else:
            new_state = _fold_with_settings(current, events)
        _compare_and_set(
            session,
            expected_cursor=current.last_event_id,
            exists=row is not None,
            new_state=new_state,
        )

    logger.debug(
        "applied %d events for %s: cursor %s -> %s",
        len(events),
        user_id,
        current.last_event_id,
        new_state.last_event_id,
    )
    return new_state


def apply_pending_with_retry(session: Session, user_id: UUID, *, max_attempts: Optional[int] = None) -> ScoreSnapshot:
    """Run ``apply_pending``, rolling back and re-reading after each conflict.

    Must be called on a session without uncommitted work of its own.
    """

    attempts = max_attempts or get_settings().aggregation_max_retries
    for attempt in range(1, attempts + 1):
        try:
            return apply_pending(session, user_id)
        except AggregationConflict:
            session.rollback()
            if attempt == attempts:
                raise
            logger.warning("aggregation conflict for %s (attempt %d/%d), retrying", user_id, attempt, attempts)
    raise AssertionError("unreachable")


def rebuild(session: Session, user_id: UUID, *, persist: bool = True) -> ScoreSnapshot:
    """Recompute the user's state from the full event log.

    With ``persist`` the result replaces the stored state under the same
    compare-and-set guard as incremental aggregation.
    """

    with store_guard("rebuild"):
        row = _load_state(session, user_id)
        events = read_since(session, user_id, None)
        rebuilt = _fold_with_settings(ScoreSnapshot(user_id=user_id), events)
        if persist and events:
            _compare_and_set(
                session,
                expected_cursor=row.last_event_id if row is not None else None,
                exists=row is not None,
                new_state=rebuilt,
            )
    return rebuilt


def users_with_pending_events(session: Session, *, limit: int = 500) -> Sequence[UUID]:
    """Users whose event log is ahead of their stored cursor."""

    stmt = (
        select(Event.user_id)
        .outerjoin(ScoreState, ScoreState.user_id == Event.user_id)
        .where(
            or_(
                ScoreState.last_event_id.is_(None),
                Event.event_id > ScoreState.last_event_id,
            )
        )
        .group_by(Event.user_id)
        .order_by(Event.user_id.asc())
        .limit(limit)
    )
    with store_guard("pending scan"):
        return session.execute(stmt).scalars().all()
