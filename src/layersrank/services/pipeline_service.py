"""Aggregation -> badge evaluation orchestration per user."""

from __future__ import annotations

import logging
from typing import Dict, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from ..core.config import get_settings
from ..core.database import StoreUnavailable
from .aggregation_service import (
    AggregationConflict,
    ScoreSnapshot,
    apply_pending_with_retry,
    get_score,
    users_with_pending_events,
)
from .badge_service import BadgeEvaluationStale, catalogue, evaluate_with_retry

logger = logging.getLogger(__name__)


def process_user(session: Session, user_id: UUID, *, force_badges: bool = False) -> ScoreSnapshot:
    """Fold pending events, evaluate badges on any delta, and fold badge rewards.

    Commits after each step. Must be called on a session with no uncommitted work.
    """

    cursor_before = get_score(session, user_id).last_event_id
    state = apply_pending_with_retry(session, user_id)
    session.commit()
    if state.last_event_id == cursor_before and not force_badges:
        return state

    # Each pass can only unlock badges that were still locked, so this terminates.
    for _ in range(len(catalogue()) + 1):
        unlocked = evaluate_with_retry(session, user_id)
        session.commit()
        if not unlocked:
            break
        state = apply_pending_with_retry(session, user_id)
        session.commit()
    return state


def run_pending_sweep(session: Session, *, batch_size: Optional[int] = None) -> Dict[str, int]:
    """Process every user whose log is ahead of their cursor.

    Returns summary statistics useful for logging/testing.
    """

    summary = {
        "users_processed": 0,
        "users_failed": 0,
    }
    limit = batch_size or get_settings().sweep_batch_size

    for user_id in users_with_pending_events(session, limit=limit):
        try:
            process_user(session, user_id)
            summary["users_processed"] += 1
        except (AggregationConflict, BadgeEvaluationStale) as exc:
            session.rollback()
            summary["users_failed"] += 1
            logger.warning("sweep skipped %s: %s", user_id, exc.detail)
        except StoreUnavailable:
            session.rollback()
            raise

    return summary
