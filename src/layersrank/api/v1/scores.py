"""Score endpoints."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ...core.config import get_settings
from ...core.database import StoreUnavailable, get_db
from ...schemas import ScoreRead
from ...services import aggregation_service, pipeline_service
from ...services.aggregation_service import AggregationConflict, ScoreSnapshot
from ...services.badge_service import BadgeEvaluationStale
from ...utils.datetime import local_day, utcnow

router = APIRouter(prefix="/scores", tags=["scores"])


def score_response(snapshot: ScoreSnapshot) -> ScoreRead:
    """Build the API view of a score, including today's streak status."""

    today = local_day(utcnow(), get_settings().streak_timezone)
    current = snapshot.streak_on(today)
    return ScoreRead(
        user_id=snapshot.user_id,
        xp=snapshot.xp,
        streak_count=snapshot.streak_count,
        current_streak=current,
        streak_at_risk=current > 0 and snapshot.streak_last_date != today,
        longest_streak=snapshot.longest_streak,
        streak_last_date=snapshot.streak_last_date,
        placements_count=snapshot.placements_count,
        applications_count=snapshot.applications_count,
        events_applied=snapshot.events_applied,
        last_event_id=snapshot.last_event_id,
    )


@router.get(
    "/{user_id}",
    response_model=ScoreRead,
    summary="Get a user's score",
    responses={
        200: {
            "description": "Aggregated score state",
            "content": {
                "application/json": {
                    "example": {
                        "user_id": "bbbbbbbb-bbbb-bbbb-bbbb-bbbbbbbbbbbb",
                        "xp": 135,
                        "streak_count": 4,
                        "current_streak": 4,
                        "streak_at_risk": True,
                        "longest_streak": 9,
                        "streak_last_date": "2025-11-11",
                        "placements_count": 0,
                        "applications_count": 6,
                        "events_applied": 31,
                        "last_event_id": 4120,
                    }
                }
            },
        },
        503: {"description": "Store unavailable"},
    },
)
def get_score(user_id: UUID, db: Session = Depends(get_db)) -> ScoreRead:
    """Return the stored score; users without events get an empty score."""

    try:
        return score_response(aggregation_service.get_score(db, user_id))
    except StoreUnavailable as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc


@router.post(
    "/{user_id}/refresh",
    response_model=ScoreRead,
    summary="Fold pending events and re-evaluate badges",
    responses={
        409: {"description": "Concurrent aggregation did not settle; retry"},
        503: {"description": "Store unavailable"},
    },
)
def refresh_score(user_id: UUID, db: Session = Depends(get_db)) -> ScoreRead:
    """Force aggregation and badge evaluation for a user."""

    try:
        snapshot = pipeline_service.process_user(db, user_id, force_badges=True)
        return score_response(snapshot)
    except (AggregationConflict, BadgeEvaluationStale, StoreUnavailable) as exc:
        db.rollback()
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc
