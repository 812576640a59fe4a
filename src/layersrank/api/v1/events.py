"""Event ingestion endpoints."""

from __future__ import annotations

import logging
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from ...core.database import StoreUnavailable, get_db
from ...schemas import EventBatch, EventBatchReceipt, EventCreate, EventRead, EventReceipt
from ...services import event_service, pipeline_service
from ...services.aggregation_service import AggregationConflict, ScoreSnapshot, get_score
from ...services.badge_service import BadgeEvaluationStale
from ...services.event_service import DuplicateEvent, InvalidEventKind
from .scores import score_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/events", tags=["events"])


@router.post(
    "",
    response_model=EventReceipt,
    status_code=status.HTTP_201_CREATED,
    summary="Record an interaction",
    responses={
        201: {
            "description": "Event stored and folded into the user's score",
            "content": {
                "application/json": {
                    "example": {
                        "event_id": 4121,
                        "score": {
                            "user_id": "bbbbbbbb-bbbb-bbbb-bbbb-bbbbbbbbbbbb",
                            "xp": 145,
                            "streak_count": 5,
                            "current_streak": 5,
                            "streak_at_risk": False,
                            "longest_streak": 9,
                            "streak_last_date": "2025-11-12",
                            "placements_count": 0,
                            "applications_count": 7,
                            "events_applied": 32,
                            "last_event_id": 4121,
                        },
                    }
                }
            },
        },
        422: {"description": "Unknown event type or source"},
        503: {"description": "Store unavailable"},
    },
)
def record_event(
    payload: EventCreate,
    db: Session = Depends(get_db),
) -> EventReceipt:
    """Append an event, then fold it into the user's score.

    Example request body::

        {
            "user_id": "bbbbbbbb-bbbb-bbbb-bbbb-bbbbbbbbbbbb",
            "event_type": "APPLICATION",
            "source": "RECOMMENDATION",
            "event_name": "APPLICATION_SUBMIT",
            "metadata": {"opportunity_id": "opp_812"},
            "idempotency_key": "app-submit-opp_812"
        }
    """

    try:
        event_id = event_service.record(
            db,
            user_id=payload.user_id,
            event_type=payload.event_type,
            source=payload.source,
            event_name=payload.event_name,
            reward_value=payload.reward_value,
            occurred_at=payload.occurred_at,
            metadata=payload.metadata,
            idempotency_key=payload.idempotency_key,
        )
        db.commit()
    except (InvalidEventKind, StoreUnavailable) as exc:
        db.rollback()
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc

    # The event is durable at this point; aggregation can be retried later by the sweep.
    snapshot = _fold_or_defer(db, payload.user_id, event_id)
    return EventReceipt(event_id=event_id, score=score_response(snapshot))


def _fold_or_defer(db: Session, user_id: UUID, event_id: int) -> ScoreSnapshot:
    try:
        return pipeline_service.process_user(db, user_id)
    except (AggregationConflict, BadgeEvaluationStale) as exc:
        db.rollback()
        logger.warning("deferred aggregation for %s after event %s: %s", user_id, event_id, exc.detail)
    except StoreUnavailable as exc:
        db.rollback()
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc

    try:
        return get_score(db, user_id)
    except StoreUnavailable as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc


@router.post(
    "/batch",
    response_model=EventBatchReceipt,
    status_code=status.HTTP_201_CREATED,
    summary="Record several interactions",
    responses={
        409: {"description": "An idempotency key was recorded concurrently; nothing was stored"},
        422: {"description": "An item has an unknown event type or source; nothing was stored"},
        503: {"description": "Store unavailable"},
    },
)
def record_event_batch(
    payload: EventBatch,
    db: Session = Depends(get_db),
) -> EventBatchReceipt:
    """Append up to 100 events atomically, then fold each affected user's score."""

    try:
        event_ids = event_service.record_batch(db, [item.model_dump() for item in payload.events])
        db.commit()
    except (DuplicateEvent, InvalidEventKind, StoreUnavailable) as exc:
        db.rollback()
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc

    last_event = {}
    for item, event_id in zip(payload.events, event_ids):
        last_event[item.user_id] = event_id
    for user_id, event_id in last_event.items():
        _fold_or_defer(db, user_id, event_id)

    return EventBatchReceipt(event_ids=event_ids, count=len(event_ids))


@router.get(
    "",
    response_model=List[EventRead],
    summary="List a user's events",
)
def list_events(
    *,
    user_id: UUID = Query(..., description="User to fetch activity for"),
    limit: int = Query(50, ge=1, le=100, description="Maximum items to return"),
    offset: int = Query(0, ge=0, description="Items to skip for pagination"),
    db: Session = Depends(get_db),
) -> List[EventRead]:
    """Return the user's activity history, newest first."""

    try:
        events = event_service.list_events(db, user_id=user_id, limit=limit, offset=offset)
    except StoreUnavailable as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc
    return [EventRead.model_validate(event) for event in events]
