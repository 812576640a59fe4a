"""Leaderboard endpoints."""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from ...core.database import StoreUnavailable, get_db
from ...domain.leaderboard import LeaderboardEntry, Metric, Scope
from ...models import Profile
from ...schemas import LeaderboardEntryRead, LeaderboardRead, StandingRead
from ...services import leaderboard_service
from ...services.leaderboard_service import LeaderboardCache, ScopeRequired

router = APIRouter(prefix="/leaderboards", tags=["leaderboards"])


def get_leaderboard_cache(request: Request) -> LeaderboardCache:
    """Return the application's snapshot cache."""

    return request.app.state.leaderboard_cache


def _display_names(db: Session, user_ids: Iterable[UUID]) -> Dict[UUID, str]:
    ids = list(user_ids)
    if not ids:
        return {}
    stmt = select(Profile.user_id, Profile.display_name).where(Profile.user_id.in_(ids))
    return {user_id: name for user_id, name in db.execute(stmt).all()}


def _entries(db: Session, entries: List[LeaderboardEntry]) -> List[LeaderboardEntryRead]:
    names = _display_names(db, (entry.user_id for entry in entries))
    return [
        LeaderboardEntryRead(
            user_id=entry.user_id,
            rank=entry.rank,
            score=entry.score,
            scope_id=entry.scope_id,
            display_name=names.get(entry.user_id),
        )
        for entry in entries
    ]


@router.get(
    "/{scope}",
    response_model=LeaderboardRead,
    summary="Ranked users for a scope",
    responses={
        200: {
            "description": "Leaderboard entries ordered by score, ties by user id",
            "content": {
                "application/json": {
                    "example": {
                        "scope": "college",
                        "metric": "xp",
                        "scope_id": "dtu",
                        "taken_at": "2025-11-12T10:15:30",
                        "entries": [
                            {
                                "user_id": "bbbbbbbb-bbbb-bbbb-bbbb-bbbbbbbbbbbb",
                                "rank": 1,
                                "score": 480,
                                "scope_id": "dtu",
                                "display_name": "Bianca Liu",
                            }
                        ],
                    }
                }
            },
        },
        400: {"description": "Missing scope_id for a college/company leaderboard"},
    },
)
def get_leaderboard(
    scope: Scope,
    metric: Metric = Query(Metric.XP, description="Score to rank by"),
    limit: int = Query(20, ge=1, le=100, description="Number of top users to return"),
    scope_id: Optional[str] = Query(None, description="College or company id for scoped leaderboards"),
    db: Session = Depends(get_db),
    cache: LeaderboardCache = Depends(get_leaderboard_cache),
) -> LeaderboardRead:
    """Return the ranked list of users for a scope."""

    try:
        board = cache.get(db, scope=scope, metric=metric, limit=limit, scope_id=scope_id)
        entries = _entries(db, list(board))
    except (ScopeRequired, StoreUnavailable) as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc

    return LeaderboardRead(
        scope=board.scope,
        metric=board.metric,
        scope_id=board.scope_id,
        taken_at=board.taken_at,
        entries=entries,
    )


@router.get(
    "/{scope}/standing/{user_id}",
    response_model=StandingRead,
    summary="A user's rank, percentile and nearby competitors",
    responses={
        400: {"description": "Missing scope_id for a college/company leaderboard"},
        404: {"description": "User is not ranked in this scope"},
    },
)
def get_standing(
    scope: Scope,
    user_id: UUID,
    metric: Metric = Query(Metric.XP, description="Score to rank by"),
    scope_id: Optional[str] = Query(None, description="College or company id for scoped leaderboards"),
    radius: int = Query(2, ge=1, le=10, description="Users to show above and below"),
    db: Session = Depends(get_db),
) -> StandingRead:
    """Return where the user sits in the scope."""

    try:
        standing = leaderboard_service.user_standing(
            db, user_id=user_id, scope=scope, metric=metric, scope_id=scope_id
        )
        if standing is None:
            raise HTTPException(status_code=404, detail=f"User {user_id} is not ranked in this scope")
        around = leaderboard_service.nearby(
            db, user_id=user_id, scope=scope, metric=metric, scope_id=scope_id, radius=radius
        )
        entries = _entries(db, around)
    except (ScopeRequired, StoreUnavailable) as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc

    return StandingRead(
        user_id=user_id,
        scope=scope,
        metric=metric,
        rank=standing.rank,
        score=standing.score,
        total_participants=standing.total,
        percentile=standing.percentile,
        points_to_next_rank=standing.points_to_next_rank,
        points_to_top10=standing.points_to_top10,
        nearby=entries,
    )
