"""Badge endpoints."""

from __future__ import annotations

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ...core.database import StoreUnavailable, get_db
from ...schemas import BadgeCollection, BadgeRead
from ...services import badge_service

router = APIRouter(prefix="/badges", tags=["badges"])


@router.get(
    "/{user_id}",
    response_model=BadgeCollection,
    summary="Badge gallery for a user",
    responses={
        200: {
            "description": "Catalogue badges with progress, earned first then by rarity",
            "content": {
                "application/json": {
                    "example": {
                        "badges": [
                            {
                                "badge_id": "first_application",
                                "name": "First Step",
                                "category": "activity",
                                "rarity": "common",
                                "metric": "applications",
                                "threshold": 1,
                                "xp_reward": 50,
                                "status": "UNLOCKED",
                                "progress_value": 3,
                                "unlocked_at": "2025-11-10T08:02:11",
                                "earned": True,
                            }
                        ],
                        "total": 10,
                        "earned": 1,
                        "completion": 10,
                    }
                }
            },
        }
    },
)
def get_badges(
    user_id: UUID,
    category: Optional[str] = Query(None, description="Only badges of this category"),
    db: Session = Depends(get_db),
) -> BadgeCollection:
    """Return every catalogue badge with the user's state."""

    try:
        views = badge_service.get_badges(db, user_id, category=category)
    except StoreUnavailable as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc

    badges = [
        BadgeRead(
            badge_id=view.definition.badge_id,
            name=view.definition.name,
            category=view.definition.category,
            rarity=view.definition.rarity,
            metric=view.definition.metric,
            threshold=view.definition.threshold,
            xp_reward=view.definition.xp_reward,
            status=view.status,
            progress_value=view.progress_value,
            unlocked_at=view.unlocked_at,
            earned=view.earned,
        )
        for view in views
    ]
    earned = sum(1 for badge in badges if badge.earned)
    completion = round(earned / len(badges) * 100) if badges else 0
    return BadgeCollection(badges=badges, total=len(badges), earned=earned, completion=completion)
