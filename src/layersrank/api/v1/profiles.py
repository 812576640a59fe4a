"""Profile membership endpoints."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ...core.database import StoreUnavailable, get_db
from ...schemas import ProfileRead, ProfileUpdate
from ...services import profile_service

router = APIRouter(prefix="/profiles", tags=["profiles"])


@router.put(
    "/{user_id}",
    response_model=ProfileRead,
    summary="Register a user's college/company membership",
)
def put_profile(
    user_id: UUID,
    payload: ProfileUpdate,
    db: Session = Depends(get_db),
) -> ProfileRead:
    """Create or replace the scope membership used by scoped leaderboards.

    Example request body::

        {
            "display_name": "Bianca Liu",
            "college_id": "dtu",
            "company_id": null
        }
    """

    try:
        profile = profile_service.upsert_profile(
            db,
            user_id=user_id,
            display_name=payload.display_name,
            college_id=payload.college_id,
            company_id=payload.company_id,
        )
        db.commit()
        db.refresh(profile)
        return ProfileRead.model_validate(profile)
    except StoreUnavailable as exc:
        db.rollback()
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc
