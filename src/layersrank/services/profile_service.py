"""Scope membership for leaderboards."""

from __future__ import annotations

from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..core.database import store_guard
from ..models import Profile
from ..utils.datetime import utcnow


def get_profile(session: Session, user_id: UUID) -> Optional[Profile]:
    stmt = select(Profile).where(Profile.user_id == user_id)
    with store_guard("profile read"):
        return session.execute(stmt).scalar_one_or_none()


def upsert_profile(
    session: Session,
    *,
    user_id: UUID,
    display_name: str,
    college_id: Optional[str] = None,
    company_id: Optional[str] = None,
) -> Profile:
    """Create or update the user's profile and scope membership."""

    now = utcnow()
    profile = get_profile(session, user_id)
    if profile is None:
        profile = Profile(user_id=user_id, created_at=now)
        session.add(profile)

    profile.display_name = display_name
    profile.college_id = college_id
    profile.company_id = company_id
    profile.updated_at = now

    with store_guard("profile write"):
        session.flush()
    return profile
