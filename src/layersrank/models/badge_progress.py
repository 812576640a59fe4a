"""Badge progress model."""

import enum

from sqlalchemy import CheckConstraint, Column, DateTime, Enum, Integer, String, Uuid

from ..core.database import Base
from ..utils.datetime import utcnow


class BadgeStatus(str, enum.Enum):
    """Persisted tag of the badge state machine."""

    LOCKED = "LOCKED"
    IN_PROGRESS = "IN_PROGRESS"
    UNLOCKED = "UNLOCKED"


class BadgeProgress(Base):
    """Per-user progress towards a catalogue badge."""

    __tablename__ = "badge_progress"
    __table_args__ = (
        CheckConstraint(
            "(status = 'UNLOCKED' AND unlocked_at IS NOT NULL) "
            "OR (status <> 'UNLOCKED' AND unlocked_at IS NULL)",
            name="badge_progress_unlock_consistency",
        ),
        CheckConstraint("progress_value >= 0", name="badge_progress_value_non_negative"),
    )

    user_id = Column(Uuid(as_uuid=True), primary_key=True)
    badge_id = Column(String, primary_key=True)
    category = Column(String, nullable=False)
    rarity = Column(String, nullable=False)
    status = Column(Enum(BadgeStatus, name="badge_status"), nullable=False, default=BadgeStatus.LOCKED)
    progress_value = Column(Integer, nullable=False, default=0)
    unlocked_at = Column(DateTime)
    evaluated_cursor = Column(Integer)
    updated_at = Column(DateTime, default=utcnow, nullable=False)
