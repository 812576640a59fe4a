"""Per-user aggregated score state."""

from sqlalchemy import CheckConstraint, Column, Date, DateTime, Integer, Uuid

from ..core.database import Base
from ..utils.datetime import utcnow


class ScoreState(Base):
    """Running totals folded from the event log, guarded by the ``last_event_id`` cursor."""

    __tablename__ = "score_states"
    __table_args__ = (
        CheckConstraint("xp >= 0", name="score_states_xp_non_negative"),
        CheckConstraint("streak_count >= 0", name="score_states_streak_non_negative"),
        CheckConstraint("longest_streak >= streak_count", name="score_states_longest_streak"),
    )

    user_id = Column(Uuid(as_uuid=True), primary_key=True)
    xp = Column(Integer, nullable=False, default=0)
    streak_count = Column(Integer, nullable=False, default=0)
    longest_streak = Column(Integer, nullable=False, default=0)
    streak_last_date = Column(Date)
    placements_count = Column(Integer, nullable=False, default=0)
    applications_count = Column(Integer, nullable=False, default=0)
    events_applied = Column(Integer, nullable=False, default=0)
    last_event_id = Column(Integer)
    # Latest occurred_at folded so far; an older pending event forces a full refold.
    last_occurred_at = Column(DateTime)
    updated_at = Column(DateTime, default=utcnow, nullable=False)
