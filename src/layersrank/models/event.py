"""Append-only event log capturing every user interaction."""

import enum

from sqlalchemy import JSON, Column, DateTime, Enum, Index, Integer, String, UniqueConstraint, Uuid

from ..core.database import Base
from ..utils.datetime import utcnow


class EventType(str, enum.Enum):
    """Closed set of event kinds accepted by the ingestor."""

    OPPORTUNITY = "OPPORTUNITY"
    APPLICATION = "APPLICATION"
    INVITE = "INVITE"
    PLACEMENT = "PLACEMENT"
    ACHIEVEMENT = "ACHIEVEMENT"
    STREAK = "STREAK"
    LEADERBOARD = "LEADERBOARD"
    SYSTEM = "SYSTEM"


class EventSource(str, enum.Enum):
    """Surface the interaction originated from."""

    SEARCH = "SEARCH"
    RECOMMENDATION = "RECOMMENDATION"
    NOTIFICATION = "NOTIFICATION"
    DIRECT = "DIRECT"
    FEED = "FEED"
    EMAIL = "EMAIL"
    REFERRAL = "REFERRAL"
    EXTERNAL = "EXTERNAL"


class Event(Base):
    """Immutable interaction record. Rows are inserted once and never updated."""

    __tablename__ = "events"
    __table_args__ = (
        UniqueConstraint("idempotency_key", name="events_idempotency_key_unique"),
        Index("events_user_cursor_idx", "user_id", "event_id"),
    )

    event_id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Uuid(as_uuid=True), nullable=False)
    event_type = Column(Enum(EventType, name="event_type"), nullable=False)
    source = Column(Enum(EventSource, name="event_source"), nullable=False)
    event_name = Column(String)
    reward_value = Column(Integer, nullable=False, default=0)
    occurred_at = Column(DateTime, nullable=False)
    recorded_at = Column(DateTime, default=utcnow, nullable=False)
    event_metadata = Column("metadata", JSON, nullable=False, default=dict)
    idempotency_key = Column(String)
