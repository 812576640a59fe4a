"""Pydantic schemas for event ingestion endpoints."""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from ..models import EventSource, EventType
from .score import ScoreRead


class EventCreate(BaseModel):
    """Incoming interaction to append to the event log."""

    user_id: UUID
    event_type: str = Field(..., description="One of OPPORTUNITY, APPLICATION, INVITE, PLACEMENT, ACHIEVEMENT, STREAK, LEADERBOARD, SYSTEM.")
    source: str = Field(..., description="One of SEARCH, RECOMMENDATION, NOTIFICATION, DIRECT, FEED, EMAIL, REFERRAL, EXTERNAL.")
    event_name: Optional[str] = Field(None, max_length=64, description="Fine-grained action, e.g. APPLICATION_SUBMIT.")
    reward_value: Optional[int] = Field(None, description="Explicit reward; defaults to the configured weight for event_name.")
    occurred_at: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    idempotency_key: Optional[str] = Field(None, max_length=128)


class EventRead(BaseModel):
    """Represents a stored event."""

    model_config = ConfigDict(from_attributes=True)

    event_id: int
    user_id: UUID
    event_type: EventType
    source: EventSource
    event_name: Optional[str]
    reward_value: int
    occurred_at: datetime
    recorded_at: datetime
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias="event_metadata")


class EventReceipt(BaseModel):
    """Response returned after recording an event."""

    event_id: int
    score: ScoreRead


class EventBatch(BaseModel):
    """Several interactions recorded in one request."""

    events: List[EventCreate] = Field(..., min_length=1, max_length=100)


class EventBatchReceipt(BaseModel):
    """Ids of the stored events, in request order."""

    event_ids: List[int]
    count: int
