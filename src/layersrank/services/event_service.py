"""Event ingestion: the append-only entry point for every interaction."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.config import get_settings
from ..core.database import store_guard
from ..models import Event, EventSource, EventType
from ..utils.datetime import to_naive_utc, utcnow

logger = logging.getLogger(__name__)


class InvalidEventKind(Exception):
    """Raised when an event carries a type or source outside the closed sets."""

    def __init__(self, detail: str, status_code: int = 422) -> None:
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code


class DuplicateEvent(Exception):
    """Raised instead of replaying when the caller asked for a strictly new event."""

    def __init__(self, detail: str, status_code: int = 409) -> None:
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code


def _coerce_kind(value: Union[str, EventType, EventSource], kind: type, label: str):
    if isinstance(value, kind):
        return value
    try:
        return kind(str(value).upper())
    except ValueError as exc:
        allowed = ", ".join(member.value for member in kind)
        raise InvalidEventKind(f"Unknown event {label} {value!r}; expected one of: {allowed}.") from exc


def resolve_reward(event_name: Optional[str], reward_value: Optional[int]) -> int:
    """Explicit rewards win; otherwise look the event name up in the configured reward table."""

    if reward_value is not None:
        return int(reward_value)
    if event_name:
        return int(get_settings().reward_values.get(event_name.upper(), 0))
    return 0


def _existing_event_id(session: Session, idempotency_key: str) -> Optional[int]:
    stmt = select(Event.event_id).where(Event.idempotency_key == idempotency_key)
    return session.execute(stmt).scalar_one_or_none()


def record(
    session: Session,
    *,
    user_id: UUID,
    event_type: Union[str, EventType],
    source: Union[str, EventSource],
    event_name: Optional[str] = None,
    reward_value: Optional[int] = None,
    occurred_at: Optional[datetime] = None,
    metadata: Optional[Mapping[str, Any]] = None,
    idempotency_key: Optional[str] = None,
    replay: bool = True,
) -> int:
    """Append one event and return its id.

    The row is flushed before returning; the caller owns the commit. Replaying a
    call with the same ``idempotency_key`` returns the id of the original event,
    or raises ``DuplicateEvent`` when ``replay`` is false. Losing an insert race
    on that key rolls back the session's open transaction.
    """

    kind = _coerce_kind(event_type, EventType, "type")
    origin = _coerce_kind(source, EventSource, "source")

    with store_guard("event append"):
        if idempotency_key:
            existing = _existing_event_id(session, idempotency_key)
            if existing is not None:
                if not replay:
                    raise DuplicateEvent(f"Event {idempotency_key!r} was already recorded as {existing}.")
                return existing

        event = Event(
            user_id=user_id,
            event_type=kind,
            source=origin,
            event_name=event_name.upper() if event_name else None,
            reward_value=resolve_reward(event_name, reward_value),
            occurred_at=to_naive_utc(occurred_at),
            recorded_at=utcnow(),
            event_metadata=dict(metadata or {}),
            idempotency_key=idempotency_key,
        )
        session.add(event)
        try:
            session.flush()
        except IntegrityError:
            # A concurrent retry won the insert; the pending transaction is discarded.
            session.rollback()
            if not idempotency_key:
                raise
            existing = _existing_event_id(session, idempotency_key)
            if existing is None:
                raise
            if not replay:
                raise DuplicateEvent(
                    f"Event {idempotency_key!r} was recorded concurrently as {existing}; this transaction was rolled back."
                )
            return existing

    logger.debug("recorded event %s for user %s (%s/%s)", event.event_id, user_id, kind.value, origin.value)
    return event.event_id


def record_batch(session: Session, events: Sequence[Mapping[str, Any]]) -> List[int]:
    """Append several events, returning their ids in input order.

    Each item takes the keyword arguments of ``record``. Every type and source
    is checked before anything is written, so one bad item rejects the batch.
    Known idempotency keys replay their original id. Losing an insert race on
    a key rolls the whole batch back and raises ``DuplicateEvent``.
    """

    for position, item in enumerate(events):
        try:
            _coerce_kind(item["event_type"], EventType, "type")
            _coerce_kind(item["source"], EventSource, "source")
        except InvalidEventKind as exc:
            raise InvalidEventKind(f"Batch item {position}: {exc.detail}") from exc

    event_ids: List[int] = []
    seen: Dict[str, int] = {}
    for item in events:
        key = item.get("idempotency_key")
        if key and key not in seen:
            with store_guard("event append"):
                existing = _existing_event_id(session, key)
            if existing is not None:
                seen[key] = existing
        if key and key in seen:
            event_ids.append(seen[key])
            continue
        event_id = record(session, **item, replay=False)
        if key:
            seen[key] = event_id
        event_ids.append(event_id)
    return event_ids


def read_since(session: Session, user_id: UUID, cursor: Optional[int]) -> Sequence[Event]:
    """Return the user's events after ``cursor`` in fold order: occurred_at, then event id."""

    stmt = select(Event).where(Event.user_id == user_id)
    if cursor is not None:
        stmt = stmt.where(Event.event_id > cursor)
    stmt = stmt.order_by(Event.occurred_at.asc(), Event.event_id.asc())

    with store_guard("event read"):
        return session.execute(stmt).scalars().all()


def list_events(
    session: Session,
    *,
    user_id: UUID,
    limit: int = 50,
    offset: int = 0,
) -> Sequence[Event]:
    """Return a user's activity history, newest first."""

    stmt = (
        select(Event)
        .where(Event.user_id == user_id)
        .order_by(Event.occurred_at.desc(), Event.event_id.desc())
        .offset(offset)
        .limit(limit)
    )
    with store_guard("event history"):
        return session.execute(stmt).scalars().all()
