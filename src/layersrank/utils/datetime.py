"""Date-time helpers for event timestamps and streak day boundaries."""

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    """Return the current time as a naive UTC datetime, as stored in the database."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime | None) -> datetime:
    """Normalise a timestamp to naive UTC; naive input is assumed to be UTC already."""

    if value is None:
        return utcnow()
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def local_day(value: datetime, tz_name: str = "UTC") -> date:
    """Return the calendar day a stored (naive UTC) timestamp falls on in ``tz_name``."""

    aware = value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value
    zone = timezone.utc if tz_name.upper() == "UTC" else ZoneInfo(tz_name)
    return aware.astimezone(zone).date()
