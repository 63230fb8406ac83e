from datetime import date, datetime, timedelta, timezone
from typing import Iterator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Backends without tz support (SQLite) hand back naive UTC datetimes."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def month_start(value: date | datetime) -> date:
    if isinstance(value, datetime):
        value = value.date()
    return value.replace(day=1)


def iter_dates(start: date, end: date | None) -> Iterator[date]:
    """Inclusive date range; a missing or inverted end yields only `start`."""
    if end is None or end < start:
        end = start
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)
