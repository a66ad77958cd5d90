"""Time helpers shared by the stores, router and scheduler.

All timestamps are kept as timezone-aware UTC datetimes internally and stored
as ISO-8601 strings. Naive input is interpreted in the configured TIMEZONE,
which is also the zone used when showing times to users.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo


def local_tz() -> ZoneInfo:
    from src.config import settings

    return ZoneInfo(settings.TIMEZONE)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Return *value* in UTC, reading naive datetimes as local time."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=local_tz())
    return value.astimezone(timezone.utc)


def floor_minute(value: datetime) -> datetime:
    return value.replace(second=0, microsecond=0)


def minute_window(value: datetime) -> tuple[datetime, datetime]:
    """Return the [start, end) UTC window of the minute containing *value*."""
    start = floor_minute(as_utc(value))
    return start, start + timedelta(minutes=1)


def to_db(value: datetime | None) -> str | None:
    if value is None:
        return None
    return as_utc(value).isoformat(timespec="seconds")


def from_db(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_local(value: datetime) -> str:
    """Format a timestamp for a WhatsApp message, e.g. '21/03/2026 14:30'."""
    return as_utc(value).astimezone(local_tz()).strftime("%d/%m/%Y %H:%M")
