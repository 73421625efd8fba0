"""UTC-canonical time helpers.

All comparisons happen on timezone-aware UTC datetimes. The race calendar
zone is only used to build local wall-clock instants (which are converted
straight back to UTC) and to format log output.
"""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo


@lru_cache
def race_tz(name: str) -> ZoneInfo:
    return ZoneInfo(name)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def local_to_utc(day: date, hour: int, minute: int, tz: ZoneInfo) -> datetime:
    """Wall-clock time on a race-calendar day, as a UTC instant."""
    local = datetime.combine(day, time(hour, minute), tzinfo=tz)
    return local.astimezone(timezone.utc)


def format_local(moment: datetime, tz: ZoneInfo) -> str:
    """Render an instant for humans, e.g. ``2025-05-04T15:40:00+09:00``."""
    return moment.astimezone(tz).isoformat(timespec="seconds")


def parse_utc(value: str) -> datetime:
    """Parse a stored ISO timestamp; naive values are taken as UTC."""
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def to_iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat()
