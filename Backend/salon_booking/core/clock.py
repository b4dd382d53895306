"""Wall-clock helpers.

Slot dates and start times are salon-local and stored without a timezone;
audit timestamps (booking_date, confirmed_at, ...) are stored in UTC.
"""
from datetime import date, datetime, time, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from .config import get_settings


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def local_now() -> datetime:
    """Current salon-local time as a naive datetime, comparable with slot times."""
    tz = ZoneInfo(get_settings().salon_timezone)
    return datetime.now(tz).replace(tzinfo=None)


def local_today() -> date:
    return local_now().date()


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_clock_time(value: Optional[str]) -> Optional[time]:
    """Parse "HH:MM" (or "HH:MM:SS"); returns None when missing or malformed."""
    if not value:
        return None
    for fmt in ("%H:%M", "%H:%M:%S"):
        try:
            return datetime.strptime(value.strip(), fmt).time()
        except ValueError:
            continue
    return None
