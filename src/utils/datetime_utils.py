"""
Centralized datetime and timezone utilities.

All datetimes handled by the task core are naive and expressed in the
configured local timezone, matching TIMESTAMP WITHOUT TIME ZONE storage.
"""

import re
from datetime import datetime, timedelta
from typing import Optional, Protocol

import pytz

from config.settings import settings

DATE_INPUT_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class Clock(Protocol):
    """Source of the current time. Injected so tests can control time."""

    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall clock in the configured local timezone."""

    def now(self) -> datetime:
        return get_local_now()


def get_local_tz() -> pytz.BaseTzInfo:
    """Get the configured local timezone."""
    return pytz.timezone(settings.timezone)


def get_local_now() -> datetime:
    """Get current time in local timezone (naive)."""
    local_tz = get_local_tz()
    return datetime.now(local_tz).replace(tzinfo=None)


def end_of_day(dt: datetime) -> datetime:
    """Last representable millisecond of the calendar day of ``dt`` (23:59:59.999)."""
    return dt.replace(hour=23, minute=59, second=59, microsecond=999000)


def end_of_next_day(dt: datetime) -> datetime:
    """23:59:59.999 of the calendar day after ``dt``."""
    return end_of_day(dt + timedelta(days=1))


def parse_date_input(value: str) -> Optional[datetime]:
    """
    Parse a manually typed deadline date.

    Only strict ``YYYY-MM-DD`` is accepted, and the date must exist on the
    calendar ("2026-02-30" is rejected).

    Returns:
        End of that day in local time, or None if the text is not a valid date
    """
    if not value:
        return None

    value = value.strip()
    if not DATE_INPUT_PATTERN.match(value):
        return None

    try:
        parsed = datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        return None

    return end_of_day(parsed)
