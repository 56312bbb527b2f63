from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Union


_MONTHS = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)


def week_start(now: Union[datetime, date]) -> date:
    """Return the Sunday that opens the calendar week containing ``now``.

    Aware datetimes are taken in their own timezone, naive ones as local time.
    """
    day = now.date() if isinstance(now, datetime) else now
    # date.weekday() is Monday=0; shift so Sunday=0
    days_since_sunday = (day.weekday() + 1) % 7
    return day - timedelta(days=days_since_sunday)


def format_week_label(start: date) -> str:
    # English month abbreviations regardless of process locale
    return f"Week of {_MONTHS[start.month - 1]} {start.day}, {start.year}"


def week_label(now: Union[datetime, date]) -> str:
    """Canonical label of the Sunday-anchored week containing ``now``, e.g. ``Week of Jan 7, 2024``."""
    return format_week_label(week_start(now))
