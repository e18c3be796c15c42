"""Calendar helpers shared by the metrics and trends engines.

Weeks run Sunday through Saturday. Month arithmetic works on
``(year, month)`` pairs so no helper depends on the current time; callers
always pass the reference day in.
"""

from __future__ import annotations

import calendar
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

MONTH_NAMES = list(calendar.month_name)


def week_start(day: date) -> date:
    """Return the Sunday on or before *day*."""
    return day - timedelta(days=(day.weekday() + 1) % 7)


def week_end(day: date) -> date:
    """Return the Saturday on or after *day*."""
    return week_start(day) + timedelta(days=6)


def shift_month(year: int, month: int, delta: int) -> tuple[int, int]:
    """Move ``(year, month)`` by *delta* months."""
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def month_keys(today: date, count: int) -> list[str]:
    """Return the last *count* month keys, oldest first, ending with today's."""
    keys: list[str] = []
    for delta in range(count - 1, -1, -1):
        year, month = shift_month(today.year, today.month, -delta)
        keys.append(f"{year:04d}-{month:02d}")
    return keys


def matched_window(today: date, year: int, month: int) -> tuple[date, date]:
    """Return days 1..today.day of ``(year, month)``.

    The end is clamped to the month's length, so a comparison against
    February from the 30th ends on the 28th (or 29th).
    """
    last_day = min(today.day, days_in_month(year, month))
    return date(year, month, 1), date(year, month, last_day)


def day_of_year(day: date) -> int:
    return day.timetuple().tm_yday


def days_in_year(year: int) -> int:
    return 366 if calendar.isleap(year) else 365


def format_day(day: date) -> str:
    """Format as ``January 12, 2026``."""
    return f"{MONTH_NAMES[day.month]} {day.day}, {day.year}"


def format_period(start: date, end: date) -> str:
    """Format a same-month window as ``January 1-12, 2026``."""
    if start == end:
        return format_day(start)
    return f"{MONTH_NAMES[start.month]} {start.day}-{end.day}, {start.year}"


def next_weekly_run(now: datetime, weekday: int, hour: int, timezone: str) -> datetime:
    """Return the next occurrence of *weekday* at *hour*:00 local time.

    Args:
        now: Current time, timezone aware.
        weekday: 0 = Sunday through 6 = Saturday.
        hour: Local hour of day.
        timezone: IANA timezone name.

    Returns:
        A timezone-aware datetime strictly after *now*.
    """
    local_now = now.astimezone(ZoneInfo(timezone))
    current = (local_now.weekday() + 1) % 7
    days_ahead = (weekday - current) % 7
    candidate = local_now.replace(hour=hour, minute=0, second=0, microsecond=0)
    candidate += timedelta(days=days_ahead)
    if candidate <= local_now:
        candidate += timedelta(days=7)
    return candidate
