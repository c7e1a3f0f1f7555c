"""Time helpers.

We keep DB timestamps naive (no tzinfo) but always in UTC to avoid mixing
offset-aware/naive datetimes while remaining explicit about the timezone.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    """Naive UTC datetime (tzinfo stripped)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def add_months(moment: datetime, months: int) -> datetime:
    """Shift a datetime by whole calendar months, clamping the day."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = moment.day
    while day > 28:
        try:
            return moment.replace(year=year, month=month, day=day)
        except ValueError:
            day -= 1
    return moment.replace(year=year, month=month, day=day)


def month_key(moment: datetime) -> tuple[int, int]:
    """Calendar bucket used for monthly quotas."""
    return moment.year, moment.month


def days_between(earlier: datetime, later: datetime) -> float:
    """Fractional days between two naive UTC datetimes (never negative)."""
    delta: timedelta = later - earlier
    return max(delta.total_seconds(), 0.0) / 86400.0
