"""Clock and calendar-bucket helpers.

All datetimes handled by the engine are naive and expressed in UTC, which
matches how SQLAlchemy's ``DateTime`` round-trips through SQLite.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values pass through."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


@dataclass
class Clock:
    """Clock abstraction for window calculations.

    Allows injection of a fixed time for testing.
    """

    fixed_now: datetime | None = None

    @property
    def now(self) -> datetime:
        """Get the current time (naive UTC)."""
        if self.fixed_now is not None:
            return to_naive_utc(self.fixed_now)
        return utcnow()

    def days_ago(self, days: float) -> datetime:
        """Get the datetime ``days`` days before now."""
        return self.now - timedelta(days=days)

    def days_since(self, moment: datetime) -> float:
        """Number of (fractional) days between ``moment`` and now."""
        return (self.now - to_naive_utc(moment)).total_seconds() / 86400.0


def iso_week_start(moment: datetime) -> datetime:
    """Return Monday 00:00 of the ISO week containing ``moment``."""
    day = moment.date() - timedelta(days=moment.weekday())
    return datetime(day.year, day.month, day.day)


def month_start(moment: datetime) -> datetime:
    """Return the first instant of the calendar month containing ``moment``."""
    return datetime(moment.year, moment.month, 1)


def month_bucket(moment: datetime) -> tuple[int, int]:
    """(year, month) bucket key."""
    return moment.year, moment.month


def iso_week_bucket(moment: datetime) -> tuple[int, int]:
    """(ISO year, ISO week) bucket key."""
    iso_year, iso_week, _ = moment.isocalendar()
    return int(iso_year), int(iso_week)


def sqlite_day_of_week(day: date) -> int:
    """Day-of-week using SQLite's ``%w`` convention (0=Sunday .. 6=Saturday)."""
    return (day.weekday() + 1) % 7


__all__ = [
    "Clock",
    "iso_week_bucket",
    "iso_week_start",
    "month_bucket",
    "month_start",
    "sqlite_day_of_week",
    "to_naive_utc",
    "utcnow",
]
