"""Clock and business-day calendar.

Business days are Monday-Friday. A holiday calendar from the
``holidays`` package can be layered on top by country code; without
one only weekends are skipped.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from functools import lru_cache
from typing import Protocol, TypeVar
from zoneinfo import ZoneInfo

import holidays

D = TypeVar("D", date, datetime)


class Clock(Protocol):
    """Source of the current time. Always timezone-aware UTC."""

    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """Manually driven clock for tests and replays."""

    def __init__(self, current: datetime) -> None:
        if current.tzinfo is None:
            current = current.replace(tzinfo=timezone.utc)
        self._current = current

    def now(self) -> datetime:
        return self._current

    def set(self, current: datetime) -> None:
        if current.tzinfo is None:
            current = current.replace(tzinfo=timezone.utc)
        self._current = current

    def advance(self, delta: timedelta) -> datetime:
        self._current = self._current + delta
        return self._current


@lru_cache(maxsize=32)
def _holiday_dates(country: str, year: int) -> frozenset[date]:
    """Cache holiday sets per (country, year)."""
    return frozenset(holidays.country_holidays(country, years=year).keys())


class BusinessCalendar:
    """Business-day arithmetic in a fixed timezone.

    Usage:
        calendar = BusinessCalendar()
        calendar.add_business_days(date(2025, 1, 3), 1)  # -> Monday 2025-01-06
    """

    def __init__(self, tz: str = "UTC", holiday_country: str | None = None) -> None:
        self.tz = ZoneInfo(tz)
        self.holiday_country = holiday_country

    def is_business_day(self, day: date | datetime) -> bool:
        """Check if date is a business day (Mon-Fri, not a holiday)."""
        if isinstance(day, datetime):
            day = day.astimezone(self.tz).date() if day.tzinfo else day.date()
        if day.weekday() >= 5:
            return False
        if self.holiday_country and day in _holiday_dates(self.holiday_country, day.year):
            return False
        return True

    def add_business_days(self, start: D, days: int) -> D:
        """Move ``days`` business days from ``start``.

        The start day itself is never counted. Time of day is kept for
        datetimes. Negative values walk backwards.
        """
        step = 1 if days >= 0 else -1
        remaining = abs(days)
        current = start
        while remaining > 0:
            current = current + timedelta(days=step)
            if self.is_business_day(current):
                remaining -= 1
        return current

    def business_days_between(self, start: date, end: date) -> int:
        """Count business days in (start, end]. Negative if end < start."""
        if end == start:
            return 0
        if end < start:
            return -self.business_days_between(end, start)
        count = 0
        current = start
        while current < end:
            current = current + timedelta(days=1)
            if self.is_business_day(current):
                count += 1
        return count

    def local_date(self, moment: datetime) -> date:
        """Calendar date of ``moment`` in the calendar's timezone."""
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return moment.astimezone(self.tz).date()

    def today(self, clock: Clock) -> date:
        return self.local_date(clock.now())
