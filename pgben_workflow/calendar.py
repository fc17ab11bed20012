"""Business-day arithmetic.

Stage SLAs are expressed in business days. A business day is any Monday to
Friday that the configured :class:`~pgben_workflow.providers.HolidayCalendar`
does not report as a holiday.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Optional, Union

from .providers import HolidayCalendar

DateLike = Union[date, datetime]


def _as_date(value: DateLike) -> date:
    return value.date() if isinstance(value, datetime) else value


class BusinessCalendar:
    """Pure calendar helper; holds no state besides its holiday source."""

    def __init__(self, holidays: Optional[HolidayCalendar] = None) -> None:
        self._holidays = holidays

    def is_business_day(self, day: DateLike) -> bool:
        d = _as_date(day)
        # Monday = 0, Sunday = 6
        if d.weekday() >= 5:
            return False
        return not (self._holidays is not None and self._holidays.is_holiday(d))

    def add_business_days(self, start: DateLike, days: int) -> DateLike:
        """
        Advance ``start`` by ``days`` business days.

        The time of day and timezone of ``start`` are preserved. ``days == 0``
        returns ``start`` unchanged, even on a weekend or holiday.

        Raises:
            ValueError: If ``days`` is negative.
        """
        if days < 0:
            raise ValueError(f"days must be non-negative, got {days}")
        current = start
        added = 0
        while added < days:
            current += timedelta(days=1)
            if self.is_business_day(current):
                added += 1
        return current

    def business_days_between(self, start: DateLike, end: DateLike) -> int:
        """Count business days after ``start`` up to and including ``end`` (0 when ``end`` is not later)."""
        first, last = _as_date(start), _as_date(end)
        count = 0
        current = first
        while current < last:
            current += timedelta(days=1)
            if self.is_business_day(current):
                count += 1
        return count
