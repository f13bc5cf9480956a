"""Cadence arithmetic for recurring templates.

All dates are plain calendar dates; there is no time-of-day or timezone
component anywhere in this module.
"""

import calendar
from datetime import date, timedelta

from .models import CADENCES


def last_day_of_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def add_months(d: date, months: int, day_of_month: int | None = None) -> date:
    """Add months to d, anchoring on day_of_month (or d.day) clamped to month end."""
    month_index = d.month - 1 + months
    year = d.year + month_index // 12
    month = month_index % 12 + 1
    day = min(day_of_month or d.day, last_day_of_month(year, month))
    return date(year, month, day)


def advance(
    d: date,
    cadence: str,
    interval: int = 1,
    day_of_month: int | None = None,
) -> date:
    """Return the occurrence one cadence step after d.

    Args:
        d: Current occurrence date.
        cadence: 'daily', 'weekly' or 'monthly'.
        interval: Number of cadence units per step.
        day_of_month: Monthly anchor day; ignored for other cadences.

    Returns:
        The next occurrence date.

    Raises:
        ValueError: If the cadence is unknown or interval is not positive.
    """
    if interval < 1:
        raise ValueError(f"Interval must be a positive integer, got {interval}")

    if cadence == "daily":
        return d + timedelta(days=interval)
    if cadence == "weekly":
        return d + timedelta(days=7 * interval)
    if cadence == "monthly":
        return add_months(d, interval, day_of_month)

    raise ValueError(f"Unknown cadence: {cadence!r} (expected one of {', '.join(CADENCES)})")


def upcoming_dates(
    start: date,
    cadence: str,
    interval: int = 1,
    day_of_month: int | None = None,
    count: int = 5,
    end_date: date | None = None,
) -> list[date]:
    """List up to count occurrences beginning at start, stopping after end_date."""
    result: list[date] = []
    current = start
    while len(result) < count:
        if end_date and current > end_date:
            break
        result.append(current)
        current = advance(current, cadence, interval, day_of_month)
    return result


def first_on_or_after(
    start: date,
    floor: date,
    cadence: str,
    interval: int = 1,
    day_of_month: int | None = None,
) -> date:
    """First occurrence of the schedule beginning at start that is not before floor."""
    current = start
    while current < floor:
        current = advance(current, cadence, interval, day_of_month)
    return current
