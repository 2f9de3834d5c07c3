"""Business-day arithmetic and fiscal-quarter windows.

Every function here is pure: the reference point (``as_of``) is always passed
in explicitly and the system clock is never read. Datetimes are reduced to
their calendar date before any comparison, so time-of-day never changes a
result.

Quarters are fixed three-calendar-month blocks (Q1 = Jan-Mar, ...). For weekly
reporting every quarter is bucketed into exactly 13 weeks; the last bucket
absorbs the one or two overflow days of a 92-day quarter so historical reports
stay comparable.
"""

import re
from datetime import date, datetime, timedelta

from pydantic import BaseModel, ConfigDict

WEEKS_PER_QUARTER = 13
DAYS_PER_WEEK = 7
WORKDAYS_PER_WEEK = 5

_QUARTER_LABEL_RE = re.compile(r"^Q([1-4])\s+(\d{4})$")


class QuarterWindow(BaseModel):
    """A fiscal quarter with inclusive start and end dates."""

    model_config = ConfigDict(frozen=True)

    year: int
    quarter: int
    start_date: date
    end_date: date
    label: str

    def contains(self, value: date | datetime) -> bool:
        """Return True if ``value`` falls on or between the quarter bounds."""
        day = to_date(value)
        return self.start_date <= day <= self.end_date


class QuarterProgress(BaseModel):
    """How far ``as_of`` is through a quarter."""

    model_config = ConfigDict(frozen=True)

    days_elapsed: int
    total_days: int
    percent_complete: float


class QuarterWeek(BaseModel):
    """Boundaries of one of the 13 weekly buckets of a quarter."""

    model_config = ConfigDict(frozen=True)

    week_number: int
    week_start: date
    week_end: date


def to_date(value: date | datetime) -> date:
    """Reduce a date or datetime to its calendar date."""
    if isinstance(value, datetime):
        return value.date()
    return value


def business_days_between(start: date | datetime, end: date | datetime) -> int:
    """Count weekdays (Mon-Fri) in the half-open range ``[start, end)``.

    Args:
        start: First day counted (inclusive).
        end: Day the count stops at (exclusive).

    Returns:
        Number of weekdays, or 0 if ``end`` is not after ``start``.
    """
    start_day = to_date(start)
    end_day = to_date(end)
    if end_day <= start_day:
        return 0

    full_weeks, remainder = divmod((end_day - start_day).days, DAYS_PER_WEEK)
    count = full_weeks * WORKDAYS_PER_WEEK
    first_weekday = start_day.weekday()
    for offset in range(remainder):
        if (first_weekday + offset) % DAYS_PER_WEEK < WORKDAYS_PER_WEEK:
            count += 1
    return count


def business_days_since(value: date | datetime, as_of: date | datetime) -> int:
    """Business days elapsed from ``value`` up to (not including) ``as_of``."""
    return business_days_between(value, as_of)


def add_business_days(value: date | datetime, days: int) -> date:
    """Move forward ``days`` weekdays from ``value``, skipping weekends."""
    result = to_date(value)
    added = 0
    while added < days:
        result += timedelta(days=1)
        if result.weekday() < WORKDAYS_PER_WEEK:
            added += 1
    return result


def previous_business_day(as_of: date | datetime) -> date:
    """Return the weekday before ``as_of`` (Monday maps back to Friday)."""
    day = to_date(as_of) - timedelta(days=1)
    while day.weekday() >= WORKDAYS_PER_WEEK:
        day -= timedelta(days=1)
    return day


def is_in_past(value: date | datetime, as_of: date | datetime) -> bool:
    """Return True if ``value`` is a calendar day strictly before ``as_of``."""
    return to_date(value) < to_date(as_of)


def days_until(value: date | datetime, as_of: date | datetime) -> int:
    """Signed calendar days from ``as_of`` to ``value`` (negative when past)."""
    return (to_date(value) - to_date(as_of)).days


def quarter_window(year: int, quarter: int) -> QuarterWindow:
    """Build the window for a fiscal quarter.

    Args:
        year: Calendar year.
        quarter: Quarter number, 1-4.

    Returns:
        QuarterWindow with inclusive start/end dates and a "Q1 2025" label.

    Raises:
        ValueError: If ``quarter`` is outside 1-4.
    """
    if quarter < 1 or quarter > 4:
        raise ValueError("Quarter must be between 1 and 4")

    start_month = (quarter - 1) * 3 + 1
    start = date(year, start_month, 1)
    if quarter == 4:
        next_start = date(year + 1, 1, 1)
    else:
        next_start = date(year, start_month + 3, 1)

    return QuarterWindow(
        year=year,
        quarter=quarter,
        start_date=start,
        end_date=next_start - timedelta(days=1),
        label=f"Q{quarter} {year}",
    )


def quarter_for_date(value: date | datetime) -> QuarterWindow:
    """Return the quarter window containing ``value``."""
    day = to_date(value)
    return quarter_window(day.year, (day.month - 1) // 3 + 1)


def parse_quarter_label(label: str) -> tuple[int, int] | None:
    """Parse a "Q1 2025" label into ``(year, quarter)``; None if malformed."""
    match = _QUARTER_LABEL_RE.match(label.strip())
    if not match:
        return None
    return int(match.group(2)), int(match.group(1))


def quarter_progress(window: QuarterWindow, as_of: date | datetime) -> QuarterProgress:
    """Compute elapsed days and percent complete for a quarter.

    Both ends are inclusive, so the first day of the quarter counts as one
    elapsed day. Dates before the quarter give 0%, dates after it 100%.
    """
    day = to_date(as_of)
    total_days = (window.end_date - window.start_date).days + 1

    if day < window.start_date:
        days_elapsed = 0
    elif day > window.end_date:
        days_elapsed = total_days
    else:
        days_elapsed = (day - window.start_date).days + 1

    percent = min(100.0, max(0.0, days_elapsed / total_days * 100))
    return QuarterProgress(
        days_elapsed=days_elapsed,
        total_days=total_days,
        percent_complete=percent,
    )


def week_number_in_quarter(value: date | datetime, quarter_start: date | datetime) -> int:
    """Map a date to its weekly bucket, clamped to 1-13."""
    elapsed = (to_date(value) - to_date(quarter_start)).days
    week = elapsed // DAYS_PER_WEEK + 1
    return max(1, min(WEEKS_PER_QUARTER, week))


def quarter_weeks(window: QuarterWindow) -> list[QuarterWeek]:
    """Return the 13 weekly buckets of a quarter.

    Buckets are seven days long from the quarter start; the final bucket
    always ends on the quarter end date.
    """
    weeks: list[QuarterWeek] = []
    for index in range(WEEKS_PER_QUARTER):
        week_start = window.start_date + timedelta(days=index * DAYS_PER_WEEK)
        week_end = week_start + timedelta(days=DAYS_PER_WEEK - 1)
        if index == WEEKS_PER_QUARTER - 1:
            week_end = window.end_date
        weeks.append(
            QuarterWeek(week_number=index + 1, week_start=week_start, week_end=week_end)
        )
    return weeks
