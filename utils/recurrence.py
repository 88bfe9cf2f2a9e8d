"""
utils/recurrence.py
-------------------
Pure date arithmetic for recurring payments.

Every date that enters the recurring engine goes through
`normalize_date` first, so comparisons never mix timestamps and dates.
Month and year steps use dateutil's relativedelta, which clamps to the
last valid day of the target month (Jan 31 + 1 month -> Feb 28/29,
Feb 29 + 1 year -> Feb 28).
"""

from datetime import date, datetime, timedelta
from typing import Union

from dateutil.relativedelta import relativedelta

FREQUENCIES: tuple[str, ...] = ("daily", "weekly", "monthly", "yearly", "custom")

DateLike = Union[date, datetime, str]


def normalize_date(value: DateLike) -> date:
    """
    Strip the time-of-day component from a date-like value.

    Args:
        value: A `date`, a `datetime` or an ISO-8601 string
            ("2026-03-01" or "2026-03-01T17:38:00").

    Returns:
        The calendar date.

    Raises:
        ValueError: If a string is not a valid ISO date.
        TypeError: For any other input type.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        if len(text) > 10:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
        return date.fromisoformat(text)
    raise TypeError(f"Cannot interpret {value!r} as a date")


def _step(frequency: str, interval: int) -> timedelta | relativedelta | None:
    """Return one recurrence step, or None when the schedule cannot advance."""
    if not isinstance(interval, int) or interval < 1:
        return None
    if frequency in ("daily", "custom"):
        return timedelta(days=interval)
    if frequency == "weekly":
        return timedelta(weeks=interval)
    if frequency == "monthly":
        return relativedelta(months=interval)
    if frequency == "yearly":
        return relativedelta(years=interval)
    return None


def next_occurrence(frequency: str, interval: int, anchor: date) -> date:
    """
    Compute the occurrence that follows `anchor`.

    Unknown frequencies and non-positive intervals return `anchor`
    unchanged; callers must treat that as "never advances".
    """
    step = _step(frequency, interval)
    if step is None:
        return anchor
    return anchor + step


def previous_occurrence(frequency: str, interval: int, anchor: date) -> date:
    """Compute the occurrence that precedes `anchor` (inverse of `next_occurrence`)."""
    step = _step(frequency, interval)
    if step is None:
        return anchor
    return anchor - step


def advances(frequency: str, interval: int) -> bool:
    """True when a schedule with this frequency and interval moves forward in time."""
    return _step(frequency, interval) is not None
