"""Time and period-key utilities (America/New_York)."""

import calendar
from datetime import date, datetime, timedelta
from typing import List, Tuple
from zoneinfo import ZoneInfo

NY = ZoneInfo("America/New_York")


def now_ny_naive() -> datetime:
    """
    Current time in New York, returned as naive datetime for DB storage.
    """
    return datetime.now(NY).replace(tzinfo=None)


def today_ny() -> date:
    return datetime.now(NY).date()


def month_key(value: date) -> str:
    """Period key for the month containing ``value`` (``YYYY-MM``)."""
    return f"{value.year:04d}-{value.month:02d}"


def year_key(value: date) -> str:
    return f"{value.year:04d}"


def parse_month_key(key: str) -> Tuple[int, int]:
    year_str, month_str = key.split("-", 1)
    year, month = int(year_str), int(month_str)
    if not 1 <= month <= 12:
        raise ValueError(f"Invalid month key: {key}")
    return year, month


def month_bounds(key: str) -> Tuple[date, date]:
    """First and last calendar day of a ``YYYY-MM`` period."""
    year, month = parse_month_key(key)
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def year_bounds(key: str) -> Tuple[date, date]:
    year = int(key)
    return date(year, 1, 1), date(year, 12, 31)


def previous_month_key(reference: date) -> str:
    first_of_month = reference.replace(day=1)
    return month_key(first_of_month - timedelta(days=1))


def months_between(start: date, end: date) -> List[str]:
    """All month keys from ``start``'s month through ``end``'s month, inclusive."""
    months: List[str] = []
    year, month = start.year, start.month
    while (year, month) <= (end.year, end.month):
        months.append(f"{year:04d}-{month:02d}")
        month += 1
        if month > 12:
            year, month = year + 1, 1
    return months


def is_month_closed(key: str, now: date) -> bool:
    return key < month_key(now)


def is_year_closed(key: str, now: date) -> bool:
    return int(key) < now.year


def shift_months(value: date, months: int) -> date:
    """Move ``value`` by a number of months, clamping the day to the month length."""
    total = value.year * 12 + (value.month - 1) + months
    year, month = divmod(total, 12)
    month += 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def days_between(start: date, end: date) -> int:
    return (end - start).days
