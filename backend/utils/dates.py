"""UTC day arithmetic shared by the aggregator and the dashboard.

All stored timestamps are naive UTC; a "day" is the half-open interval
``[D 00:00, D+1 00:00)`` in UTC.
"""
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional, Tuple, Union

from core.exceptions import ValidationError

DAY_FORMAT = "%Y-%m-%d"


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def today_utc() -> date:
    return utcnow().date()


def parse_day(value: Optional[Union[str, date, datetime]]) -> date:
    """Accept a date, a datetime or a ``YYYY-MM-DD`` string; None means today."""
    if value is None:
        return today_utc()
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return datetime.strptime(text, DAY_FORMAT).date()
    except ValueError:
        raise ValidationError(f"Invalid date {text!r}, expected YYYY-MM-DD")


def day_bounds(day: date) -> Tuple[datetime, datetime]:
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


def window_dates(days: int, end: Optional[date] = None) -> List[date]:
    """The ``days`` contiguous calendar dates ending at ``end`` (oldest first)."""
    end = end or today_utc()
    return [end - timedelta(days=offset) for offset in range(days - 1, -1, -1)]


def format_day(day: date) -> str:
    return day.strftime(DAY_FORMAT)
