"""Strict date and month parsing for request parameters and CSV rows."""

from __future__ import annotations

import calendar
import re
from datetime import date, datetime, timedelta
from typing import Any, Iterator, Tuple

import pandas as pd

from .errors import DateFormatError

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
MONTH_PATTERN = re.compile(r"^\d{4}-\d{2}$")


def parse_iso_date(value: Any, name: str = 'date') -> date:
    """Parse ``YYYY-MM-DD`` exactly; anything else raises DateFormatError."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip() if value is not None else ''
    if not DATE_PATTERN.match(text):
        raise DateFormatError(f"{name} must be in YYYY-MM-DD format, got {value!r}")
    try:
        return datetime.strptime(text, '%Y-%m-%d').date()
    except ValueError as exc:
        raise DateFormatError(f"{name} {text!r} is not a real calendar day") from exc


def parse_month(value: Any, name: str = 'month') -> date:
    """Parse ``YYYY-MM`` into the first day of that month."""
    text = str(value).strip() if value is not None else ''
    if not MONTH_PATTERN.match(text):
        raise DateFormatError(f"{name} must be in YYYY-MM format, got {value!r}")
    try:
        return datetime.strptime(text, '%Y-%m').date()
    except ValueError as exc:
        raise DateFormatError(f"{name} {text!r} is not a real month") from exc


def days_in_month(day: date) -> int:
    return calendar.monthrange(day.year, day.month)[1]


def month_bounds(day: date) -> Tuple[date, date]:
    """First and last calendar day of the month containing ``day``."""
    first = day.replace(day=1)
    return first, first.replace(day=days_in_month(first))


def iter_days(start: date, end: date) -> Iterator[date]:
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def to_date(value: Any) -> date:
    """Coerce pandas/py date-likes to a ``date``."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return pd.Timestamp(value).date()
