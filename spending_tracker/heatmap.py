"""Daily spending rollups and heatmap intensity scaling.

Intensity is a value in ``[0, 1]`` (day amount over the period maximum).
Rendering uses four fixed buckets rather than a continuous gradient:
``empty`` for days without spending, then ``low``/``mid``/``high`` thirds.
"""

from __future__ import annotations

from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np
import pandas as pd

from .dates import iter_days, month_bounds, parse_iso_date
from .errors import ValidationError
from .models import DailySpending, Transaction, transactions_frame

LOW_TIER = 0.33
MID_TIER = 0.66
BUCKETS = ('empty', 'low', 'mid', 'high')
PERCENTILES = (25, 50, 75, 90)

DateLike = Union[str, date]
TransactionsInput = Union[pd.DataFrame, Sequence[Transaction]]


def _as_frame(transactions: TransactionsInput) -> pd.DataFrame:
    if isinstance(transactions, pd.DataFrame):
        return transactions
    return transactions_frame(list(transactions))


def _expense_rows(df: pd.DataFrame) -> pd.DataFrame:
    if df.empty:
        return df
    rows = df[pd.to_numeric(df['amount'], errors='coerce') < 0]
    if 'is_transfer' in rows.columns:
        rows = rows[~rows['is_transfer'].fillna(False).astype(bool)]
    return rows


def daily_spending(transactions: TransactionsInput, start: DateLike, end: DateLike) -> List[DailySpending]:
    """One entry per day in ``[start, end]``, zero-spending days included."""
    start_day = parse_iso_date(start, 'startDate')
    end_day = parse_iso_date(end, 'endDate')
    if start_day > end_day:
        raise ValidationError("Start date must be before or equal to end date.")

    days: Dict[date, DailySpending] = {
        day: DailySpending(date=day) for day in iter_days(start_day, end_day)
    }

    expenses = _expense_rows(_as_frame(transactions))
    if not expenses.empty:
        frame = pd.DataFrame({
            'day': pd.to_datetime(expenses['date']).dt.date,
            'magnitude': pd.to_numeric(expenses['amount']).abs(),
            'category': expenses['category'].fillna('Uncategorized').astype(str)
            if 'category' in expenses.columns else 'Uncategorized',
        })
        frame = frame[(frame['day'] >= start_day) & (frame['day'] <= end_day)]
        for record in frame.itertuples(index=False):
            entry = days[record.day]
            entry.amount += float(record.magnitude)
            entry.transaction_count += 1
            entry.categories[record.category] = entry.categories.get(record.category, 0.0) + float(record.magnitude)

    return [days[day] for day in sorted(days)]


def compute_thresholds(daily: Sequence[DailySpending]) -> Dict[str, float]:
    """Distribution statistics over the nonzero daily amounts.

    Percentiles use linear interpolation between closest ranks, so
    ``min <= p25 <= p50 <= p75 <= p90 <= max`` always holds.
    """
    amounts = np.array([d.amount for d in daily if d.amount > 0], dtype=float)
    if amounts.size == 0:
        return {'min': 0.0, 'max': 0.0, 'median': 0.0, 'p25': 0.0, 'p50': 0.0, 'p75': 0.0, 'p90': 0.0}

    p25, p50, p75, p90 = (float(v) for v in np.percentile(amounts, PERCENTILES))
    return {
        'min': float(amounts.min()),
        'max': float(amounts.max()),
        'median': p50,
        'p25': p25,
        'p50': p50,
        'p75': p75,
        'p90': p90,
    }


def intensity(day: Union[DailySpending, float, None], thresholds: Dict[str, float]) -> float:
    amount = day.amount if isinstance(day, DailySpending) else (day or 0.0)
    if amount <= 0:
        return 0.0
    peak = thresholds.get('max', 0.0)
    if peak <= 0:
        return 1.0
    return min(amount / peak, 1.0)


def intensity_bucket(value: float) -> str:
    if value <= 0:
        return 'empty'
    if value <= LOW_TIER:
        return 'low'
    if value <= MID_TIER:
        return 'mid'
    return 'high'


def transactions_for_day(transactions: TransactionsInput, day: DateLike) -> pd.DataFrame:
    target = parse_iso_date(day, 'date')
    df = _as_frame(transactions)
    if df.empty:
        return df.copy()
    return df[pd.to_datetime(df['date']).dt.date == target].copy()


def calendar_cells(
    start: DateLike,
    end: DateLike,
    daily: Sequence[DailySpending],
    view: str = 'month',
    today: Optional[date] = None,
) -> List[Dict[str, Any]]:
    """Grid cells for a calendar view.

    The month view pads the month containing ``start`` out to whole
    Sunday-first weeks; the range view covers ``[start, end]`` only.
    """
    start_day = parse_iso_date(start, 'startDate')
    end_day = parse_iso_date(end, 'endDate')
    today = today or date.today()

    if view == 'month':
        first, last = month_bounds(start_day)
        grid_start = first - timedelta(days=(first.weekday() + 1) % 7)
        grid_end = last + timedelta(days=(5 - last.weekday()) % 7)
    elif view == 'range':
        first, last = start_day, end_day
        grid_start, grid_end = start_day, end_day
    else:
        raise ValidationError(f"Unknown calendar view: {view}")

    by_day = {d.date: d for d in daily}
    thresholds = compute_thresholds(daily)

    cells: List[Dict[str, Any]] = []
    for day in iter_days(grid_start, grid_end):
        spending = by_day.get(day)
        value = intensity(spending, thresholds)
        cells.append({
            'date': day.isoformat(),
            'spending': spending,
            'intensity': value,
            'bucket': intensity_bucket(value),
            'is_current_month': first <= day <= last,
            'is_today': day == today,
        })
    return cells
