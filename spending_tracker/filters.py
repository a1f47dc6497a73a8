"""Caller-side filtering and transfer classification.

The analytics never decide what a transfer is; they read the
``is_transfer`` column produced here (or by any other caller).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional

import pandas as pd

TRANSFER_CATEGORY_LABELS = {'transfer', 'transfers', 'internal transfer'}
TRANSFER_KEYWORDS = ('transfer',)


@dataclass
class TransactionFilter:
    categories: List[str] = field(default_factory=list)
    search_text: str = ''
    amount_min: Optional[float] = None
    amount_max: Optional[float] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None


def mark_transfers(df: pd.DataFrame) -> pd.DataFrame:
    """Return a copy of ``df`` with a boolean ``is_transfer`` column.

    A row is a transfer when its category is one of the transfer labels or
    its description mentions a transfer keyword. Existing ``True`` flags are
    preserved.
    """
    result = df.copy()
    if result.empty:
        result['is_transfer'] = pd.Series(dtype=bool)
        return result

    category = result.get('category', pd.Series('', index=result.index)).fillna('').astype(str)
    description = result.get('description', pd.Series('', index=result.index)).fillna('').astype(str)

    by_category = category.str.strip().str.lower().isin(TRANSFER_CATEGORY_LABELS)
    pattern = '|'.join(TRANSFER_KEYWORDS)
    by_description = description.str.lower().str.contains(pattern, regex=True)

    existing = result['is_transfer'].fillna(False).astype(bool) if 'is_transfer' in result.columns else False
    result['is_transfer'] = by_category | by_description | existing
    return result


def apply_filters(df: pd.DataFrame, filt: TransactionFilter) -> pd.DataFrame:
    """Keep rows matching every populated criterion of ``filt``."""
    if df.empty:
        return df.copy()

    mask = pd.Series(True, index=df.index)
    category = df['category'].fillna('Uncategorized').astype(str)

    if filt.search_text:
        needle = filt.search_text.lower()
        haystack = df['description'].fillna('').astype(str).str.lower()
        mask &= haystack.str.contains(needle, regex=False) | category.str.lower().str.contains(needle, regex=False)
    if filt.categories:
        mask &= category.isin(filt.categories)
    if filt.amount_min is not None:
        mask &= df['amount'] >= filt.amount_min
    if filt.amount_max is not None:
        mask &= df['amount'] <= filt.amount_max
    if filt.start_date is not None or filt.end_date is not None:
        dates = pd.to_datetime(df['date']).dt.date
        if filt.start_date is not None:
            mask &= dates >= filt.start_date
        if filt.end_date is not None:
            mask &= dates <= filt.end_date

    return df[mask].copy()


def unique_categories(df: pd.DataFrame) -> List[str]:
    if df.empty:
        return []
    return sorted(df['category'].fillna('Uncategorized').astype(str).unique().tolist())
