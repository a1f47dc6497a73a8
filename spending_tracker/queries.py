"""Request-level entry points.

Parameters arrive as loosely typed query values (usually strings). Each
function validates them completely before the store is opened, so a
malformed request never does partial work. Results are plain
JSON-serialisable dictionaries.
"""

from __future__ import annotations

import logging
import math
from datetime import date
from typing import Any, Dict, List, Mapping, Optional, Union

from . import config
from .analytics import SpendingAnalytics, comparison_windows, pattern_months
from .budget import BudgetConfig, budget_report, validate_budget_config
from .config_cache import BudgetConfigCache
from .dates import month_bounds, parse_iso_date, parse_month
from .db import SORT_COLUMNS, SORT_ORDERS, TransactionStore
from .errors import PaginationError, ValidationError
from .filters import mark_transfers
from .heatmap import compute_thresholds, daily_spending
from .importer import ImportOptions, ImportPipeline, Source

logger = logging.getLogger(__name__)

BudgetSource = Union[BudgetConfig, Dict[str, Any], BudgetConfigCache]


def _int_param(params: Mapping[str, Any], name: str, default: int) -> int:
    raw = params.get(name)
    if raw is None or raw == '':
        return default
    try:
        return int(str(raw).strip())
    except ValueError as exc:
        raise PaginationError(f"{name} must be an integer, got {raw!r}") from exc


def _optional_date(params: Mapping[str, Any], name: str) -> Optional[date]:
    raw = params.get(name)
    if raw is None or raw == '':
        return None
    return parse_iso_date(raw, name)


def _check_range(start: Optional[date], end: Optional[date]) -> None:
    if start and end and start > end:
        raise ValidationError("Start date must be before or equal to end date.")


def list_transactions(store: TransactionStore, params: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    """Paged transaction listing.

    Accepted parameters: ``startDate``, ``endDate``, ``category``, ``page``,
    ``limit``, ``sortBy`` and ``sortOrder``.
    """
    params = params or {}
    start = _optional_date(params, 'startDate')
    end = _optional_date(params, 'endDate')
    _check_range(start, end)

    page = _int_param(params, 'page', 1)
    limit = _int_param(params, 'limit', config.DEFAULT_PAGE_SIZE)
    sort_by = str(params.get('sortBy') or 'date')
    sort_order = str(params.get('sortOrder') or 'desc').lower()
    if page < 1:
        raise PaginationError("Page must be 1 or greater")
    if limit < 1 or limit > config.MAX_PAGE_SIZE:
        raise PaginationError(f"Limit must be between 1 and {config.MAX_PAGE_SIZE}")
    if sort_by not in SORT_COLUMNS:
        raise PaginationError(f"Invalid sortBy field: {sort_by}")
    if sort_order not in SORT_ORDERS:
        raise PaginationError(f"Invalid sortOrder: {sort_order}")
    category = params.get('category') or None

    rows, total = store.list_transactions(
        start_date=start,
        end_date=end,
        category=category,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return {
        'transactions': [t.to_dict() for t in rows],
        'pagination': {
            'page': page,
            'limit': limit,
            'total': total,
            'total_pages': math.ceil(total / limit) if total else 0,
        },
    }


def calendar_daily_spending(store: TransactionStore, start_date: Any, end_date: Any) -> List[Dict[str, Any]]:
    start = parse_iso_date(start_date, 'startDate')
    end = parse_iso_date(end_date, 'endDate')
    _check_range(start, end)

    frame = mark_transfers(store.fetch_transactions(start, end))
    return [d.to_dict() for d in daily_spending(frame, start, end)]


def calendar_summary(store: TransactionStore, start_date: Any, end_date: Any) -> Dict[str, Any]:
    """Daily spending plus the intensity thresholds for the same range."""
    start = parse_iso_date(start_date, 'startDate')
    end = parse_iso_date(end_date, 'endDate')
    _check_range(start, end)

    frame = mark_transfers(store.fetch_transactions(start, end))
    daily = daily_spending(frame, start, end)
    return {
        'daily': [d.to_dict() for d in daily],
        'thresholds': compute_thresholds(daily),
    }


def _resolve_budget(budget: BudgetSource) -> BudgetConfig:
    if isinstance(budget, BudgetConfigCache):
        return budget.get()
    return validate_budget_config(budget)


def budget_metrics(
    store: TransactionStore,
    budget: BudgetSource,
    month: Any,
    today: Optional[date] = None,
) -> Dict[str, Any]:
    """``{metrics, progress, breakdown}`` for a ``YYYY-MM`` month.

    The config is resolved and validated before any transaction is read.
    """
    target = parse_month(month, 'month')
    budget_config = _resolve_budget(budget)

    first, last = month_bounds(target)
    frame = mark_transfers(store.fetch_transactions(first, last))
    report = budget_report(budget_config, frame, target, today=today)
    logger.debug("Budget report for %s built from %s transactions", report.month, len(frame))
    return report.to_dict()


def kpis(store: TransactionStore, params: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    params = params or {}
    start = _optional_date(params, 'startDate')
    end = _optional_date(params, 'endDate')
    _check_range(start, end)
    category = params.get('category') or None

    frame = store.fetch_transactions(start, end, [category] if category else None)
    return SpendingAnalytics(mark_transfers(frame)).kpis()


def category_summary(store: TransactionStore, params: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
    params = params or {}
    start = _optional_date(params, 'startDate')
    end = _optional_date(params, 'endDate')
    _check_range(start, end)

    frame = store.fetch_transactions(start, end)
    return SpendingAnalytics(mark_transfers(frame)).category_summary()


def _count_param(params: Mapping[str, Any], name: str, default: int, maximum: int) -> int:
    raw = params.get(name)
    if raw is None or raw == '':
        return default
    try:
        value = int(str(raw).strip())
    except ValueError as exc:
        raise ValidationError(f"{name} must be an integer, got {raw!r}") from exc
    if not 1 <= value <= maximum:
        raise ValidationError(f"{name} must be between 1 and {maximum}, got {value}")
    return value


def dashboard_stats(
    store: TransactionStore,
    params: Optional[Mapping[str, Any]] = None,
    today: Optional[date] = None,
) -> Dict[str, Any]:
    """Current ``days`` window against the previous one (``days`` defaults to 30)."""
    days = _count_param(params or {}, 'days', 30, config.MAX_STATS_DAYS)
    today = today or date.today()
    current_range, previous_range = comparison_windows(days, today)

    frame = store.fetch_transactions(previous_range[0], current_range[1])
    return SpendingAnalytics(mark_transfers(frame)).dashboard_stats(days, today)


def spending_patterns(
    store: TransactionStore,
    params: Optional[Mapping[str, Any]] = None,
    today: Optional[date] = None,
) -> Dict[str, Any]:
    """Monthly averages and trends over the last ``months`` months (default 6)."""
    months = _count_param(params or {}, 'months', 6, config.MAX_STATS_MONTHS)
    today = today or date.today()
    first = parse_month(pattern_months(months, today)[0])

    frame = store.fetch_transactions(first, today)
    return SpendingAnalytics(mark_transfers(frame)).spending_patterns(months, today)


def import_csv(
    store: TransactionStore,
    source: Source,
    source_name: Optional[str] = None,
    skip_duplicates: bool = False,
    validate_only: bool = False,
) -> Dict[str, Any]:
    options = ImportOptions(skip_duplicates=skip_duplicates, validate_only=validate_only)
    result = ImportPipeline(store).import_csv(source, source_name=source_name, options=options)
    return result.to_dict()
