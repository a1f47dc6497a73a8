"""Budget-vs-actual tracking for a single month.

The budget configuration is validated before any transaction data is
looked at. Metrics, progress indicators and the expense breakdown are
recomputed per request and never persisted.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import date
from typing import Any, Dict, List, Optional, Sequence, Set, Union

import pandas as pd
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .dates import days_in_month, month_bounds, parse_month
from .errors import ConfigValidationError
from .models import Transaction, transactions_frame

TransactionsInput = Union[pd.DataFrame, Sequence[Transaction]]


def format_label(key: str) -> str:
    """``amazon_prime`` -> ``Amazon Prime``."""
    return ' '.join(word[:1].upper() + word[1:] for word in key.split('_') if word)


# ---------------------------------------------------------------------------
# Configuration schema
# ---------------------------------------------------------------------------


class LineItem(BaseModel):
    model_config = ConfigDict(extra='forbid', frozen=True)

    label: str = Field(min_length=1)
    amount: float = Field(default=0.0, ge=0)
    # Transaction category this line item is paid under; defaults to the label
    category: Optional[str] = None

    @property
    def match_category(self) -> str:
        return (self.category or self.label).strip().lower()


class FixedExpenseItem(LineItem):
    children: List[FixedExpenseItem] = Field(default_factory=list)

    @property
    def total(self) -> float:
        if self.children:
            return sum(child.total for child in self.children)
        return self.amount


FixedExpenseItem.model_rebuild()


class InterestPatterns(BaseModel):
    model_config = ConfigDict(extra='forbid', frozen=True)

    categories: List[str] = Field(default_factory=list)
    keywords: List[str] = Field(default_factory=list)


class BudgetConfig(BaseModel):
    model_config = ConfigDict(extra='forbid', frozen=True)

    forecasted_income: float = Field(gt=0)
    day_to_day_budget: float = Field(ge=0)
    forecasted_savings: Optional[float] = None
    forecasted_interest: float = Field(default=0.0, ge=0)
    fixed_expenses: List[FixedExpenseItem] = Field(default_factory=list)
    variable_subscriptions: List[LineItem] = Field(default_factory=list)
    interest_patterns: InterestPatterns = Field(default_factory=InterestPatterns)

    @field_validator('variable_subscriptions', mode='before')
    @classmethod
    def _subscriptions_from_mapping(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return [{'label': format_label(str(k)), 'amount': v} for k, v in value.items()]
        return value

    @property
    def fixed_expenses_total(self) -> float:
        return sum(item.total for item in self.fixed_expenses)

    @property
    def variable_subscriptions_total(self) -> float:
        return sum(item.amount for item in self.variable_subscriptions)

    def committed_categories(self) -> Set[str]:
        """Lower-cased categories paid from fixed expenses or subscriptions."""
        found: Set[str] = set()

        def walk(items: Sequence[LineItem]) -> None:
            for item in items:
                found.add(item.match_category)
                walk(getattr(item, 'children', []))

        walk(self.fixed_expenses)
        walk(self.variable_subscriptions)
        return found


def validate_budget_config(data: Union[BudgetConfig, Dict[str, Any]]) -> BudgetConfig:
    """Return a validated config, raising ConfigValidationError on schema errors."""
    if isinstance(data, BudgetConfig):
        return data
    if not isinstance(data, dict):
        raise ConfigValidationError(
            f"Budget config must be a mapping, got {type(data).__name__}"
        )
    try:
        return BudgetConfig.model_validate(data)
    except PydanticValidationError as exc:
        details = [
            {'path': '.'.join(str(p) for p in err['loc']), 'message': err['msg']}
            for err in exc.errors()
        ]
        summary = '; '.join(f"{d['path']}: {d['message']}" for d in details)
        raise ConfigValidationError(f"Invalid budget config: {summary}", details) from exc


# ---------------------------------------------------------------------------
# Derived results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BudgetMetrics:
    forecasted_income: float
    actual_income_mtd: float
    day_to_day_budget: float
    budget_spent: float
    budget_remaining: float
    fixed_expenses_total: float
    variable_subscriptions_total: float
    forecasted_savings: float
    actual_savings_mtd: float
    forecasted_interest: float
    interest_paid_mtd: float
    net: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ProgressIndicators:
    days_elapsed: int
    total_days: int
    month_progress_percent: float
    budget_usage_percent: float
    is_over_budget: bool
    status_color: str
    actual_burn_rate: float
    target_burn_rate: float
    burn_rate_variance: float
    burn_rate_variance_percent: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class BudgetReport:
    month: str
    reference_date: date
    is_current_month: bool
    metrics: BudgetMetrics
    progress: ProgressIndicators
    breakdown: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'month': self.month,
            'reference_date': self.reference_date.isoformat(),
            'is_current_month': self.is_current_month,
            'metrics': self.metrics.to_dict(),
            'progress': self.progress.to_dict(),
            'breakdown': self.breakdown,
        }


# ---------------------------------------------------------------------------
# Month selection
# ---------------------------------------------------------------------------


def is_current_month(target_month: date, today: date) -> bool:
    return (target_month.year, target_month.month) == (today.year, today.month)


def reference_date(target_month: date, today: date) -> date:
    """The day progress is measured at for ``target_month``.

    Today for the current month, the last day for a completed month and
    the first day for a future month.
    """
    first, last = month_bounds(target_month)
    if is_current_month(target_month, today):
        return today
    if first < today.replace(day=1):
        return last
    return first


def filter_month(transactions: TransactionsInput, target_month: date) -> pd.DataFrame:
    df = _as_frame(transactions)
    if df.empty:
        return df.copy()
    first, last = month_bounds(target_month)
    days = pd.to_datetime(df['date']).dt.date
    return df[(days >= first) & (days <= last)].copy()


def _as_frame(transactions: TransactionsInput) -> pd.DataFrame:
    if isinstance(transactions, pd.DataFrame):
        return transactions
    return transactions_frame(list(transactions))


# ---------------------------------------------------------------------------
# Calculations
# ---------------------------------------------------------------------------


def calculate_budget_metrics(
    config: Union[BudgetConfig, Dict[str, Any]],
    month_transactions: TransactionsInput,
    is_current: bool = True,
) -> BudgetMetrics:
    """Budget metrics for one month of transactions.

    ``is_current`` switches the income used for ``net``: the forecast for
    the month in progress, the realized income for completed months.
    """
    config = validate_budget_config(config)
    df = _as_frame(month_transactions).copy()

    if df.empty:
        amounts = pd.Series(dtype=float)
        categories = pd.Series(dtype=str)
        descriptions = pd.Series(dtype=str)
    else:
        if 'is_transfer' in df.columns:
            df = df[~df['is_transfer'].fillna(False).astype(bool)]
        amounts = pd.to_numeric(df['amount'], errors='coerce').fillna(0.0)
        categories = df['category'].fillna('').astype(str).str.strip().str.lower()
        descriptions = df['description'].fillna('').astype(str).str.lower()

    actual_income = float(amounts[amounts > 0].sum())
    is_expense = amounts < 0
    committed = categories.isin(config.committed_categories())
    # interest charges stay in budget_spent; interest_paid_mtd only reports them
    budget_spent = abs(float(amounts[is_expense & ~committed].sum()))

    patterns = config.interest_patterns
    interest_categories = {c.strip().lower() for c in patterns.categories}
    is_interest = categories.isin(interest_categories)
    for keyword in patterns.keywords:
        if keyword:
            is_interest |= descriptions.str.contains(keyword.lower(), regex=False)
    interest_paid = abs(float(amounts[is_expense & is_interest].sum()))

    fixed_total = config.fixed_expenses_total
    subscriptions_total = config.variable_subscriptions_total
    forecasted_savings = config.forecasted_savings
    if forecasted_savings is None:
        forecasted_savings = (
            config.forecasted_income - fixed_total - subscriptions_total - config.day_to_day_budget
        )

    income_for_net = config.forecasted_income if is_current else actual_income
    return BudgetMetrics(
        forecasted_income=config.forecasted_income,
        actual_income_mtd=actual_income,
        day_to_day_budget=config.day_to_day_budget,
        budget_spent=budget_spent,
        budget_remaining=config.day_to_day_budget - budget_spent,
        fixed_expenses_total=fixed_total,
        variable_subscriptions_total=subscriptions_total,
        forecasted_savings=forecasted_savings,
        actual_savings_mtd=actual_income - fixed_total - subscriptions_total - budget_spent,
        forecasted_interest=config.forecasted_interest,
        interest_paid_mtd=interest_paid,
        net=income_for_net - fixed_total - budget_spent,
    )


def status_color(budget_usage_percent: float, month_progress_percent: float, over_budget: bool) -> str:
    if over_budget or budget_usage_percent > 100:
        return 'red'
    if budget_usage_percent <= month_progress_percent:
        return 'green'
    return 'yellow'


def calculate_progress_indicators(metrics: BudgetMetrics, reference: date) -> ProgressIndicators:
    days_elapsed = reference.day
    total_days = days_in_month(reference)
    month_progress = days_elapsed / total_days * 100

    budget = metrics.day_to_day_budget
    spent = metrics.budget_spent
    usage = spent / budget * 100 if budget > 0 else 0.0
    over_budget = spent > budget

    actual_burn = spent / days_elapsed if days_elapsed > 0 else spent
    target_burn = budget / total_days
    variance = actual_burn - target_burn

    return ProgressIndicators(
        days_elapsed=days_elapsed,
        total_days=total_days,
        month_progress_percent=month_progress,
        budget_usage_percent=usage,
        is_over_budget=over_budget,
        status_color=status_color(usage, month_progress, over_budget),
        actual_burn_rate=actual_burn,
        target_burn_rate=target_burn,
        burn_rate_variance=variance,
        burn_rate_variance_percent=variance / target_burn * 100 if target_burn > 0 else 0.0,
    )


def _breakdown_item(item: LineItem) -> Dict[str, Any]:
    children = getattr(item, 'children', None)
    entry: Dict[str, Any] = {'label': item.label, 'amount': getattr(item, 'total', item.amount)}
    if children:
        entry['children'] = [_breakdown_item(child) for child in children]
    return entry


def derive_expense_breakdown(config: Union[BudgetConfig, Dict[str, Any]]) -> Dict[str, Any]:
    """Hierarchical view of the configured fixed expenses and subscriptions."""
    config = validate_budget_config(config)
    return {
        'fixed_expenses': {
            'total': config.fixed_expenses_total,
            'items': [_breakdown_item(item) for item in config.fixed_expenses],
        },
        'variable_subscriptions': {
            'total': config.variable_subscriptions_total,
            'items': [_breakdown_item(item) for item in config.variable_subscriptions],
        },
    }


def budget_report(
    config: Union[BudgetConfig, Dict[str, Any]],
    transactions: TransactionsInput,
    month: Union[str, date],
    today: Optional[date] = None,
) -> BudgetReport:
    """Metrics, progress and breakdown for ``month`` (``YYYY-MM`` or a date)."""
    config = validate_budget_config(config)
    target = parse_month(month) if isinstance(month, str) else month.replace(day=1)
    today = today or date.today()

    current = is_current_month(target, today)
    reference = reference_date(target, today)
    metrics = calculate_budget_metrics(config, filter_month(transactions, target), current)
    return BudgetReport(
        month=target.strftime('%Y-%m'),
        reference_date=reference,
        is_current_month=current,
        metrics=metrics,
        progress=calculate_progress_indicators(metrics, reference),
        breakdown=derive_expense_breakdown(config),
    )
