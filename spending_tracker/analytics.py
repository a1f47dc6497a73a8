"""KPI and category aggregation over an arbitrary transaction set.

Everything here is a pure function of the DataFrame (or list of
:class:`~spending_tracker.models.Transaction`) it is given, plus the
reference day for the dashboard and pattern views. Rows flagged
``is_transfer`` are left out of every sum.
"""

from __future__ import annotations

from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import pandas as pd

from .errors import ValidationError
from .models import Transaction, transactions_frame

TransactionsInput = Union[pd.DataFrame, Sequence[Transaction]]

# Percent change beyond which a comparison counts as a trend
TREND_THRESHOLD = 5.0
TOP_CATEGORY_LIMIT = 5


def _as_frame(transactions: TransactionsInput) -> pd.DataFrame:
    if isinstance(transactions, pd.DataFrame):
        return transactions
    return transactions_frame(list(transactions))


def period_label(value: Any) -> str:
    """Human label for the month containing ``value``, e.g. ``January 2025``."""
    if value is None or pd.isna(value):
        return ''
    return pd.Timestamp(value).strftime('%B %Y')


def percent_change(old: float, new: float) -> float:
    """Change from ``old`` to ``new`` in percent.

    A zero baseline reports 100 for any increase and 0 otherwise.
    """
    if old == 0:
        return 100.0 if new > 0 else 0.0
    return (new - old) / abs(old) * 100


def trend_direction(change: float, rising: str = 'up', falling: str = 'down') -> str:
    if change > TREND_THRESHOLD:
        return rising
    if change < -TREND_THRESHOLD:
        return falling
    return 'stable'


def comparison_windows(days: int, today: date) -> Tuple[Tuple[date, date], Tuple[date, date]]:
    """The ``days`` days ending on ``today`` and the ``days`` days before them."""
    if days < 1:
        raise ValidationError(f"days must be at least 1, got {days}")
    start = today - timedelta(days=days - 1)
    previous_end = start - timedelta(days=1)
    return (start, today), (previous_end - timedelta(days=days - 1), previous_end)


def pattern_months(months: int, today: date) -> List[str]:
    """``YYYY-MM`` labels of the last ``months`` months, ending with today's."""
    if months < 1:
        raise ValidationError(f"months must be at least 1, got {months}")
    periods = pd.period_range(end=pd.Timestamp(today).to_period('M'), periods=months, freq='M')
    return [str(p) for p in periods]


class SpendingAnalytics:
    """Aggregations over a prepared copy of a transaction set."""

    def __init__(self, transactions: TransactionsInput):
        self.data = _as_frame(transactions).copy()
        self._prepare_data()

    def _prepare_data(self) -> None:
        if 'date' in self.data.columns:
            self.data['date'] = pd.to_datetime(self.data['date'])
        else:
            self.data['date'] = pd.Series(index=self.data.index, dtype='datetime64[ns]')
        self.data['amount'] = pd.to_numeric(self.data.get('amount'), errors='coerce').fillna(0.0)
        self.data['category'] = (
            self.data.get('category', pd.Series(index=self.data.index, dtype=object))
            .fillna('Uncategorized')
            .astype(str)
        )
        if 'is_transfer' in self.data.columns:
            self.data['is_transfer'] = self.data['is_transfer'].fillna(False).astype(bool)
        else:
            self.data['is_transfer'] = False

    def _counted_rows(self) -> pd.DataFrame:
        return self.data[~self.data['is_transfer']]

    def _income_rows(self) -> pd.DataFrame:
        counted = self._counted_rows()
        return counted[counted['amount'] > 0]

    def _expense_rows(self) -> pd.DataFrame:
        counted = self._counted_rows()
        return counted[counted['amount'] < 0]

    def kpis(self) -> Dict[str, Any]:
        if self.data.empty:
            return {
                'total_spending': 0.0,
                'total_income': 0.0,
                'net_amount': 0.0,
                'transaction_count': 0,
                'period': '',
            }
        total_income = float(self._income_rows()['amount'].sum())
        total_spending = float(self._expense_rows()['amount'].sum())
        return {
            'total_spending': total_spending,
            'total_income': total_income,
            'net_amount': total_income + total_spending,
            'transaction_count': int(len(self.data)),
            'period': period_label(self.data['date'].iloc[0]),
        }

    def category_summary(self) -> List[Dict[str, Any]]:
        counted = self._counted_rows()
        if counted.empty:
            return []

        total_income = float(counted.loc[counted['amount'] >= 0, 'amount'].sum())
        total_expenses = abs(float(counted.loc[counted['amount'] < 0, 'amount'].sum()))

        grouped = (
            counted.assign(is_income=counted['amount'] >= 0)
            .groupby(['category', 'is_income'], sort=False)['amount']
            .agg(['sum', 'count'])
        )

        rows: List[Dict[str, Any]] = []
        for (category, is_income), values in grouped.iterrows():
            amount = float(values['sum'])
            grand_total = total_income if is_income else total_expenses
            rows.append({
                'category': category,
                'total_amount': amount,
                'transaction_count': int(values['count']),
                'percentage': abs(amount) / grand_total * 100 if grand_total else 0.0,
                'is_income': bool(is_income),
            })

        # sorted() is stable, so ties keep first-appearance order
        return sorted(rows, key=lambda r: abs(r['total_amount']), reverse=True)

    def monthly_summary(self) -> pd.DataFrame:
        """Income, expenses, net and savings rate per calendar month."""
        counted = self._counted_rows()
        if counted.empty:
            return pd.DataFrame(columns=['Month', 'Income', 'Expenses', 'Net', 'SavingsRate'])
        month = counted['date'].dt.to_period('M').astype(str)
        frame = pd.DataFrame({
            'Month': month,
            'Income': counted['amount'].where(counted['amount'] > 0, 0.0),
            'Expenses': (-counted['amount']).where(counted['amount'] < 0, 0.0),
        })
        df = frame.groupby('Month', as_index=False).sum().sort_values('Month')
        df['Net'] = df['Income'] - df['Expenses']
        df['SavingsRate'] = df.apply(
            lambda r: (r['Net'] / r['Income'] * 100) if r['Income'] > 0 else 0.0, axis=1
        )
        return df.reset_index(drop=True)

    def _between(self, start: date, end: date) -> pd.DataFrame:
        dates = self.data['date']
        return self.data[(dates >= pd.Timestamp(start)) & (dates <= pd.Timestamp(end))]

    def _window_totals(self, start: date, end: date) -> Dict[str, Any]:
        window = self._between(start, end)
        counted = window[~window['is_transfer']]
        income = float(counted.loc[counted['amount'] > 0, 'amount'].sum())
        expenses = abs(float(counted.loc[counted['amount'] < 0, 'amount'].sum()))
        return {
            'start_date': start.isoformat(),
            'end_date': end.isoformat(),
            'income': income,
            'expenses': expenses,
            'net_amount': income - expenses,
            'count': int(len(window)),
        }

    def _top_expense_categories(self, start: date, end: date, limit: int) -> List[Dict[str, Any]]:
        window = self._between(start, end)
        expenses = window[~window['is_transfer'] & (window['amount'] < 0)]
        if expenses.empty:
            return []

        grouped = (
            expenses.assign(spent=-expenses['amount'])
            .groupby('category', sort=False)['spent']
            .agg(['sum', 'count'])
        )
        total = float(grouped['sum'].sum())
        top = grouped.sort_values('sum', ascending=False, kind='stable').head(limit)
        return [
            {
                'category': category,
                'amount': float(values['sum']),
                'count': int(values['count']),
                'percentage': float(values['sum']) / total * 100 if total else 0.0,
                'avg_amount': float(values['sum']) / int(values['count']),
            }
            for category, values in top.iterrows()
        ]

    def dashboard_stats(self, days: int = 30, today: Optional[date] = None) -> Dict[str, Any]:
        """Compare the last ``days`` days with the ``days`` days before them.

        Returns both period totals, the percent change of income, expenses
        and net amount, the top expense categories of the current period and
        the overall direction (``up``/``down``/``stable``) of the net amount.
        """
        current_range, previous_range = comparison_windows(days, today or date.today())
        current = self._window_totals(*current_range)
        previous = self._window_totals(*previous_range)
        change = {
            key: percent_change(previous[key], current[key])
            for key in ('income', 'expenses', 'net_amount')
        }
        return {
            'current_period': current,
            'previous_period': previous,
            'change_percent': change,
            'top_categories': self._top_expense_categories(*current_range, limit=TOP_CATEGORY_LIMIT),
            'recent_trend': trend_direction(change['net_amount']),
        }

    def spending_patterns(self, months: int = 6, today: Optional[date] = None) -> Dict[str, Any]:
        """Monthly averages, per-category trends and the spread of monthly spending.

        The window is the last ``months`` calendar months up to ``today``.
        Months without transactions count as zero. A category's trend compares
        its average over the later half of the window with the earlier half.
        """
        today = today or date.today()
        labels = pattern_months(months, today)
        window = self._between(date.fromisoformat(f'{labels[0]}-01'), today)
        counted = window[~window['is_transfer']]
        month = counted['date'].dt.strftime('%Y-%m')

        income = counted['amount'].where(counted['amount'] > 0, 0.0).groupby(month).sum()
        spent = (-counted['amount']).where(counted['amount'] < 0, 0.0).groupby(month).sum()
        income = income.reindex(labels, fill_value=0.0)
        spent = spent.reindex(labels, fill_value=0.0)

        total_income = float(income.sum())
        total_spent = float(spent.sum())
        monthly_averages = {
            'income': total_income / months,
            'expenses': total_spent / months,
            'net_amount': (total_income - total_spent) / months,
        }

        category_trends: List[Dict[str, Any]] = []
        expenses = counted[counted['amount'] < 0]
        if not expenses.empty:
            table = (
                expenses.assign(month=month.loc[expenses.index], spent=-expenses['amount'])
                .pivot_table(index='category', columns='month', values='spent', aggfunc='sum', fill_value=0.0)
                .reindex(columns=labels, fill_value=0.0)
            )
            half = months // 2
            for category, row in table.iterrows():
                values = [float(v) for v in row]
                if half:
                    earlier = sum(values[:half]) / half
                    later = sum(values[half:]) / (months - half)
                    change = percent_change(earlier, later)
                else:
                    change = 0.0
                category_trends.append({
                    'category': category,
                    'trend': trend_direction(change, 'increasing', 'decreasing'),
                    'change_percent': change,
                    'monthly_average': sum(values) / months,
                })
            category_trends.sort(key=lambda t: t['monthly_average'], reverse=True)

        if counted.empty:
            highest = lowest = None
            volatility = 0.0
        else:
            highest = spent.idxmax()
            lowest = spent.idxmin()
            volatility = float(spent.std(ddof=0))

        return {
            'months': labels,
            'monthly_averages': monthly_averages,
            'category_trends': category_trends,
            'seasonal_patterns': {
                'highest_spending_month': highest,
                'lowest_spending_month': lowest,
                'volatility': volatility,
            },
        }


def compute_kpis(transactions: TransactionsInput) -> Dict[str, Any]:
    """Totals, net amount, count and period label for ``transactions``."""
    return SpendingAnalytics(transactions).kpis()


def compute_category_summary(transactions: TransactionsInput) -> List[Dict[str, Any]]:
    """Per-category income/expense rows with their share of the grand totals."""
    return SpendingAnalytics(transactions).category_summary()
