from datetime import date

import pandas as pd
import pytest

from spending_tracker.analytics import (
    SpendingAnalytics,
    comparison_windows,
    compute_category_summary,
    compute_kpis,
    pattern_months,
    percent_change,
    period_label,
)
from spending_tracker.errors import ValidationError
from spending_tracker.filters import TransactionFilter, apply_filters, mark_transfers, unique_categories


def _sample_df():
    return pd.DataFrame([
        {'date': '2025-01-01', 'amount': -50.00, 'description': 'Grocery Store', 'category': 'Food'},
        {'date': '2025-01-02', 'amount': 2500.00, 'description': 'Salary', 'category': 'Income'},
    ])


def _mixed_df():
    return pd.DataFrame([
        {'date': '2025-01-03', 'amount': -30.0, 'description': 'Cafe', 'category': 'Food'},
        {'date': '2025-01-04', 'amount': -70.0, 'description': 'Market', 'category': 'Food'},
        {'date': '2025-01-05', 'amount': -100.0, 'description': 'Fuel', 'category': 'Transport'},
        {'date': '2025-01-06', 'amount': 1000.0, 'description': 'Payroll', 'category': 'Income'},
        {'date': '2025-01-07', 'amount': 250.0, 'description': 'Refund', 'category': 'Food'},
        {'date': '2025-01-08', 'amount': -500.0, 'description': 'Transfer to savings', 'category': 'Transfers'},
        {'date': '2025-01-09', 'amount': -5.0, 'description': 'Snack', 'category': None},
    ])


def test_kpis_for_grocery_and_salary():
    kpis = compute_kpis(_sample_df())

    assert kpis['total_income'] == pytest.approx(2500.0)
    assert kpis['total_spending'] == pytest.approx(-50.0)
    assert kpis['net_amount'] == pytest.approx(2450.0)
    assert kpis['transaction_count'] == 2
    assert kpis['period'] == 'January 2025'


def test_kpis_empty_input():
    kpis = compute_kpis(pd.DataFrame(columns=['date', 'amount', 'description', 'category']))
    assert kpis == {
        'total_spending': 0.0,
        'total_income': 0.0,
        'net_amount': 0.0,
        'transaction_count': 0,
        'period': '',
    }


def test_kpis_ignore_transfers_in_sums():
    kpis = compute_kpis(mark_transfers(_mixed_df()))

    assert kpis['total_spending'] == pytest.approx(-205.0)
    assert kpis['total_income'] == pytest.approx(1250.0)
    assert kpis['net_amount'] == pytest.approx(1045.0)


def test_period_uses_first_row_in_input_order():
    df = _sample_df().iloc[::-1].reset_index(drop=True)
    df.loc[0, 'date'] = '2024-12-31'
    assert compute_kpis(df)['period'] == 'December 2024'
    assert period_label(None) == ''


def test_category_summary_splits_income_and_expense():
    rows = compute_category_summary(mark_transfers(_mixed_df()))
    by_key = {(r['category'], r['is_income']): r for r in rows}

    assert set(by_key) == {
        ('Food', False), ('Food', True), ('Transport', False), ('Income', True), ('Uncategorized', False)
    }
    assert by_key[('Food', False)]['total_amount'] == pytest.approx(-100.0)
    assert by_key[('Food', False)]['transaction_count'] == 2
    assert by_key[('Food', True)]['percentage'] == pytest.approx(20.0)
    assert by_key[('Income', True)]['percentage'] == pytest.approx(80.0)


def test_category_percentages_sum_to_100_per_group():
    rows = compute_category_summary(mark_transfers(_mixed_df()))
    income = sum(r['percentage'] for r in rows if r['is_income'])
    expense = sum(r['percentage'] for r in rows if not r['is_income'])

    assert income == pytest.approx(100.0, abs=0.01)
    assert expense == pytest.approx(100.0, abs=0.01)


def test_category_summary_sorted_by_magnitude_with_stable_ties():
    df = pd.DataFrame([
        {'date': '2025-01-01', 'amount': -40.0, 'description': 'a', 'category': 'B'},
        {'date': '2025-01-01', 'amount': -40.0, 'description': 'b', 'category': 'A'},
        {'date': '2025-01-01', 'amount': -90.0, 'description': 'c', 'category': 'C'},
    ])
    assert [r['category'] for r in compute_category_summary(df)] == ['C', 'B', 'A']


def test_category_summary_zero_totals():
    assert compute_category_summary(pd.DataFrame(columns=['date', 'amount', 'category'])) == []


def test_monthly_summary():
    df = pd.concat([_sample_df(), pd.DataFrame([
        {'date': '2025-02-10', 'amount': -400.0, 'description': 'Rent', 'category': 'Housing'},
    ])], ignore_index=True)
    monthly = SpendingAnalytics(df).monthly_summary()

    assert list(monthly['Month']) == ['2025-01', '2025-02']
    jan = monthly.iloc[0]
    assert jan['Income'] == pytest.approx(2500.0)
    assert jan['Expenses'] == pytest.approx(50.0)
    assert jan['SavingsRate'] == pytest.approx(98.0)
    assert monthly.iloc[1]['SavingsRate'] == 0.0


def test_mark_transfers_by_category_and_description():
    marked = mark_transfers(_mixed_df())
    assert marked['is_transfer'].tolist() == [False, False, False, False, False, True, False]

    df = pd.DataFrame([{'date': '2025-01-01', 'amount': -5.0, 'description': 'Online TRANSFER', 'category': 'Misc'}])
    assert mark_transfers(df)['is_transfer'].tolist() == [True]


def test_apply_filters_combines_criteria():
    df = _mixed_df()
    filt = TransactionFilter(categories=['Food'], amount_max=0)
    assert apply_filters(df, filt)['description'].tolist() == ['Cafe', 'Market']

    by_text = apply_filters(df, TransactionFilter(search_text='fuel'))
    assert by_text['description'].tolist() == ['Fuel']

    by_date = apply_filters(df, TransactionFilter(
        start_date=pd.Timestamp('2025-01-05').date(), end_date=pd.Timestamp('2025-01-06').date()
    ))
    assert by_date['description'].tolist() == ['Fuel', 'Payroll']


def test_unique_categories_fills_missing():
    assert unique_categories(_mixed_df()) == ['Food', 'Income', 'Transfers', 'Transport', 'Uncategorized']


def _two_months_df():
    return mark_transfers(pd.DataFrame([
        {'date': '2025-03-01', 'amount': -999.0, 'description': 'Old groceries', 'category': 'Food'},
        {'date': '2025-03-05', 'amount': 2000.0, 'description': 'Payroll', 'category': 'Income'},
        {'date': '2025-03-10', 'amount': -400.0, 'description': 'Market', 'category': 'Food'},
        {'date': '2025-04-02', 'amount': 2000.0, 'description': 'Payroll', 'category': 'Income'},
        {'date': '2025-04-03', 'amount': -300.0, 'description': 'Market', 'category': 'Food'},
        {'date': '2025-04-05', 'amount': -1000.0, 'description': 'Rent', 'category': 'Housing'},
        {'date': '2025-04-06', 'amount': -20.0, 'description': 'Cinema', 'category': 'Fun'},
        {'date': '2025-04-07', 'amount': -500.0, 'description': 'Transfer to savings', 'category': 'Transfers'},
        {'date': '2025-04-08', 'amount': -30.0, 'description': 'Bus', 'category': 'Transport'},
        {'date': '2025-04-09', 'amount': -40.0, 'description': 'Flowers', 'category': 'Gifts'},
        {'date': '2025-04-10', 'amount': -10.0, 'description': 'Paperback', 'category': 'Books'},
        {'date': '2025-05-01', 'amount': -77.0, 'description': 'Market', 'category': 'Food'},
    ]))


def test_comparison_windows_do_not_overlap():
    current, previous = comparison_windows(30, date(2025, 4, 30))
    assert current == (date(2025, 4, 1), date(2025, 4, 30))
    assert previous == (date(2025, 3, 2), date(2025, 3, 31))

    with pytest.raises(ValidationError):
        comparison_windows(0, date(2025, 4, 30))


@pytest.mark.parametrize('old, new, expected', [
    (400.0, 1400.0, 250.0),
    (1600.0, 600.0, -62.5),
    (-100.0, -50.0, 50.0),
    (0.0, 30.0, 100.0),
    (0.0, -30.0, 0.0),
])
def test_percent_change(old, new, expected):
    assert percent_change(old, new) == pytest.approx(expected)


def test_dashboard_stats_compares_with_previous_period():
    stats = SpendingAnalytics(_two_months_df()).dashboard_stats(30, today=date(2025, 4, 30))

    current = stats['current_period']
    assert current['start_date'] == '2025-04-01'
    assert current['income'] == pytest.approx(2000.0)
    assert current['expenses'] == pytest.approx(1400.0)
    assert current['net_amount'] == pytest.approx(600.0)
    assert current['count'] == 8

    previous = stats['previous_period']
    assert previous['expenses'] == pytest.approx(400.0)
    assert previous['count'] == 2

    assert stats['change_percent'] == {
        'income': pytest.approx(0.0),
        'expenses': pytest.approx(250.0),
        'net_amount': pytest.approx(-62.5),
    }
    assert stats['recent_trend'] == 'down'


def test_dashboard_top_categories_are_capped_at_five():
    stats = SpendingAnalytics(_two_months_df()).dashboard_stats(30, today=date(2025, 4, 30))
    top = stats['top_categories']

    assert [c['category'] for c in top] == ['Housing', 'Food', 'Gifts', 'Transport', 'Fun']
    assert top[0]['amount'] == pytest.approx(1000.0)
    assert top[0]['percentage'] == pytest.approx(1000.0 / 1400.0 * 100)
    assert top[1]['avg_amount'] == pytest.approx(300.0)


def _six_months_df():
    return mark_transfers(pd.DataFrame([
        {'date': '2024-12-20', 'amount': -999.0, 'description': 'Old groceries', 'category': 'Food'},
        {'date': '2025-01-05', 'amount': 1000.0, 'description': 'Payroll', 'category': 'Income'},
        {'date': '2025-01-10', 'amount': -100.0, 'description': 'Market', 'category': 'Food'},
        {'date': '2025-02-10', 'amount': -100.0, 'description': 'Market', 'category': 'Food'},
        {'date': '2025-02-12', 'amount': -50.0, 'description': 'Cinema', 'category': 'Fun'},
        {'date': '2025-03-10', 'amount': -200.0, 'description': 'Market', 'category': 'Food'},
        {'date': '2025-03-12', 'amount': -10.0, 'description': 'Arcade', 'category': 'Fun'},
        {'date': '2025-04-10', 'amount': -300.0, 'description': 'Market', 'category': 'Food'},
        {'date': '2025-04-11', 'amount': -500.0, 'description': 'Transfer to savings', 'category': 'Transfers'},
        {'date': '2025-04-20', 'amount': -60.0, 'description': 'Market', 'category': 'Food'},
    ]))


def test_pattern_months():
    assert pattern_months(4, date(2025, 4, 15)) == ['2025-01', '2025-02', '2025-03', '2025-04']
    assert pattern_months(2, date(2025, 1, 31)) == ['2024-12', '2025-01']


def test_spending_patterns():
    patterns = SpendingAnalytics(_six_months_df()).spending_patterns(4, today=date(2025, 4, 15))

    assert patterns['monthly_averages'] == {
        'income': pytest.approx(250.0),
        'expenses': pytest.approx(190.0),
        'net_amount': pytest.approx(60.0),
    }

    food, fun = patterns['category_trends']
    assert food['category'] == 'Food'
    assert food['trend'] == 'increasing'
    assert food['change_percent'] == pytest.approx(150.0)
    assert food['monthly_average'] == pytest.approx(175.0)
    assert fun['trend'] == 'decreasing'
    assert fun['change_percent'] == pytest.approx(-80.0)

    seasonal = patterns['seasonal_patterns']
    assert seasonal['highest_spending_month'] == '2025-04'
    assert seasonal['lowest_spending_month'] == '2025-01'
    assert seasonal['volatility'] == pytest.approx(5550 ** 0.5)


def test_spending_patterns_without_data():
    empty = pd.DataFrame(columns=['date', 'amount', 'description', 'category'])
    patterns = SpendingAnalytics(empty).spending_patterns(3, today=date(2025, 4, 15))

    assert patterns['months'] == ['2025-02', '2025-03', '2025-04']
    assert patterns['monthly_averages']['expenses'] == 0.0
    assert patterns['category_trends'] == []
    assert patterns['seasonal_patterns'] == {
        'highest_spending_month': None,
        'lowest_spending_month': None,
        'volatility': 0.0,
    }
