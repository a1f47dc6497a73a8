from datetime import date

import pandas as pd
import pytest

from spending_tracker.analytics import compute_kpis
from spending_tracker.errors import DateFormatError, ValidationError
from spending_tracker.filters import mark_transfers
from spending_tracker.heatmap import (
    calendar_cells,
    compute_thresholds,
    daily_spending,
    intensity,
    intensity_bucket,
    transactions_for_day,
)
from spending_tracker.models import DailySpending


def _sample_df():
    return pd.DataFrame([
        {'date': '2025-03-01', 'amount': -20.0, 'description': 'Bakery', 'category': 'Food'},
        {'date': '2025-03-01', 'amount': -15.5, 'description': 'Bus', 'category': 'Transport'},
        {'date': '2025-03-03', 'amount': -100.0, 'description': 'Shoes', 'category': 'Shopping'},
        {'date': '2025-03-03', 'amount': 1800.0, 'description': 'Payroll', 'category': 'Income'},
        {'date': '2025-03-04', 'amount': -300.0, 'description': 'Transfer to savings', 'category': 'Transfers'},
        {'date': '2025-03-05', 'amount': -4.25, 'description': 'Gum', 'category': None},
        {'date': '2025-04-01', 'amount': -60.0, 'description': 'Outside range', 'category': 'Food'},
    ])


def test_daily_spending_covers_every_day():
    daily = daily_spending(mark_transfers(_sample_df()), '2025-03-01', '2025-03-07')

    assert [d.date for d in daily] == [date(2025, 3, day) for day in range(1, 8)]
    assert daily[0].amount == pytest.approx(35.5)
    assert daily[0].transaction_count == 2
    assert daily[0].categories == {'Food': 20.0, 'Transport': 15.5}
    assert daily[1].amount == 0.0
    assert daily[3].amount == 0.0  # transfer only
    assert daily[4].categories == {'Uncategorized': 4.25}


def test_category_amounts_add_up_to_day_amount():
    for day in daily_spending(mark_transfers(_sample_df()), '2025-03-01', '2025-03-31'):
        assert sum(day.categories.values()) == pytest.approx(day.amount, abs=0.01)


def test_daily_total_matches_kpi_spending():
    df = mark_transfers(_sample_df())
    in_range = df[pd.to_datetime(df['date']).dt.month == 3]

    daily = daily_spending(df, '2025-03-01', '2025-03-31')
    kpis = compute_kpis(in_range)

    assert sum(d.amount for d in daily) == pytest.approx(abs(kpis['total_spending']))


def test_daily_spending_rejects_bad_ranges():
    with pytest.raises(DateFormatError):
        daily_spending(_sample_df(), '2025/03/01', '2025-03-31')
    with pytest.raises(ValidationError):
        daily_spending(_sample_df(), '2025-03-31', '2025-03-01')


def test_thresholds_are_ordered():
    daily = [DailySpending(date=date(2025, 3, i + 1), amount=a) for i, a in enumerate([5, 0, 12.5, 40, 7, 90, 3])]
    t = compute_thresholds(daily)

    assert t['min'] == 3
    assert t['max'] == 90
    assert t['min'] <= t['p25'] <= t['p50'] <= t['p75'] <= t['p90'] <= t['max']
    assert t['median'] == t['p50'] == pytest.approx(9.75)


def test_thresholds_single_value_and_empty():
    single = compute_thresholds([DailySpending(date=date(2025, 3, 1), amount=42.0)])
    assert set(single.values()) == {42.0}

    empty = compute_thresholds([DailySpending(date=date(2025, 3, 1))])
    assert set(empty.values()) == {0.0}


def test_intensity_and_buckets():
    thresholds = {'max': 200.0}

    assert intensity(0.0, thresholds) == 0.0
    assert intensity(50.0, thresholds) == pytest.approx(0.25)
    assert intensity(DailySpending(date=date(2025, 3, 1), amount=400.0), thresholds) == 1.0

    assert intensity_bucket(0.0) == 'empty'
    assert intensity_bucket(0.25) == 'low'
    assert intensity_bucket(0.33) == 'low'
    assert intensity_bucket(0.5) == 'mid'
    assert intensity_bucket(0.66) == 'mid'
    assert intensity_bucket(0.9) == 'high'


def test_transactions_for_day():
    rows = transactions_for_day(_sample_df(), '2025-03-03')
    assert rows['description'].tolist() == ['Shoes', 'Payroll']


def test_month_grid_starts_on_sunday():
    df = mark_transfers(_sample_df())
    daily = daily_spending(df, '2025-03-01', '2025-03-31')
    cells = calendar_cells('2025-03-01', '2025-03-31', daily, today=date(2025, 3, 3))

    # March 2025 starts on a Saturday and ends on a Monday
    assert cells[0]['date'] == '2025-02-23'
    assert cells[-1]['date'] == '2025-04-05'
    assert len(cells) % 7 == 0
    assert not cells[0]['is_current_month']

    by_date = {c['date']: c for c in cells}
    assert by_date['2025-03-03']['is_today']
    assert by_date['2025-03-03']['bucket'] == 'high'
    assert by_date['2025-03-02']['bucket'] == 'empty'
    assert by_date['2025-03-05']['bucket'] == 'low'


def test_range_view_and_unknown_view():
    daily = daily_spending(_sample_df(), '2025-03-02', '2025-03-04')
    cells = calendar_cells('2025-03-02', '2025-03-04', daily, view='range', today=date(2025, 1, 1))
    assert [c['date'] for c in cells] == ['2025-03-02', '2025-03-03', '2025-03-04']

    with pytest.raises(ValidationError):
        calendar_cells('2025-03-02', '2025-03-04', daily, view='week')
