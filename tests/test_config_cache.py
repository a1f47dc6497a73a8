import json

import pytest

from spending_tracker.config_cache import BudgetConfigCache, load_budget_config
from spending_tracker.errors import ConfigValidationError

CONFIG = {
    'forecasted_income': 6000.0,
    'day_to_day_budget': 2000.0,
    'fixed_expenses': [{'label': 'Rent', 'amount': 1800.0}],
    'variable_subscriptions': {'netflix': 15.49},
}


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def _write(path, data):
    path.write_text(json.dumps(data), encoding='utf-8')
    return path


def test_load_budget_config(tmp_path):
    config = load_budget_config(_write(tmp_path / 'budget.json', CONFIG))
    assert config.day_to_day_budget == 2000.0
    assert config.variable_subscriptions[0].label == 'Netflix'


def test_load_budget_config_errors(tmp_path):
    with pytest.raises(ConfigValidationError):
        load_budget_config(tmp_path / 'missing.json')

    broken = tmp_path / 'broken.json'
    broken.write_text('{not json', encoding='utf-8')
    with pytest.raises(ConfigValidationError):
        load_budget_config(broken)

    with pytest.raises(ConfigValidationError):
        load_budget_config(_write(tmp_path / 'invalid.json', {'forecasted_income': 'soon'}))


def test_cache_reuses_value_until_ttl_expires(tmp_path):
    path = _write(tmp_path / 'budget.json', CONFIG)
    clock = FakeClock()
    cache = BudgetConfigCache(path, ttl=300, clock=clock)

    first = cache.get()
    _write(path, dict(CONFIG, day_to_day_budget=2500.0))

    clock.now += 299
    assert cache.get() is first
    assert cache.age == pytest.approx(299)

    clock.now += 1
    assert cache.get().day_to_day_budget == 2500.0
    assert cache.age == 0


def test_invalidate_forces_reload(tmp_path):
    calls = []

    def loader(path):
        calls.append(path)
        return load_budget_config(path)

    path = _write(tmp_path / 'budget.json', CONFIG)
    cache = BudgetConfigCache(path, clock=FakeClock(), loader=loader)

    cache.get()
    cache.get()
    assert len(calls) == 1

    cache.invalidate()
    assert cache.age is None
    cache.get()
    assert len(calls) == 2


def test_failed_reload_keeps_previous_entry(tmp_path):
    path = _write(tmp_path / 'budget.json', CONFIG)
    clock = FakeClock()
    cache = BudgetConfigCache(path, ttl=10, clock=clock)
    first = cache.get()

    path.write_text('[]', encoding='utf-8')
    clock.now += 11
    with pytest.raises(ConfigValidationError):
        cache.get()

    path.write_text(json.dumps(CONFIG), encoding='utf-8')
    assert cache.get() == first
