import pytest

from tickerwatch.utils.backoff import ReconnectBudget, backoff_iter, jitter, next_backoff

def test_next_backoff_caps():
    assert next_backoff(1, 4, growth=2.0) == 2
    assert next_backoff(2, 4, growth=2.0) == 4
    assert next_backoff(4, 4, growth=2.0) == 4

def test_next_backoff_default_growth():
    assert next_backoff(1.0, 30.0) == pytest.approx(1.8)
    assert next_backoff(20.0, 30.0) == 30.0

def test_backoff_iter_progression():
    it = backoff_iter(0.25, 2.0, growth=2.0)
    vals = [next(it) for _ in range(5)]
    assert vals == [0.25, 0.5, 1.0, 2.0, 2.0]

def test_jitter_is_upward_and_bounded():
    for _ in range(200):
        v = jitter(10.0, ratio=0.25)
        assert 10.0 <= v <= 12.5

def test_jitter_zero_ratio_is_identity():
    assert jitter(3.0, ratio=0.0) == 3.0

def test_budget_disabled_always_allows():
    b = ReconnectBudget()
    assert all(b.take(1_700_000_000.0) for _ in range(100))

def test_budget_caps_per_utc_day():
    day1 = 1_767_225_600.0  # 2026-01-01 00:00:00 UTC
    b = ReconnectBudget(cap=2)
    assert b.take(day1 + 10)
    assert b.take(day1 + 20)
    assert not b.take(day1 + 30)
    assert b.pause_s(day1 + 30) == pytest.approx(86_400 - 30)
    # new UTC day resets the count
    assert b.take(day1 + 86_400 + 1)
    assert b.count == 1
