import asyncio
from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from tickerwatch.alerts.evaluator import (
    BaselineEvaluator, Fire, Initialized, NoChange, Suppressed, crosses, parse_baseline,
)
from tickerwatch.alerts.rules import BaselineRule
from tickerwatch.errors import ConfigError
from tickerwatch.storage.kv import MemoryStore, baseline_key, last_alert_key
from tickerwatch.utils.quiet_hours import QuietHours

X = "XBT/USD"
T0 = 1_767_225_600.0
LA = ZoneInfo("America/Los_Angeles")

def _ev(store=None, **rule):
    rule.setdefault("quiet_hours", None)
    store = store or MemoryStore()
    return BaselineEvaluator(store, BaselineRule(**rule)), store

@pytest.mark.asyncio
async def test_first_observation_initializes_and_persists():
    ev, store = _ev()
    a = await ev.evaluate(X, 100.0, T0)
    assert a == Initialized(price=100.0)
    assert await store.get(baseline_key(X)) == {"price": 100.0, "set_at": T0}
    b = await ev.get_baseline(X)
    assert b.price == 100.0 and b.set_at == T0

@pytest.mark.asyncio
async def test_same_price_is_no_change_and_baseline_untouched():
    ev, store = _ev()
    await ev.evaluate(X, 100.0, T0)
    a = await ev.evaluate(X, 100.0, T0 + 5)
    assert isinstance(a, NoChange) and a.delta_pct == 0.0 and a.baseline == 100.0
    assert (await ev.get_baseline(X)).set_at == T0

@pytest.mark.asyncio
async def test_threshold_boundary_inclusive():
    ev, _ = _ev()
    await ev.evaluate(X, 100.0, T0)
    assert isinstance(await ev.evaluate(X, 100.99, T0 + 1), NoChange)
    a = await ev.evaluate(X, 101.0, T0 + 2)
    assert isinstance(a, Fire)
    assert a.direction == "up"
    assert a.delta_pct == pytest.approx(1.0)
    assert a.delta_usd == pytest.approx(1.0)
    assert a.prior_baseline == 100.0
    assert (await ev.get_baseline(X)).price == 101.0

def test_crosses():
    assert crosses(1.0, 1.0)
    assert crosses(-1.0, 1.0)
    assert crosses(0.9999999999999, 1.0)
    assert not crosses(0.99, 1.0)
    assert not crosses(0.0, 0.0)
    assert crosses(1e-9, 0.0)

@pytest.mark.asyncio
async def test_dedup_same_direction_within_window():
    ev, store = _ev(dedup_window_s=180.0)
    await ev.evaluate(X, 100.0, T0)
    assert isinstance(await ev.evaluate(X, 101.0, T0 + 1), Fire)
    assert await store.get(last_alert_key(X, "up")) == T0 + 1

    a = await ev.evaluate(X, 102.5, T0 + 60)
    assert isinstance(a, Suppressed) and a.reason == "dedup" and a.direction == "up"
    # dedup does not roll the baseline
    assert (await ev.get_baseline(X)).price == 101.0

    a = await ev.evaluate(X, 102.5, T0 + 1 + 180)
    assert isinstance(a, Fire) and a.direction == "up"

@pytest.mark.asyncio
async def test_dedup_is_per_direction():
    ev, _ = _ev()
    await ev.evaluate(X, 100.0, T0)
    assert isinstance(await ev.evaluate(X, 101.0, T0 + 1), Fire)
    a = await ev.evaluate(X, 99.5, T0 + 2)
    assert isinstance(a, Fire) and a.direction == "down"

@pytest.mark.asyncio
async def test_quiet_hours_suppress_and_roll_baseline():
    ev, store = _ev(quiet_hours=QuietHours(start=23, end=7, tz="America/Los_Angeles"))
    night = datetime(2026, 1, 15, 2, 0, tzinfo=LA).timestamp()
    await ev.evaluate(X, 100.0, night)
    a = await ev.evaluate(X, 102.0, night + 60)
    assert isinstance(a, Suppressed) and a.reason == "quiet-hours"
    assert a.prior_baseline == 100.0 and a.price == 102.0
    assert (await ev.get_baseline(X)).price == 102.0
    # quiet-hours suppression doesn't count as a fired alert
    assert await store.get(last_alert_key(X, "up")) is None

    morning = datetime(2026, 1, 15, 8, 0, tzinfo=LA).timestamp()
    a = await ev.evaluate(X, 103.5, morning)
    assert isinstance(a, Fire) and a.prior_baseline == 102.0

@pytest.mark.asyncio
async def test_no_change_inside_quiet_hours_does_not_roll():
    ev, _ = _ev(quiet_hours=QuietHours())
    night = datetime(2026, 1, 15, 1, 0, tzinfo=LA).timestamp()
    await ev.evaluate(X, 100.0, night)
    assert isinstance(await ev.evaluate(X, 100.5, night + 1), NoChange)
    assert (await ev.get_baseline(X)).price == 100.0

@pytest.mark.parametrize("raw", ["garbage", {"price": -1}, {"price": "nan"}, {"nope": 1}, [1, 2], 0])
def test_parse_baseline_rejects_corrupt(raw):
    assert parse_baseline(raw) is None

def test_parse_baseline_accepts_bare_number():
    b = parse_baseline(100)
    assert b.price == 100.0 and b.set_at == 0.0

@pytest.mark.asyncio
async def test_corrupt_baseline_reinitializes():
    store = MemoryStore({baseline_key(X): {"price": "abc"}})
    ev, _ = _ev(store)
    a = await ev.evaluate(X, 50000.0, T0)
    assert a == Initialized(price=50000.0)
    assert (await ev.get_baseline(X)).price == 50000.0

@pytest.mark.asyncio
async def test_zero_threshold_fires_on_any_move():
    ev, _ = _ev(threshold_pct=0.0, dedup_window_s=0.0)
    await ev.evaluate(X, 100.0, T0)
    assert isinstance(await ev.evaluate(X, 100.0, T0 + 1), NoChange)
    assert isinstance(await ev.evaluate(X, 100.01, T0 + 2), Fire)

def test_negative_rule_values_rejected():
    with pytest.raises(ConfigError):
        BaselineRule(threshold_pct=-1)
    with pytest.raises(ConfigError):
        BaselineRule(dedup_window_s=-5)

@pytest.mark.asyncio
async def test_reset_and_clear_baseline():
    ev, _ = _ev()
    await ev.evaluate(X, 100.0, T0)
    b = await ev.reset_baseline(X, 105.0, T0 + 10)
    assert b.price == 105.0
    assert isinstance(await ev.evaluate(X, 105.5, T0 + 11), NoChange)
    await ev.clear_baseline(X)
    assert await ev.get_baseline(X) is None
    assert isinstance(await ev.evaluate(X, 90.0, T0 + 12), Initialized)

@pytest.mark.asyncio
async def test_concurrent_evaluations_initialize_once():
    ev, _ = _ev()
    results = await asyncio.gather(*(ev.evaluate(X, 100.0, T0) for _ in range(10)))
    assert sum(isinstance(r, Initialized) for r in results) == 1
    assert sum(isinstance(r, NoChange) for r in results) == 9

@pytest.mark.asyncio
async def test_instruments_are_independent():
    ev, _ = _ev()
    await ev.evaluate("XBT/USD", 50000.0, T0)
    assert isinstance(await ev.evaluate("ETH/USD", 3000.0, T0), Initialized)
    assert isinstance(await ev.evaluate("XBT/USD", 51000.0, T0 + 1), Fire)
    assert isinstance(await ev.evaluate("ETH/USD", 3000.0, T0 + 1), NoChange)

@pytest.mark.asyncio
async def test_end_to_end_scenario():
    ev, _ = _ev(threshold_pct=1.0, dedup_window_s=180.0)
    assert isinstance(await ev.evaluate(X, 50000.0, T0), Initialized)
    assert isinstance(await ev.evaluate(X, 50200.0, T0 + 10), NoChange)

    up = await ev.evaluate(X, 50600.0, T0 + 20)
    assert isinstance(up, Fire) and up.direction == "up"
    assert up.delta_pct == pytest.approx(1.2)
    assert (await ev.get_baseline(X)).price == 50600.0

    again = await ev.evaluate(X, 51200.0, T0 + 60)
    assert isinstance(again, Suppressed) and again.reason == "dedup"
    assert (await ev.get_baseline(X)).price == 50600.0

    down = await ev.evaluate(X, 49000.0, T0 + 20 + 181)
    assert isinstance(down, Fire) and down.direction == "down"
    assert down.delta_pct == pytest.approx(-3.1621, abs=1e-3)
    assert (await ev.get_baseline(X)).price == 49000.0
