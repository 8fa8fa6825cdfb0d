from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from tickerwatch.errors import ConfigError
from tickerwatch.utils.quiet_hours import QuietHours, format_local, in_quiet_hours

LA = ZoneInfo("America/Los_Angeles")

def _la(h, m=0):
    return datetime(2026, 1, 15, h, m, tzinfo=LA).timestamp()

def test_default_window_wraps_midnight():
    q = QuietHours()
    assert q.contains(_la(23, 30))
    assert q.contains(_la(0, 0))
    assert q.contains(_la(6, 59))
    assert not q.contains(_la(7, 0))
    assert not q.contains(_la(22, 59))
    assert not q.contains(_la(12, 0))

def test_same_day_window():
    q = QuietHours(start=9, end=17)
    assert q.contains(_la(9, 0))
    assert q.contains(_la(16, 59))
    assert not q.contains(_la(17, 0))
    assert not q.contains(_la(8, 59))

def test_equal_bounds_is_empty():
    q = QuietHours(start=5, end=5)
    assert not any(q.contains(_la(h)) for h in range(24))

def test_other_timezone():
    q = QuietHours(start=0, end=6, tz="UTC")
    assert q.contains(datetime(2026, 1, 15, 3, tzinfo=ZoneInfo("UTC")).timestamp())
    assert not q.contains(datetime(2026, 1, 15, 6, tzinfo=ZoneInfo("UTC")).timestamp())

def test_bad_hour_rejected():
    with pytest.raises(ConfigError):
        QuietHours(start=24)
    with pytest.raises(ConfigError):
        QuietHours(end=-1)

def test_none_window_never_quiet():
    assert in_quiet_hours(_la(2), None) is False
    assert in_quiet_hours(_la(2), QuietHours()) is True

def test_format_local():
    assert format_local(_la(13, 5)) == "2026-01-15 13:05:00"
