from __future__ import annotations

import functools
from dataclasses import dataclass
from datetime import datetime
from zoneinfo import ZoneInfo

from tickerwatch.errors import ConfigError

DEFAULT_TZ = "America/Los_Angeles"


@functools.lru_cache(maxsize=16)
def _zone(name: str) -> ZoneInfo:
    return ZoneInfo(name)


@dataclass(frozen=True, slots=True)
class QuietHours:
    """
    Local wall-clock window during which alerts are held back.

    start/end are hours [0, 23] in `tz`. start > end wraps across midnight
    (23 -> 7 covers 23:00..06:59); start == end is an empty window.
    """
    start: int = 23
    end: int = 7
    tz: str = DEFAULT_TZ

    def __post_init__(self):
        for h in (self.start, self.end):
            if not 0 <= int(h) <= 23:
                raise ConfigError(f"quiet hour out of range: {h}")

    def local_hour(self, ts: float) -> int:
        return datetime.fromtimestamp(float(ts), _zone(self.tz)).hour

    def contains(self, ts: float) -> bool:
        h = self.local_hour(ts)
        if self.start > self.end:
            return h >= self.start or h < self.end
        return self.start <= h < self.end


def in_quiet_hours(ts: float, window: QuietHours | None) -> bool:
    """True if `ts` falls inside `window`; a None window is never quiet."""
    return window is not None and window.contains(ts)


def format_local(ts: float, tz_name: str = DEFAULT_TZ) -> str:
    return datetime.fromtimestamp(float(ts), _zone(tz_name)).strftime("%Y-%m-%d %H:%M:%S")
