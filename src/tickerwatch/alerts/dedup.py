from __future__ import annotations

import math
from typing import Optional

from tickerwatch.storage.kv import KeyValueStore, last_alert_key

class AlertSuppression:
    """
    Per (instrument, direction) last-fired timestamps kept in the store.
    A new alert is suppressed while now - last_fired < window_s.
    """
    def __init__(self, store: KeyValueStore, window_s: float):
        self.store = store
        self.window_s = float(window_s)

    async def last_fired(self, instrument: str, direction: str) -> Optional[float]:
        raw = await self.store.get(last_alert_key(instrument, direction))
        try:
            ts = float(raw)
        except (TypeError, ValueError):
            return None
        return ts if math.isfinite(ts) else None

    async def seen_recently(self, instrument: str, direction: str, now: float) -> bool:
        last = await self.last_fired(instrument, direction)
        if last is None:
            return False
        return now - last < self.window_s

    async def mark(self, instrument: str, direction: str, now: float) -> None:
        await self.store.set(last_alert_key(instrument, direction), float(now))
