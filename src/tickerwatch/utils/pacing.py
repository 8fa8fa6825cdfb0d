from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass

import structlog

from tickerwatch.utils.time import loop_now_s

log = structlog.get_logger("pacing")


@dataclass(slots=True)
class PacerStats:
    actions: int = 0
    delayed: int = 0
    last_action_at: float = 0.0   # loop time


class ActionPacer:
    """
    Spaces out client-initiated actions (connect / subscribe / ping) to stay
    inside the upstream abuse policy.

    Two limits, both enforced by waiting (never by dropping):
      - min_spacing_s between any two actions
      - at most window_max actions in any window_s sliding window
    """
    def __init__(self, min_spacing_s: float = 1.1, window_s: float = 15.0, window_max: int = 8):
        self.min_spacing_s = float(min_spacing_s)
        self.window_s = float(window_s)
        self.window_max = int(window_max)
        self._recent: deque[float] = deque()
        self._lock = asyncio.Lock()
        self.stats = PacerStats()

    def delay_for(self, now: float) -> float:
        """Seconds until the next action would be allowed (0 if allowed now)."""
        while self._recent and now - self._recent[0] >= self.window_s:
            self._recent.popleft()
        delay = 0.0
        if self.stats.actions:
            delay = max(0.0, self.stats.last_action_at + self.min_spacing_s - now)
        if self.window_max > 0 and len(self._recent) >= self.window_max:
            delay = max(delay, self._recent[0] + self.window_s - now)
        return delay

    async def acquire(self, name: str = "action") -> float:
        """Wait until `name` may be sent; returns the time waited."""
        waited = 0.0
        async with self._lock:
            while True:
                delay = self.delay_for(loop_now_s())
                if delay <= 0:
                    break
                if waited == 0.0:
                    self.stats.delayed += 1
                    log.debug("action_delayed", action=name, delay_s=round(delay, 3))
                await asyncio.sleep(delay)
                waited += delay
            now = loop_now_s()
            self._recent.append(now)
            self.stats.last_action_at = now
            self.stats.actions += 1
        return waited

    def next_allowed_in(self) -> float:
        return self.delay_for(loop_now_s())
