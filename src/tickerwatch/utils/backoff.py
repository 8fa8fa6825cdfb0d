from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Iterator, Optional

from tickerwatch.utils.time import seconds_until_next_utc_day, utc_day

def next_backoff(prev: float, cap: float, *, growth: float = 1.8) -> float:
    """Exponential backoff progression with cap (no jitter)."""
    return min(prev * growth, cap)

def jitter(v: float, *, ratio: float = 0.25) -> float:
    """
    Add up to +ratio jitter. ratio=0.25 -> multiply by [1.0, 1.25].
    Upward only, so a jittered delay never undercuts the backoff it came from.
    """
    return v + v * ratio * random.random()

def backoff_iter(initial: float = 1.0, cap: float = 30.0, *, growth: float = 1.8) -> Iterator[float]:
    """
    Deterministic (no jitter) iterator of backoff values:
    1.0, 1.8, 3.24, ... (capped).
    """
    v = initial
    while True:
        yield v
        v = next_backoff(v, cap, growth=growth)


@dataclass(slots=True)
class ReconnectBudget:
    """
    Optional per-UTC-day cap on reconnect *schedulings*.
    cap=None disables the budget entirely.
    """
    cap: Optional[int] = None
    day: Optional[str] = None
    count: int = 0

    def take(self, now: float) -> bool:
        """Consume one scheduling; False once today's cap is exhausted."""
        if self.cap is None:
            return True
        today = utc_day(now)
        if today != self.day:
            self.day = today
            self.count = 0
        if self.count >= self.cap:
            return False
        self.count += 1
        return True

    def pause_s(self, now: float) -> float:
        """How long to pause when exhausted: until the next UTC day boundary."""
        return seconds_until_next_utc_day(now)
