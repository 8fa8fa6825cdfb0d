from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

import numpy as np


@dataclass(slots=True)
class WindowStats:
    count: int
    first: Optional[float]
    last: Optional[float]
    low: Optional[float]
    high: Optional[float]
    change_pct: Optional[float]


class PriceWindow:
    """
    Fixed-capacity circular buffer of (epoch, price) samples, per instrument.
    Arrays: ts[float64], px[float64]. Queries are restricted to the last
    `window_s` seconds (what the dashboard's short chart covers).
    """
    __slots__ = ("capacity", "window_s", "size", "head", "ts", "px")

    def __init__(self, capacity: int = 2048, window_s: float = 300.0):
        self.capacity = int(capacity)
        self.window_s = float(window_s)
        self.size = 0
        self.head = 0  # next write index
        self.ts = np.empty(self.capacity, dtype=np.float64)
        self.px = np.empty(self.capacity, dtype=np.float64)

    def append(self, ts: float, price: float) -> None:
        if not math.isfinite(price):
            return
        i = self.head
        self.ts[i] = ts
        self.px[i] = price
        self.head = (i + 1) % self.capacity
        if self.size < self.capacity:
            self.size += 1

    def clear(self) -> None:
        self.size = 0
        self.head = 0

    def ordered(self) -> tuple[np.ndarray, np.ndarray]:
        """All retained samples in time order (copies)."""
        if self.size == 0:
            return np.empty(0), np.empty(0)
        start = (self.head - self.size) % self.capacity
        if start < self.head:
            sl = slice(start, self.head)
            return self.ts[sl].copy(), self.px[sl].copy()
        # wrapped: [start..cap) + [0..head)
        return (
            np.concatenate((self.ts[start:], self.ts[: self.head])),
            np.concatenate((self.px[start:], self.px[: self.head])),
        )

    def view_window(self, now: float) -> tuple[np.ndarray, np.ndarray]:
        ts, px = self.ordered()
        mask = ts >= now - self.window_s
        return ts[mask], px[mask]

    def stats(self, now: float) -> WindowStats:
        _, px = self.view_window(now)
        if px.size == 0:
            return WindowStats(0, None, None, None, None, None)
        first, last = float(px[0]), float(px[-1])
        change = (last - first) / first * 100.0 if first > 0 else None
        return WindowStats(
            count=int(px.size),
            first=first,
            last=last,
            low=float(px.min()),
            high=float(px.max()),
            change_pct=change,
        )
