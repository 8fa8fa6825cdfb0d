from __future__ import annotations

from collections import deque
from dataclasses import asdict, dataclass, field
from typing import Optional, Union

import structlog

from tickerwatch.utils.time import utc_now_s

# ---- event types ----

@dataclass(frozen=True, slots=True)
class PhaseChanged:
    instrument: str
    phase: str
    prev: str
    ts: float = field(default_factory=utc_now_s)

@dataclass(frozen=True, slots=True)
class TickReceived:
    instrument: str
    price: float
    source: str
    ts: float = field(default_factory=utc_now_s)

@dataclass(frozen=True, slots=True)
class ReconnectScheduled:
    instrument: str
    delay_s: float
    reason: str
    failures: int
    ts: float = field(default_factory=utc_now_s)

@dataclass(frozen=True, slots=True)
class AlertDecision:
    instrument: str
    action: str                       # initialized | no_change | suppressed | fire
    price: float
    reason: Optional[str] = None      # suppression reason
    direction: Optional[str] = None
    delta_pct: Optional[float] = None
    ts: float = field(default_factory=utc_now_s)

@dataclass(frozen=True, slots=True)
class LogLine:
    instrument: str
    message: str
    level: str = "info"
    ts: float = field(default_factory=utc_now_s)

Event = Union[PhaseChanged, TickReceived, ReconnectScheduled, AlertDecision, LogLine]


class EventLog:
    """
    Ordered, bounded event channel for one component.

    - emit() appends with a monotonically increasing sequence number
    - when full, the oldest entry is evicted (counted in `evicted`)
    - readers poll with since(seq) and keep their own cursor
    Every event is mirrored to structlog at debug level (LogLine at its own level).
    """
    def __init__(self, maxlen: int = 800, logger_name: str = "telemetry"):
        self.maxlen = int(maxlen)
        self._buf: deque[tuple[int, Event]] = deque(maxlen=self.maxlen)
        self._seq = 0
        self.evicted = 0
        self._log = structlog.get_logger(logger_name)

    def emit(self, evt: Event) -> int:
        if len(self._buf) == self.maxlen:
            self.evicted += 1
        self._seq += 1
        self._buf.append((self._seq, evt))
        if isinstance(evt, LogLine):
            getattr(self._log, evt.level, self._log.info)(evt.message, instrument=evt.instrument)
        else:
            self._log.debug(type(evt).__name__, **asdict(evt))
        return self._seq

    def since(self, seq: int) -> list[tuple[int, Event]]:
        """Entries with sequence number > seq, oldest first."""
        return [(s, e) for s, e in self._buf if s > seq]

    def snapshot(self) -> list[Event]:
        return [e for _, e in self._buf]

    @property
    def last_seq(self) -> int:
        return self._seq

    def __len__(self) -> int:
        return len(self._buf)
