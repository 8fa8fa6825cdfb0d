from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Literal

# ---- ingest-level primitives ----

class Phase(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    SUBSCRIBED = "subscribed"
    CLOSING = "closing"
    CLOSED = "closed"

# phases during which start() must not open another transport
LIVE_PHASES = frozenset({Phase.CONNECTING, Phase.OPEN, Phase.SUBSCRIBED})

TickSource = Literal["ws", "rest"]

@dataclass(frozen=True, slots=True)
class PriceObservation:
    instrument: str
    price: float
    observed_at: float  # epoch seconds
    source: TickSource = "ws"

@dataclass(frozen=True, slots=True)
class HostState:
    """What the host environment reports about itself (tab visibility / network)."""
    visible: bool = True
    online: bool = True

# ---- alerting domain ----

Direction = Literal["up", "down"]
SuppressReason = Literal["quiet-hours", "dedup"]
