from __future__ import annotations

import asyncio
import time
from datetime import datetime, timedelta, timezone

# --- clock helpers ---

def utc_now_s() -> float:
    """Unix epoch seconds (float)."""
    return time.time()

def loop_now_s() -> float:
    """Monotonic seconds from the running event loop (falls back to time.monotonic)."""
    try:
        return asyncio.get_running_loop().time()
    except RuntimeError:
        return time.monotonic()

def utc_dt(ts: float | int) -> datetime:
    """Epoch seconds -> timezone-aware UTC datetime."""
    return datetime.fromtimestamp(float(ts), tz=timezone.utc)

def utc_day(ts: float | int) -> str:
    """ISO calendar day (UTC) for an epoch timestamp, e.g. '2026-10-19'."""
    return utc_dt(ts).date().isoformat()

def seconds_until_next_utc_day(ts: float | int) -> float:
    """Seconds from `ts` until the next UTC midnight (always > 0)."""
    dt = utc_dt(ts)
    nxt = datetime.combine(dt.date() + timedelta(days=1), datetime.min.time(), tzinfo=timezone.utc)
    return max(0.001, nxt.timestamp() - float(ts))

def age_s(ts: float | None, now: float | None = None) -> float | None:
    """Non-negative age of `ts`, or None if it was never set."""
    if not ts:
        return None
    now = utc_now_s() if now is None else now
    return max(0.0, now - ts)
