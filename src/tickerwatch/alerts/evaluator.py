from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Union

import structlog

from tickerwatch.alerts.dedup import AlertSuppression
from tickerwatch.alerts.rules import BaselineRule
from tickerwatch.storage.kv import KeyValueStore, baseline_key
from tickerwatch.utils.quiet_hours import in_quiet_hours
from tickerwatch.utils.types import Direction, SuppressReason

log = structlog.get_logger("evaluator")

# ---- decision types ----

@dataclass(frozen=True, slots=True)
class Baseline:
    price: float
    set_at: float

    def to_json(self) -> dict:
        return {"price": self.price, "set_at": self.set_at}

@dataclass(frozen=True, slots=True)
class Initialized:
    price: float

@dataclass(frozen=True, slots=True)
class NoChange:
    delta_pct: float
    baseline: float

@dataclass(frozen=True, slots=True)
class Suppressed:
    reason: SuppressReason
    direction: Direction
    delta_pct: float
    delta_usd: float
    price: float
    prior_baseline: float

@dataclass(frozen=True, slots=True)
class Fire:
    direction: Direction
    delta_pct: float
    delta_usd: float
    price: float
    prior_baseline: float

Action = Union[Initialized, NoChange, Suppressed, Fire]


def parse_baseline(raw) -> Optional[Baseline]:
    """
    Stored value -> Baseline, or None when absent or corrupt
    (wrong shape, non-finite or non-positive price). A bare number is
    accepted as a price with an unknown set_at.
    """
    if raw is None:
        return None
    if isinstance(raw, dict):
        price, set_at = raw.get("price"), raw.get("set_at", 0.0)
    else:
        price, set_at = raw, 0.0
    try:
        price = float(price)
        set_at = float(set_at or 0.0)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(price) or price <= 0.0:
        return None
    return Baseline(price=price, set_at=set_at)


def crosses(delta_pct: float, threshold_pct: float) -> bool:
    """|delta| >= threshold, inclusive at the boundary despite float rounding; zero never crosses."""
    if delta_pct == 0.0:
        return False
    mag = abs(delta_pct)
    return mag >= threshold_pct or math.isclose(mag, threshold_pct, rel_tol=1e-9, abs_tol=1e-12)


class BaselineEvaluator:
    """
    Rolling-baseline alert decisions for any number of instruments sharing one store.

    evaluate() per observation:
      1) no (valid) baseline         -> persist {price, now}, Initialized
      2) |Δ%| below threshold        -> NoChange (baseline untouched)
      3) inside quiet hours          -> roll baseline, Suppressed("quiet-hours")
      4) same direction fired within dedup window
                                     -> Suppressed("dedup") (baseline NOT rolled)
      5) otherwise                   -> mark last-fired, roll baseline, Fire

    The load/decide/write sequence for an instrument runs under the store's
    lock for its baseline key. No I/O beyond the store happens here; turning a
    Fire into a notification is the caller's job.
    """
    def __init__(self, store: KeyValueStore, rule: Optional[BaselineRule] = None):
        self.store = store
        self.rule = rule or BaselineRule()
        self._dedupe = AlertSuppression(store, self.rule.dedup_window_s)

    async def get_baseline(self, instrument: str) -> Optional[Baseline]:
        return parse_baseline(await self.store.get(baseline_key(instrument)))

    async def reset_baseline(self, instrument: str, price: float, now: float) -> Baseline:
        key = baseline_key(instrument)
        async with self.store.lock(key):
            b = Baseline(price=float(price), set_at=float(now))
            await self.store.set(key, b.to_json())
        log.info("baseline_reset", instrument=instrument, price=price)
        return b

    async def clear_baseline(self, instrument: str) -> None:
        key = baseline_key(instrument)
        async with self.store.lock(key):
            await self.store.delete(key)
        log.info("baseline_cleared", instrument=instrument)

    async def evaluate(self, instrument: str, price: float, now: float) -> Action:
        key = baseline_key(instrument)
        async with self.store.lock(key):
            raw = await self.store.get(key)
            base = parse_baseline(raw)
            if base is None:
                if raw is not None:
                    log.warning("baseline_corrupt_reinit", instrument=instrument, raw=str(raw)[:100])
                await self.store.set(key, Baseline(price, now).to_json())
                log.info("baseline_initialized", instrument=instrument, price=price)
                return Initialized(price=price)

            delta_usd = price - base.price
            delta_pct = delta_usd / base.price * 100.0
            if not crosses(delta_pct, self.rule.threshold_pct):
                return NoChange(delta_pct=delta_pct, baseline=base.price)

            direction: Direction = "up" if delta_pct > 0 else "down"

            if in_quiet_hours(now, self.rule.quiet_hours):
                await self.store.set(key, Baseline(price, now).to_json())
                log.info(
                    "alert_suppressed_quiet_hours",
                    instrument=instrument, direction=direction,
                    delta_pct=round(delta_pct, 4), baseline_from=base.price, baseline_to=price,
                )
                return Suppressed("quiet-hours", direction, delta_pct, delta_usd, price, base.price)

            if await self._dedupe.seen_recently(instrument, direction, now):
                log.info("alert_suppressed_dedup", instrument=instrument, direction=direction,
                         delta_pct=round(delta_pct, 4), window_s=self.rule.dedup_window_s)
                return Suppressed("dedup", direction, delta_pct, delta_usd, price, base.price)

            await self._dedupe.mark(instrument, direction, now)
            await self.store.set(key, Baseline(price, now).to_json())
            log.info("alert_fire", instrument=instrument, direction=direction,
                     delta_pct=round(delta_pct, 4), delta_usd=round(delta_usd, 2),
                     price=price, prior_baseline=base.price)
            return Fire(direction, delta_pct, delta_usd, price, base.price)
