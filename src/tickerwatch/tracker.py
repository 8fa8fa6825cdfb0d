from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Callable, Optional

import aiohttp
import structlog

from tickerwatch.alerts.evaluator import Action, BaselineEvaluator, Baseline, Fire, Initialized, NoChange, Suppressed
from tickerwatch.alerts.formatting import fmt_usd, format_fire, format_suppressed
from tickerwatch.alerts.notifiers import Notifier
from tickerwatch.alerts.rules import BaselineRule
from tickerwatch.data.price_window import PriceWindow
from tickerwatch.ingest.kraken_ws import KrakenTicker, KrakenWSConfig
from tickerwatch.ingest.rest import fetch_last_price
from tickerwatch.notify.queue import NotifyQueue, OutgoingAlert
from tickerwatch.storage.kv import KeyValueStore
from tickerwatch.telemetry.events import AlertDecision, EventLog, LogLine, TickReceived
from tickerwatch.utils.time import utc_now_s
from tickerwatch.utils.types import HostState, Phase, PriceObservation


@dataclass(slots=True)
class TrackerConfig:
    symbol: str                                   # display name, e.g. "BTC"
    ws: KrakenWSConfig
    rule: BaselineRule = field(default_factory=BaselineRule)
    alerts_enabled: bool = True                   # False: log the alert text instead of sending it
    rest_bootstrap: bool = True
    display_tz: str = "America/Los_Angeles"
    ticks_queue_maxsize: int = 1_000
    notify_queue_maxsize: int = 200
    price_window_s: float = 300.0
    event_log_size: int = 800


@dataclass(slots=True)
class TrackerStats:
    observations: int = 0
    ticks_dropped: int = 0
    alerts_fired: int = 0
    alerts_suppressed: int = 0
    alerts_sent: int = 0
    alerts_failed: int = 0


class Tracker:
    """
    One instrument: a KrakenTicker feeding a BaselineEvaluator.

    Inputs:
      - ticks from the ticker's on_tick (and the optional REST bootstrap),
        queued in arrival order and evaluated one at a time
    Outputs:
      - AlertDecision / LogLine events on `self.events` (shared with the ticker,
        so the whole instrument has one ordered channel)
      - formatted Fire messages to the notifier, via a bounded NotifyQueue
    """
    def __init__(
        self,
        cfg: TrackerConfig,
        store: KeyValueStore,
        notifier: Optional[Notifier] = None,
        host_state: Optional[Callable[[], HostState]] = None,
        http_session: Optional[aiohttp.ClientSession] = None,
        on_status: Optional[Callable[[Phase], None]] = None,
    ):
        self.cfg = cfg
        self.instrument = cfg.ws.label
        self.store = store
        self.notifier = notifier
        self.events = EventLog(maxlen=cfg.event_log_size, logger_name="tracker")
        self.q_ticks: asyncio.Queue[PriceObservation] = asyncio.Queue(maxsize=cfg.ticks_queue_maxsize)
        self.notify_q = NotifyQueue(maxsize=cfg.notify_queue_maxsize)
        self.ticker = KrakenTicker(
            cfg.ws,
            on_tick=self._enqueue_tick,
            on_status=on_status,
            host_state=host_state,
            events=self.events,
        )
        self.evaluator = BaselineEvaluator(store, cfg.rule)
        self.window = PriceWindow(window_s=cfg.price_window_s)
        self.stats = TrackerStats()

        self.last_price: Optional[float] = None
        self.last_update_at: Optional[float] = None
        self.last_action: Optional[Action] = None

        self.http_session = http_session         # shared by REST bootstraps; None opens a private one
        self._tasks: list[asyncio.Task] = []
        self._log = structlog.get_logger("tracker").bind(instrument=self.instrument)

    # ---------------------------- lifecycle ---------------------------- #

    async def start(self) -> None:
        if self._tasks:
            self.ticker.start()
            return
        self._tasks = [
            asyncio.create_task(self._eval_loop(), name=f"tracker-eval-{self.instrument}"),
            asyncio.create_task(self._notify_loop(), name=f"tracker-notify-{self.instrument}"),
        ]
        if self.cfg.rest_bootstrap:
            self._tasks.append(asyncio.create_task(self._bootstrap(), name=f"tracker-rest-{self.instrument}"))
        self.ticker.start()
        self._log.info("tracker_started", symbol=self.cfg.symbol, pair=self.cfg.ws.pair)

    async def stop(self) -> None:
        await self.ticker.stop()
        tasks, self._tasks = self._tasks, []
        for t in tasks:
            t.cancel()
        for t in tasks:
            try:
                await t
            except asyncio.CancelledError:
                pass
        self._log.info("tracker_stopped")

    # --------------------------- user actions -------------------------- #

    async def reset_baseline(self) -> Optional[Baseline]:
        """Set the baseline to the latest observed price (no-op without one)."""
        if self.last_price is None:
            self._note("No baseline updated (no price yet)")
            return None
        b = await self.evaluator.reset_baseline(self.instrument, self.last_price, utc_now_s())
        self._note(f"{self.cfg.symbol} baseline reset to {fmt_usd(b.price)}")
        return b

    async def clear_baseline(self) -> None:
        await self.evaluator.clear_baseline(self.instrument)
        self._note(f"{self.cfg.symbol} baseline cleared")

    async def reconnect(self) -> None:
        self._note("Manual reconnect requested")
        await self.ticker.reconnect("manual")

    # ---------------------------- processing --------------------------- #

    async def process(self, obs: PriceObservation) -> Action:
        """Evaluate one observation and route the outcome."""
        self.stats.observations += 1
        self.last_price = obs.price
        self.last_update_at = obs.observed_at
        self.window.append(obs.observed_at, obs.price)

        action = await self.evaluator.evaluate(self.instrument, obs.price, obs.observed_at)
        self.last_action = action

        if isinstance(action, Initialized):
            self.events.emit(AlertDecision(self.instrument, "initialized", obs.price))
            self._note(f"{self.cfg.symbol} baseline initialized at {fmt_usd(obs.price)}")
        elif isinstance(action, NoChange):
            self.events.emit(AlertDecision(self.instrument, "no_change", obs.price, delta_pct=action.delta_pct))
        elif isinstance(action, Suppressed):
            self.stats.alerts_suppressed += 1
            self.events.emit(AlertDecision(
                self.instrument, "suppressed", obs.price,
                reason=action.reason, direction=action.direction, delta_pct=action.delta_pct,
            ))
            self._note(format_suppressed(self.cfg.symbol, action, obs.observed_at, self.cfg.display_tz))
        elif isinstance(action, Fire):
            self.stats.alerts_fired += 1
            self.events.emit(AlertDecision(
                self.instrument, "fire", obs.price, direction=action.direction, delta_pct=action.delta_pct,
            ))
            self._dispatch(format_fire(self.cfg.symbol, action, obs.observed_at, self.cfg.display_tz))
        return action

    def _dispatch(self, message: str) -> None:
        if not self.cfg.alerts_enabled:
            self._note(f"(alerts OFF) {message}")
            return
        self._note(message)
        if self.notifier is None:
            return
        if not self.notify_q.offer(OutgoingAlert(self.instrument, message)):
            self._log.warning("notify_queue_full_drop")

    def _enqueue_tick(self, obs: PriceObservation) -> None:
        try:
            self.q_ticks.put_nowait(obs)
        except asyncio.QueueFull:
            # evaluation is falling behind; a skipped tick only delays the next comparison
            self.stats.ticks_dropped += 1
            self._log.info("ticks_queue_full_drop")

    async def _eval_loop(self) -> None:
        while True:
            obs = await self.q_ticks.get()
            try:
                await self.process(obs)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._log.error("evaluate_failed", err=str(e), price=obs.price)

    async def _notify_loop(self) -> None:
        while True:
            alert = await self.notify_q.take()
            ok = False
            try:
                ok = await self.notifier.send(alert.text)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._log.warning("alert_delivery_error", err=str(e))
            if ok:
                self.stats.alerts_sent += 1
            else:
                # still counts as fired for dedup / rolling
                self.stats.alerts_failed += 1
                self._log.warning("alert_delivery_failed", lag_s=round(utc_now_s() - alert.queued_at, 3))

    async def _bootstrap(self) -> None:
        session, owned = self.http_session, False
        if session is None:
            session, owned = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=8.0)), True
        try:
            px = await fetch_last_price(session, self.cfg.ws.pair)
        finally:
            if owned:
                await session.close()
        if px is None:
            self._note("REST bootstrap failed", level="warning")
            return
        now = utc_now_s()
        self.events.emit(TickReceived(instrument=self.instrument, price=px, source="rest", ts=now))
        self._enqueue_tick(PriceObservation(instrument=self.instrument, price=px, observed_at=now, source="rest"))

    # ------------------------------ views ------------------------------ #

    def _note(self, message: str, level: str = "info") -> None:
        self.events.emit(LogLine(instrument=self.instrument, message=message, level=level))

    async def snapshot(self) -> dict:
        now = utc_now_s()
        base = await self.evaluator.get_baseline(self.instrument)
        delta_pct = delta_usd = None
        if base is not None and self.last_price is not None:
            delta_usd = self.last_price - base.price
            delta_pct = delta_usd / base.price * 100.0
        w = self.window.stats(now)
        return {
            "symbol": self.cfg.symbol,
            "price": self.last_price,
            "last_update_at": self.last_update_at,
            "baseline": base.price if base else None,
            "baseline_set_at": base.set_at if base else None,
            "delta_pct": delta_pct,
            "delta_usd": delta_usd,
            "window": {"count": w.count, "low": w.low, "high": w.high, "change_pct": w.change_pct},
            "alerts": {
                "fired": self.stats.alerts_fired,
                "suppressed": self.stats.alerts_suppressed,
                "sent": self.stats.alerts_sent,
                "failed": self.stats.alerts_failed,
                "dropped": self.notify_q.stats.dropped,
            },
            "connection": self.ticker.snapshot(),
        }
