from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Callable, Optional

import structlog
from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed

from tickerwatch.errors import StaleConnectionError, SubscriptionError
from tickerwatch.ingest import parser
from tickerwatch.telemetry.events import EventLog, PhaseChanged, ReconnectScheduled, TickReceived
from tickerwatch.utils.backoff import ReconnectBudget, jitter, next_backoff
from tickerwatch.utils.pacing import ActionPacer
from tickerwatch.utils.time import age_s, utc_now_s
from tickerwatch.utils.types import LIVE_PHASES, HostState, Phase, PriceObservation

KRAKEN_WS_URL = "wss://ws.kraken.com"


@dataclass(slots=True)
class KrakenWSConfig:
    pair: str                              # WS pair name, e.g. "XBT/USD"
    stream_url: str = KRAKEN_WS_URL
    instrument: Optional[str] = None       # label used for keys/logs; defaults to pair
    # reconnect behavior
    min_backoff_s: float = 1.0
    max_backoff_s: float = 30.0
    backoff_growth: float = 1.8            # keep within [1.5, 2.0]
    jitter_ratio: float = 0.25             # up to +25% of the delay
    failure_threshold: int = 5             # consecutive failures before the extra cooldown
    failure_cooldown_s: float = 60.0
    hidden_multiplier: float = 2.0         # delay multiplier while host is hidden/offline
    daily_reconnect_cap: Optional[int] = None
    # timeouts
    open_timeout_s: float = 10.0
    ping_interval_s: Optional[float] = 15.0   # app-level {"event":"ping"}; None disables
    protocol_ping_interval_s: Optional[float] = 20.0
    # staleness
    stale_after_s: float = 30.0
    stale_check_interval_s: float = 5.0
    adaptive_stale: bool = False
    stale_avg_multiple: float = 3.0
    ewma_alpha: float = 0.2
    # pacing of client-initiated actions
    min_action_spacing_s: float = 1.1
    action_window_s: float = 15.0
    action_window_max: int = 8

    @property
    def label(self) -> str:
        return self.instrument or self.pair


@dataclass(slots=True)
class ConnectionState:
    phase: Phase = Phase.IDLE
    backoff_s: float = 1.0
    last_activity_at: float = 0.0
    last_tick_at: float = 0.0
    consecutive_failures: int = 0
    avg_tick_interval_s: Optional[float] = None
    next_reconnect_at: Optional[float] = None
    last_reconnect_reason: str = ""
    # counters
    connect_attempts: int = 0
    subscribe_sends: int = 0
    pings_sent: int = 0
    closes: int = 0
    errors: int = 0
    stale_resets: int = 0
    ticks: int = 0
    reconnects_scheduled: int = 0


class KrakenTicker:
    """
    Resilient Kraken v1 ticker subscription for a single pair.

    Lifecycle:
      - start() → connect → subscribe → stream
      - close / error / stale / subscription error → closed → jittered backoff → connect
      - stop() cancels everything and returns to idle

    Every valid price goes to `on_tick(PriceObservation)` in arrival order and
    every phase transition to `on_status(Phase)`. Both are plain callables run on
    the event loop; exceptions they raise are logged and swallowed so a bad
    consumer cannot tear down the connection.

    Usage:
        ticker = KrakenTicker(KrakenWSConfig(pair="XBT/USD"), on_tick=q.put_nowait)
        ticker.start()
        ...
        await ticker.stop()
    """

    def __init__(
        self,
        cfg: KrakenWSConfig,
        on_tick: Optional[Callable[[PriceObservation], None]] = None,
        on_status: Optional[Callable[[Phase], None]] = None,
        host_state: Optional[Callable[[], HostState]] = None,
        events: Optional[EventLog] = None,
        pacer: Optional[ActionPacer] = None,
    ):
        self.cfg = cfg
        self.instrument = cfg.label
        self._on_tick = on_tick
        self._on_status = on_status
        self._host_state = host_state or HostState
        self.events = events or EventLog(logger_name="kraken_ws")
        self.pacer = pacer or ActionPacer(
            min_spacing_s=cfg.min_action_spacing_s,
            window_s=cfg.action_window_s,
            window_max=cfg.action_window_max,
        )
        self.state = ConnectionState(backoff_s=cfg.min_backoff_s)

        self._log = structlog.get_logger("kraken_ws").bind(instrument=self.instrument)
        self._norm_pair = parser.normalize_pair(cfg.pair)
        self._budget = ReconnectBudget(cap=cfg.daily_reconnect_cap)

        self._gen = 0                       # bumped by start()/stop(); stale runs compare against it
        self._task: Optional[asyncio.Task] = None
        self._keepalive: Optional[asyncio.Task] = None
        self._ws = None
        self._wake = asyncio.Event()
        self._close_reason: Optional[str] = None
        self._conn_last_tick_at = 0.0       # previous tick on the current connection only

    # ---------------------------- public API ---------------------------- #

    def start(self) -> None:
        """Begin connecting unless a connection is already live. Must run inside the loop."""
        if self.state.phase in LIVE_PHASES:
            self._log.debug("start_skipped", phase=self.state.phase.value)
            return
        if self._task is not None and not self._task.done():
            # run loop is waiting out a backoff delay: cut it short
            self._wake.set()
            return
        self._gen += 1
        self._set_phase(Phase.CONNECTING)
        self._task = asyncio.create_task(self._run(self._gen), name=f"kraken-ws-{self.instrument}")

    async def stop(self) -> None:
        """Release the transport, cancel all timers/tasks, end in idle."""
        self._gen += 1
        task, self._task = self._task, None
        if self.state.phase != Phase.IDLE:
            self._set_phase(Phase.CLOSING)
        self._cancel_keepalive()
        await self._release_transport()
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.state.next_reconnect_at = None
        self._set_phase(Phase.IDLE)
        self._log.info("ws_stopped")

    async def reconnect(self, reason: str = "manual") -> None:
        """User-requested reconnect: close the live transport, or skip a pending backoff."""
        self._log.info("ws_reconnect_requested", reason=reason, phase=self.state.phase.value)
        if self._task is None or self._task.done():
            self.start()
            return
        if self.state.phase in (Phase.OPEN, Phase.SUBSCRIBED) and self._ws is not None:
            self._close_reason = reason
            await self._ws.close()
            return
        if self.state.phase == Phase.CLOSED:
            self._wake.set()

    def healthy(self) -> bool:
        """Quick health signal: subscribed and not stale."""
        if self.state.phase != Phase.SUBSCRIBED:
            return False
        return (utc_now_s() - self.state.last_activity_at) <= self.stale_threshold_s()

    def stale_threshold_s(self) -> float:
        base = self.cfg.stale_after_s
        avg = self.state.avg_tick_interval_s
        if self.cfg.adaptive_stale and avg:
            return max(base, self.cfg.stale_avg_multiple * avg)
        return base

    def next_delay_s(self) -> float:
        """
        Advance the backoff one step and return the delay to wait before the
        next attempt (jitter, failure cooldown and host multiplier applied).
        """
        st = self.state
        grown = next_backoff(st.backoff_s, self.cfg.max_backoff_s, growth=self.cfg.backoff_growth)
        delay = jitter(grown, ratio=self.cfg.jitter_ratio)
        if st.consecutive_failures > self.cfg.failure_threshold:
            delay += self.cfg.failure_cooldown_s
        host = self._host_state()
        if not host.visible or not host.online:
            delay *= self.cfg.hidden_multiplier
        st.backoff_s = grown
        return delay

    def snapshot(self) -> dict:
        now = utc_now_s()
        st = self.state
        return {
            "instrument": self.instrument,
            "phase": st.phase.value,
            "healthy": self.healthy(),
            "backoff_s": round(st.backoff_s, 3),
            "consecutive_failures": st.consecutive_failures,
            "last_activity_age_s": age_s(st.last_activity_at, now),
            "last_tick_age_s": age_s(st.last_tick_at, now),
            "avg_tick_interval_s": st.avg_tick_interval_s,
            "stale_threshold_s": self.stale_threshold_s(),
            "next_reconnect_in_s": (
                max(0.0, st.next_reconnect_at - now) if st.next_reconnect_at is not None else None
            ),
            "last_reconnect_reason": st.last_reconnect_reason,
            "next_action_in_s": round(self.pacer.next_allowed_in(), 3),
            "counters": {
                "connect_attempts": st.connect_attempts,
                "subscribe_sends": st.subscribe_sends,
                "pings_sent": st.pings_sent,
                "closes": st.closes,
                "errors": st.errors,
                "stale_resets": st.stale_resets,
                "ticks": st.ticks,
                "reconnects_scheduled": st.reconnects_scheduled,
                "rate_delayed": self.pacer.stats.delayed,
            },
        }

    # --------------------------- core internals ------------------------- #

    async def _run(self, gen: int) -> None:
        while gen == self._gen:
            reason = "closed"
            try:
                await self._connect_and_stream(gen)
            except asyncio.CancelledError:
                raise
            except asyncio.TimeoutError:
                self.state.errors += 1
                reason = "connect_timeout"
                self._log.warning("ws_connect_timeout", timeout_s=self.cfg.open_timeout_s)
            except StaleConnectionError as e:
                self.state.stale_resets += 1
                reason = "stale"
                self._log.warning("ws_stale_reconnect", idle_s=round(e.idle_s, 3), threshold_s=e.threshold_s)
            except SubscriptionError as e:
                self.state.errors += 1
                reason = "subscription_error"
                self._log.warning("ws_subscription_error", err=str(e))
            except ConnectionClosed as e:
                reason = self._close_reason or "closed"
                rcvd = getattr(e, "rcvd", None)
                self._log.warning("ws_closed", code=getattr(rcvd, "code", None), reason=getattr(rcvd, "reason", ""))
            except Exception as e:
                self.state.errors += 1
                reason = "error"
                self._log.warning("ws_error", err=str(e) or type(e).__name__)

            if gen != self._gen:
                return
            self._on_closed(gen, reason)
            await self._backoff_wait(gen, reason)

    async def _connect_and_stream(self, gen: int) -> None:
        """
        Opens the transport, subscribes, then streams frames.
        Returns or raises only when the connection is over.
        """
        await self._release_transport()
        self._close_reason = None
        # a start()/reconnect() issued from here on cuts the next backoff short
        self._wake.clear()
        self._transition(gen, Phase.CONNECTING)
        await self.pacer.acquire("connect")
        if gen != self._gen:
            return

        self.state.connect_attempts += 1
        self._log.info("ws_connecting", url=self.cfg.stream_url, attempt=self.state.connect_attempts)
        ws = await asyncio.wait_for(
            ws_connect(
                self.cfg.stream_url,
                open_timeout=self.cfg.open_timeout_s,
                ping_interval=self.cfg.protocol_ping_interval_s,
                ping_timeout=None,
            ),
            timeout=self.cfg.open_timeout_s,
        )
        if gen != self._gen:
            await ws.close()
            return
        self._ws = ws
        try:
            self._on_open(gen)
            await self._subscribe(ws)
            if self.cfg.ping_interval_s:
                self._keepalive = asyncio.create_task(
                    self._keepalive_loop(ws, gen), name=f"kraken-ws-ping-{self.instrument}"
                )
            await self._stream_loop(ws, gen)
        finally:
            self._cancel_keepalive()
            await self._release_transport()

    async def _subscribe(self, ws) -> None:
        await self.pacer.acquire("subscribe")
        await ws.send(json.dumps(parser.subscribe_msg(self.cfg.pair)))
        self.state.subscribe_sends += 1
        self._log.info("ws_subscribe_sent", pair=self.cfg.pair)

    async def _stream_loop(self, ws, gen: int) -> None:
        """Reads frames until the connection ends. Staleness is checked on every idle wake-up."""
        while gen == self._gen:
            try:
                raw = await asyncio.wait_for(ws.recv(), timeout=self.cfg.stale_check_interval_s)
            except asyncio.TimeoutError:
                self._check_stale()
                continue
            self._on_frame(gen, raw)

    async def _keepalive_loop(self, ws, gen: int) -> None:
        try:
            while gen == self._gen:
                await asyncio.sleep(self.cfg.ping_interval_s)
                await self.pacer.acquire("ping")
                if gen != self._gen:
                    return
                await ws.send(json.dumps(parser.ping_msg()))
                self.state.pings_sent += 1
        except ConnectionClosed:
            return
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._log.warning("ws_ping_failed", err=str(e))

    # --------------------------- frame handling ------------------------- #

    def _on_frame(self, gen: int, raw) -> None:
        now = utc_now_s()
        self.state.last_activity_at = now

        msg = parser.decode(raw)
        if msg is None:
            self._log.debug("ws_json_error", snippet=str(raw)[:200])
            return
        frame = parser.classify(msg)

        if frame.kind == "ticker":
            if frame.pair and parser.normalize_pair(frame.pair) != self._norm_pair:
                self._log.debug("ws_unmapped_pair", pair=frame.pair)
                return
            if frame.price is None:
                # malformed / non-finite price: drop silently
                return
            self._record_tick(gen, frame.price, now)
        elif frame.kind == "subscribed":
            self._log.info("ws_subscribed", pair=frame.pair)
            self.state.consecutive_failures = 0
            self.state.backoff_s = self.cfg.min_backoff_s
            self._transition(gen, Phase.SUBSCRIBED)
        elif frame.kind == "sub_error":
            raise SubscriptionError(frame.detail or "unknown")
        elif frame.kind == "system_status":
            self._log.info("ws_system_status", status=frame.detail)
        # heartbeat / other: activity already recorded

    def _record_tick(self, gen: int, price: float, now: float) -> None:
        st = self.state
        if self._conn_last_tick_at:
            gap = max(0.0, now - self._conn_last_tick_at)
            a = self.cfg.ewma_alpha
            st.avg_tick_interval_s = gap if st.avg_tick_interval_s is None else (1 - a) * st.avg_tick_interval_s + a * gap
        self._conn_last_tick_at = now
        st.last_tick_at = now
        st.ticks += 1
        obs = PriceObservation(instrument=self.instrument, price=price, observed_at=now, source="ws")
        self.events.emit(TickReceived(instrument=self.instrument, price=price, source="ws", ts=now))
        if self._on_tick is not None and gen == self._gen:
            try:
                self._on_tick(obs)
            except Exception as e:
                self._log.warning("on_tick_callback_failed", err=str(e))

    def _check_stale(self) -> None:
        idle = utc_now_s() - self.state.last_activity_at
        threshold = self.stale_threshold_s()
        if idle > threshold:
            raise StaleConnectionError(idle, threshold)

    # --------------------------- transitions ---------------------------- #

    def _on_open(self, gen: int) -> None:
        st = self.state
        st.consecutive_failures = 0
        st.backoff_s = self.cfg.min_backoff_s
        st.last_activity_at = utc_now_s()
        st.next_reconnect_at = None
        # outage gaps stay out of the tick-interval average
        self._conn_last_tick_at = 0.0
        self._transition(gen, Phase.OPEN)
        self._log.info("ws_open")

    def _on_closed(self, gen: int, reason: str) -> None:
        st = self.state
        st.closes += 1
        st.consecutive_failures += 1
        st.last_reconnect_reason = reason
        self._cancel_keepalive()
        self._transition(gen, Phase.CLOSED)

    async def _backoff_wait(self, gen: int, reason: str) -> None:
        while not self._budget.take(utc_now_s()):
            pause = self._budget.pause_s(utc_now_s())
            self.state.next_reconnect_at = utc_now_s() + pause
            self._log.warning("reconnect_daily_cap_reached", cap=self._budget.cap, pause_s=round(pause, 1))
            if await self._sleep_or_wake(pause) or gen != self._gen:
                self.state.next_reconnect_at = None
                return

        delay = self.next_delay_s()
        st = self.state
        st.reconnects_scheduled += 1
        st.next_reconnect_at = utc_now_s() + delay
        self.events.emit(ReconnectScheduled(
            instrument=self.instrument, delay_s=delay, reason=reason, failures=st.consecutive_failures,
        ))
        self._log.info(
            "ws_reconnect_scheduled",
            delay_s=round(delay, 3),
            backoff_s=round(st.backoff_s, 3),
            reason=reason,
            failures=st.consecutive_failures,
        )
        await self._sleep_or_wake(delay)
        st.next_reconnect_at = None

    async def _sleep_or_wake(self, delay: float) -> bool:
        """Sleep up to `delay`; True if start()/reconnect() woke us early (even before the sleep began)."""
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=delay)
            return True
        except asyncio.TimeoutError:
            return False

    def _transition(self, gen: int, phase: Phase) -> None:
        if gen == self._gen:
            self._set_phase(phase)

    def _set_phase(self, phase: Phase) -> None:
        prev = self.state.phase
        if prev == phase:
            return
        self.state.phase = phase
        self.events.emit(PhaseChanged(instrument=self.instrument, phase=phase.value, prev=prev.value))
        if self._on_status is not None:
            try:
                self._on_status(phase)
            except Exception as e:
                self._log.warning("on_status_callback_failed", err=str(e))

    # --------------------------- helpers -------------------------------- #

    def _cancel_keepalive(self) -> None:
        task, self._keepalive = self._keepalive, None
        if task is not None and not task.done():
            task.cancel()

    async def _release_transport(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                self._log.debug("ws_close_failed", err=str(e))
