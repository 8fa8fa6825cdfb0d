from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Iterator, Optional

import aiohttp
import structlog

from tickerwatch.alerts.notifiers import Notifier
from tickerwatch.errors import ConfigError
from tickerwatch.storage.kv import KeyValueStore
from tickerwatch.tracker import Tracker, TrackerConfig
from tickerwatch.utils.types import HostState

log = structlog.get_logger("registry")


@dataclass(slots=True)
class HostStatus:
    """
    Mutable host visibility/network flags. Calling the instance returns a
    HostState snapshot, so it plugs straight into KrakenTicker(host_state=...).
    """
    visible: bool = True
    online: bool = True

    def __call__(self) -> HostState:
        return HostState(visible=self.visible, online=self.online)


class TrackerRegistry:
    """
    Owns one Tracker per instrument, all sharing a store, a notifier, the host
    status and one HTTP session for REST bootstraps. Instruments are fully
    independent: one tracker's connection trouble never touches another's.
    """
    def __init__(
        self,
        store: KeyValueStore,
        notifier: Optional[Notifier] = None,
        host: Optional[HostStatus] = None,
        http_session: Optional[aiohttp.ClientSession] = None,
    ):
        self.store = store
        self.notifier = notifier
        self.host = host or HostStatus()
        self._trackers: dict[str, Tracker] = {}
        self._http = http_session
        self._owns_http = http_session is None

    def add(self, cfg: TrackerConfig) -> Tracker:
        label = cfg.ws.label
        if label in self._trackers:
            raise ConfigError(f"duplicate instrument: {label}")
        t = Tracker(cfg, self.store, notifier=self.notifier, host_state=self.host, http_session=self._http)
        self._trackers[label] = t
        return t

    def get(self, instrument: str) -> Optional[Tracker]:
        return self._trackers.get(instrument)

    def __iter__(self) -> Iterator[Tracker]:
        return iter(self._trackers.values())

    def __len__(self) -> int:
        return len(self._trackers)

    async def start_all(self) -> None:
        if self._http is None and any(t.cfg.rest_bootstrap for t in self):
            self._http = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=8.0))
        for t in self:
            if t.http_session is None:
                t.http_session = self._http
            await t.start()
        log.info("trackers_started", count=len(self))

    async def stop_all(self) -> None:
        results = await asyncio.gather(*(t.stop() for t in self), return_exceptions=True)
        for t, r in zip(self, results):
            if isinstance(r, Exception):
                log.warning("tracker_stop_failed", instrument=t.instrument, err=str(r))
        if self._owns_http and self._http is not None:
            for t in self:
                if t.http_session is self._http:
                    t.http_session = None
            await self._http.close()
            self._http = None
        log.info("trackers_stopped", count=len(self))

    async def snapshot(self) -> dict[str, dict]:
        return {label: await t.snapshot() for label, t in self._trackers.items()}
