from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass
from typing import Optional

import aiohttp
import structlog

from tickerwatch.errors import ConfigError

log = structlog.get_logger("webhook")

@dataclass(slots=True)
class WebhookConfig:
    url: str
    timeout_s: float = 8.0
    headers: Optional[dict[str, str]] = None

def config_from_env() -> WebhookConfig:
    url = os.getenv("ALERT_WEBHOOK_URL")
    if not url:
        raise ConfigError("missing ALERT_WEBHOOK_URL")
    return WebhookConfig(url=url)

class WebhookNotifier:
    """
    POSTs {"message": text} as JSON to a relay endpoint (e.g. a serverless
    function that forwards to a chat app). Single attempt; any non-2xx or
    network error is logged and reported as False.
    """
    def __init__(self, cfg: WebhookConfig, session: Optional[aiohttp.ClientSession] = None):
        self.cfg = cfg
        self._session = session
        self._owns_session = session is None

    async def start(self):
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.cfg.timeout_s))
            self._owns_session = True

    async def stop(self):
        if self._session and self._owns_session:
            await self._session.close()
        self._session = None

    async def send(self, message: str) -> bool:
        if self._session is None:
            await self.start()
        try:
            async with self._session.post(self.cfg.url, json={"message": message}, headers=self.cfg.headers) as resp:
                if 200 <= resp.status < 300:
                    return True
                body = await resp.text()
                log.warning("webhook_send_failed", status=resp.status, body=body[:300])
                return False
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            log.warning("webhook_network_error", err=str(e))
            return False
