from __future__ import annotations

import asyncio
import os
import random
from dataclasses import dataclass
from typing import Optional

import aiohttp
import structlog

from tickerwatch.errors import ConfigError
from tickerwatch.utils.time import loop_now_s

log = structlog.get_logger("telegram")

# --------- small rate limiter (token bucket) ----------

class RateLimiter:
    def __init__(self, rate_per_sec: float, burst: int = 1):
        self.rate = float(rate_per_sec)
        self.capacity = int(burst)
        self.tokens = float(burst)
        self.updated = loop_now_s()
        self._lock = asyncio.Lock()

    async def acquire(self):
        async with self._lock:
            now = loop_now_s()
            # refill
            self.tokens = min(self.capacity, self.tokens + (now - self.updated) * self.rate)
            self.updated = now
            # wait if no token
            if self.tokens < 1.0:
                needed = 1.0 - self.tokens
                await asyncio.sleep(needed / self.rate)
                self.updated = loop_now_s()
                self.tokens = 1.0
            self.tokens -= 1.0

# --------- config & client ----------

@dataclass(slots=True)
class TelegramConfig:
    bot_token: str
    chat_id: str                # personal chat id or group id
    parse_mode: Optional[str] = None  # "HTML" or "MarkdownV2" or None
    timeout_s: float = 8.0
    per_chat_rate_per_sec: float = 1.0
    per_chat_burst: int = 3
    max_retries: int = 3
    initial_backoff_s: float = 0.5
    max_backoff_s: float = 8.0
    api_base: str = "https://api.telegram.org"

def config_from_env() -> TelegramConfig:
    """Build from TELEGRAM_BOT_TOKEN / TELEGRAM_CHAT_ID; raises ConfigError if either is missing."""
    token = os.getenv("TELEGRAM_BOT_TOKEN")
    chat_id = os.getenv("TELEGRAM_CHAT_ID")
    if not token or not chat_id:
        raise ConfigError("missing TELEGRAM_BOT_TOKEN or TELEGRAM_CHAT_ID")
    return TelegramConfig(bot_token=token, chat_id=chat_id, parse_mode=os.getenv("TELEGRAM_PARSE_MODE") or None)

class TelegramNotifier:
    """
    Sends alert text through the Bot API `sendMessage` with rate limiting and
    a bounded retry w/ backoff on 429 / 5xx / network errors.
    send() never raises; it returns True only on HTTP 200 with ok=true.
    """
    def __init__(self, cfg: TelegramConfig, session: Optional[aiohttp.ClientSession] = None):
        self.cfg = cfg
        self._session = session
        self._owns_session = session is None
        self._rl = RateLimiter(rate_per_sec=cfg.per_chat_rate_per_sec, burst=cfg.per_chat_burst)

    async def start(self):
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self.cfg.timeout_s)
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True

    async def stop(self):
        if self._session and self._owns_session:
            await self._session.close()
        self._session = None

    async def send(self, message: str) -> bool:
        if self._session is None:
            await self.start()
        await self._rl.acquire()
        try:
            return await self._send(message)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.error("telegram_send_error", err=str(e))
            return False

    async def _send(self, text: str) -> bool:
        assert self._session is not None
        url = f"{self.cfg.api_base}/bot{self.cfg.bot_token}/sendMessage"
        payload = {"chat_id": self.cfg.chat_id, "text": text}
        if self.cfg.parse_mode:
            payload["parse_mode"] = self.cfg.parse_mode

        backoff = self.cfg.initial_backoff_s
        for attempt in range(1, self.cfg.max_retries + 1):
            try:
                async with self._session.post(url, json=payload) as resp:
                    if resp.status == 200:
                        data = await _maybe_json(resp)
                        if data.get("ok", True):
                            return True
                        log.warning("telegram_not_ok", body=str(data)[:300])
                        return False
                    # 429 or 5xx → retry with backoff
                    detail = await _maybe_text(resp)
                    log.warning("telegram_send_failed", status=resp.status, body=detail[:300], attempt=attempt)
                    if resp.status == 429:
                        # Telegram may include retry_after (seconds)
                        ra = (await _maybe_json(resp)).get("parameters", {}).get("retry_after")
                        if ra:
                            await asyncio.sleep(min(float(ra), self.cfg.max_backoff_s))
                            continue
                    if 500 <= resp.status < 600 or resp.status == 429:
                        await asyncio.sleep(self._jitter(backoff))
                        backoff = min(backoff * 2.0, self.cfg.max_backoff_s)
                        continue
                    # other 4xx: don't retry
                    return False
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                log.warning("telegram_network_error", err=str(e), attempt=attempt)
                await asyncio.sleep(self._jitter(backoff))
                backoff = min(backoff * 2.0, self.cfg.max_backoff_s)
        log.error("telegram_give_up_after_retries", attempts=self.cfg.max_retries)
        return False

    @staticmethod
    def _jitter(base: float) -> float:
        return base * (0.8 + 0.4 * random.random())

async def _maybe_text(resp: aiohttp.ClientResponse) -> str:
    try:
        return await resp.text()
    except (aiohttp.ClientError, UnicodeDecodeError):
        return "<no body>"

async def _maybe_json(resp: aiohttp.ClientResponse) -> dict:
    try:
        data = await resp.json(content_type=None)
    except (aiohttp.ClientError, ValueError):
        return {}
    return data if isinstance(data, dict) else {}
