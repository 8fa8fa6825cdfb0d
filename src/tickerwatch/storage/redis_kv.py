# src/tickerwatch/storage/redis_kv.py
from __future__ import annotations

import json
from typing import Any, Optional

import structlog
from redis.asyncio import Redis

from tickerwatch.storage.kv import KeyValueStore

log = structlog.get_logger("store_redis")


class RedisStore(KeyValueStore):
    """
    Redis-backed store. Values are JSON strings under `{prefix}{key}`, e.g.
      tw:baseline:XBT/USD        -> {"price": 50000.0, "set_at": 1760000000.0}
      tw:lastAlert:XBT/USD:up    -> 1760000123.4

    Per-key locking is in-process only (see KeyValueStore.lock); run one
    writer process per instrument.
    """
    def __init__(self, redis: Redis, prefix: str = "tw:"):
        super().__init__()
        self.redis = redis
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = "tw:") -> "RedisStore":
        return cls(Redis.from_url(url, decode_responses=True), prefix=prefix)

    def _k(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def get(self, key: str) -> Optional[Any]:
        raw = await self.redis.get(self._k(key))
        if raw is None:
            return None
        if isinstance(raw, (bytes, bytearray)):
            raw = raw.decode("utf-8")
        try:
            return json.loads(raw)
        except ValueError:
            # hand back the raw string; callers validate shapes themselves
            log.warning("store_value_not_json", key=key)
            return raw

    async def set(self, key: str, value: Any) -> None:
        await self.redis.set(self._k(key), json.dumps(value))

    async def delete(self, key: str) -> None:
        await self.redis.delete(self._k(key))

    async def close(self) -> None:
        await self.redis.aclose()
