from __future__ import annotations

import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import Any, Optional

import structlog

log = structlog.get_logger("store")


def baseline_key(instrument: str) -> str:
    return f"baseline:{instrument}"

def last_alert_key(instrument: str, direction: str) -> str:
    return f"lastAlert:{instrument}:{direction}"


class KeyValueStore:
    """
    Small async key-value store for JSON-serializable values.

    Subclasses implement get/set/delete. lock(key) hands out one asyncio.Lock
    per key so that every component sharing this store serializes its
    read-modify-write of that key.
    """
    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}

    def lock(self, key: str) -> asyncio.Lock:
        lk = self._locks.get(key)
        if lk is None:
            lk = asyncio.Lock()
            self._locks[key] = lk
        return lk

    async def get(self, key: str) -> Optional[Any]:
        raise NotImplementedError

    async def set(self, key: str, value: Any) -> None:
        raise NotImplementedError

    async def delete(self, key: str) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class MemoryStore(KeyValueStore):
    """Process-local store (tests, or when durability doesn't matter)."""
    def __init__(self, initial: Optional[dict[str, Any]] = None):
        super().__init__()
        self._data: dict[str, Any] = dict(initial or {})

    async def get(self, key: str) -> Optional[Any]:
        return self._data.get(key)

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStore(KeyValueStore):
    """
    Whole-file JSON store. Every set/delete rewrites the file atomically
    (temp file + os.replace), so state survives restarts and crashes.
    """
    def __init__(self, path: str | os.PathLike):
        super().__init__()
        self.path = Path(path)
        self._data: dict[str, Any] = self._load()
        self._write_lock = asyncio.Lock()

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except (OSError, ValueError) as e:
            log.warning("store_file_unreadable", path=str(self.path), err=str(e))
            return {}
        if not isinstance(data, dict):
            log.warning("store_file_bad_shape", path=str(self.path))
            return {}
        return data

    def _flush(self, snapshot: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=self.path.name, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(snapshot, fh, sort_keys=True)
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    async def _persist(self) -> None:
        async with self._write_lock:
            await asyncio.to_thread(self._flush, dict(self._data))

    async def get(self, key: str) -> Optional[Any]:
        return self._data.get(key)

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = value
        await self._persist()

    async def delete(self, key: str) -> None:
        if self._data.pop(key, None) is not None:
            await self._persist()
