from __future__ import annotations

import os
from typing import Optional

from tickerwatch.alerts.rules import BaselineRule
from tickerwatch.errors import ConfigError
from tickerwatch.ingest.kraken_ws import KRAKEN_WS_URL, KrakenWSConfig
from tickerwatch.storage.kv import JsonFileStore, KeyValueStore, MemoryStore
from tickerwatch.storage.redis_kv import RedisStore
from tickerwatch.tracker import TrackerConfig
from tickerwatch.utils.quiet_hours import DEFAULT_TZ, QuietHours

_TRUE = ("1", "true", "yes", "on")
_FALSE = ("0", "false", "no", "off")

# Kraken's legacy asset codes -> common tickers for display
_DISPLAY_ALIASES = {"XBT": "BTC", "XDG": "DOGE"}


def env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None


def env_int(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None


def env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    v = raw.strip().lower()
    if v in _TRUE:
        return True
    if v in _FALSE:
        return False
    raise ConfigError(f"{name} must be a boolean, got {raw!r}")


def display_symbol(pair: str) -> str:
    """'XBT/USD' -> 'BTC'."""
    base = pair.split("/", 1)[0].strip().upper()
    return _DISPLAY_ALIASES.get(base, base)


def parse_pairs(raw: str) -> list[str]:
    pairs = [p.strip().upper() for p in raw.split(",") if p.strip()]
    if not pairs:
        raise ConfigError("PAIRS is empty")
    for p in pairs:
        if "/" not in p:
            raise ConfigError(f"pair must look like BASE/QUOTE, got {p!r}")
    return pairs


def quiet_hours_from_env() -> Optional[QuietHours]:
    if os.getenv("QUIET_HOURS", "").strip().lower() in _FALSE:
        return None
    return QuietHours(
        start=env_int("QUIET_START", 23),
        end=env_int("QUIET_END", 7),
        tz=os.getenv("QUIET_TZ") or DEFAULT_TZ,
    )


def rule_from_env() -> BaselineRule:
    return BaselineRule(
        threshold_pct=env_float("THRESHOLD_PCT", 1.0),
        dedup_window_s=env_float("DEDUP_WINDOW_S", 180.0),
        quiet_hours=quiet_hours_from_env(),
    )


def trackers_from_env() -> list[TrackerConfig]:
    """One TrackerConfig per entry in PAIRS (default XBT/USD)."""
    url = os.getenv("KRAKEN_WS_URL") or KRAKEN_WS_URL
    cap = env_int("RECONNECT_DAILY_CAP", None)
    if cap is not None and cap <= 0:
        raise ConfigError(f"RECONNECT_DAILY_CAP must be > 0, got {cap}")
    rule = rule_from_env()
    alerts_enabled = env_bool("ALERTS_ENABLED", True)
    rest_bootstrap = env_bool("REST_BOOTSTRAP", True)
    tz = rule.quiet_hours.tz if rule.quiet_hours else (os.getenv("QUIET_TZ") or DEFAULT_TZ)
    out = []
    for pair in parse_pairs(os.getenv("PAIRS", "XBT/USD")):
        out.append(TrackerConfig(
            symbol=display_symbol(pair),
            ws=KrakenWSConfig(pair=pair, stream_url=url, daily_reconnect_cap=cap),
            rule=rule,
            alerts_enabled=alerts_enabled,
            rest_bootstrap=rest_bootstrap,
            display_tz=tz,
        ))
    return out


def store_from_env() -> KeyValueStore:
    kind = (os.getenv("STORE") or "memory").strip().lower()
    if kind == "memory":
        return MemoryStore()
    if kind == "file":
        return JsonFileStore(os.getenv("STORE_PATH") or "tickerwatch-state.json")
    if kind == "redis":
        return RedisStore.from_url(os.getenv("REDIS_URL", "redis://localhost:6379/0"))
    raise ConfigError(f"STORE must be memory, file or redis, got {kind!r}")
