from __future__ import annotations

import json
import math
from dataclasses import dataclass
from typing import Any, Literal, Optional

FrameKind = Literal["subscribed", "sub_error", "heartbeat", "system_status", "ticker", "other"]

@dataclass(frozen=True, slots=True)
class Frame:
    kind: FrameKind
    pair: Optional[str] = None
    price: Optional[float] = None     # only for kind == "ticker"; None when unusable
    detail: Optional[str] = None      # status / error message for logging


def normalize_pair(pair: str) -> str:
    """'XBT/USD', 'xbt-usd', 'XBTUSD' -> 'XBTUSD'."""
    return "".join(ch for ch in pair if ch.isalnum()).upper()


def to_price(raw: Any) -> Optional[float]:
    """Positive finite float, else None."""
    if raw is None or isinstance(raw, bool):
        return None
    try:
        px = float(raw)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(px) or px <= 0.0:
        return None
    return px


def parse_ticker_payload(payload: Any) -> Optional[float]:
    """
    Last price from a Kraken ticker payload.

    Kraken v1 ticker fields are arrays of strings:
      - "c": [last trade price, lot volume]
      - "a": [best ask, whole lot volume, lot volume]
      - "b": [best bid, ...]
    Prefer the last trade, fall back to ask then bid.
    """
    if not isinstance(payload, dict):
        return None
    for field in ("c", "a", "b"):
        arr = payload.get(field)
        if isinstance(arr, (list, tuple)) and arr:
            px = to_price(arr[0])
            if px is not None:
                return px
    return None


def classify(msg: Any) -> Frame:
    """
    Classify one decoded Kraken v1 WebSocket message.

    Examples you will observe:
      {"event":"systemStatus","status":"online","version":"1.9.0"}
      {"event":"subscriptionStatus","status":"subscribed","pair":"XBT/USD","subscription":{"name":"ticker"}}
      {"event":"subscriptionStatus","status":"error","errorMessage":"Currency pair not supported XBT/USDX"}
      {"event":"heartbeat"}
      [340, {"a":["50000.1",1,"1.0"], "b":[...], "c":["50000.0","0.01"], ...}, "ticker", "XBT/USD"]
    """
    if isinstance(msg, list):
        # ticker array form: [channelID, data, channelName, pair]
        if len(msg) >= 4 and msg[-2] == "ticker":
            pair = msg[-1] if isinstance(msg[-1], str) else None
            return Frame("ticker", pair=pair, price=parse_ticker_payload(msg[1]))
        return Frame("other")

    if not isinstance(msg, dict):
        return Frame("other")

    event = msg.get("event")
    if event == "subscriptionStatus":
        status = msg.get("status")
        if status == "subscribed":
            return Frame("subscribed", pair=msg.get("pair"))
        if status == "error":
            return Frame("sub_error", pair=msg.get("pair"), detail=msg.get("errorMessage") or "unknown")
        return Frame("other", pair=msg.get("pair"), detail=status)
    if event in ("heartbeat", "pong"):
        return Frame("heartbeat")
    if event == "systemStatus":
        return Frame("system_status", detail=msg.get("status"))
    return Frame("other")


def decode(raw: str | bytes) -> Any:
    """json.loads that returns None instead of raising on garbage."""
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return None


def subscribe_msg(pair: str) -> dict:
    return {"event": "subscribe", "pair": [pair], "subscription": {"name": "ticker"}}


def ping_msg() -> dict:
    return {"event": "ping"}
