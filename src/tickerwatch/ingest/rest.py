from __future__ import annotations

import asyncio
from typing import Optional

import aiohttp
import structlog

from tickerwatch.ingest.parser import parse_ticker_payload

log = structlog.get_logger("kraken_rest")

KRAKEN_REST_TICKER_URL = "https://api.kraken.com/0/public/Ticker"


def rest_pair(ws_pair: str) -> str:
    """'XBT/USD' -> 'XBTUSD' (the REST API takes the slash-less form)."""
    return ws_pair.replace("/", "")


async def fetch_last_price(
    session: aiohttp.ClientSession,
    ws_pair: str,
    url: str = KRAKEN_REST_TICKER_URL,
) -> Optional[float]:
    """
    One-shot REST ticker read so a price is available before the WebSocket
    subscription is up. Returns None on any failure (logged); never raises
    except for cancellation.

    Response shape:
      {"error": [], "result": {"XXBTZUSD": {"a": [...], "b": [...], "c": ["50000.0", "0.01"], ...}}}
    """
    try:
        async with session.get(url, params={"pair": rest_pair(ws_pair)}) as resp:
            if resp.status != 200:
                log.warning("rest_bootstrap_http_error", status=resp.status, pair=ws_pair)
                return None
            data = await resp.json(content_type=None)
    except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
        log.warning("rest_bootstrap_failed", err=str(e), pair=ws_pair)
        return None

    if not isinstance(data, dict):
        log.warning("rest_bootstrap_bad_shape", pair=ws_pair)
        return None
    if data.get("error"):
        log.warning("rest_bootstrap_api_error", errors=data.get("error"), pair=ws_pair)
        return None
    result = data.get("result") or {}
    if not isinstance(result, dict) or not result:
        log.warning("rest_bootstrap_empty", pair=ws_pair)
        return None
    payload = next(iter(result.values()))
    px = parse_ticker_payload(payload)
    if px is None:
        log.warning("rest_bootstrap_bad_price", pair=ws_pair)
    return px
