from __future__ import annotations
from datetime import datetime
from zoneinfo import ZoneInfo

from tickerwatch.alerts.evaluator import Fire, Suppressed

def _fmt_ts(ts_s: float, tz_name: str) -> str:
    tz = ZoneInfo(tz_name)
    return datetime.fromtimestamp(ts_s, tz).strftime("%Y-%m-%d %H:%M:%S %Z")  # e.g., 2026-10-19 14:02:11 PDT

def fmt_usd(v: float) -> str:
    sign = "-" if v < 0 else ""
    return f"{sign}${abs(v):,.2f}"

def format_fire(symbol: str, f: Fire, ts: float, tz_name: str = "America/Los_Angeles") -> str:
    arrow = "+" if f.direction == "up" else "-"
    return (
        f"⚡ {symbol} {f.direction} {arrow}{abs(f.delta_pct):.2f}% (Δ {fmt_usd(f.delta_usd)})\n"
        f"Price: {fmt_usd(f.price)}\n"
        f"Prior baseline: {fmt_usd(f.prior_baseline)}\n"
        f"Time: {_fmt_ts(ts, tz_name)}"
    )

def format_suppressed(symbol: str, s: Suppressed, ts: float, tz_name: str = "America/Los_Angeles") -> str:
    if s.reason == "quiet-hours":
        return (
            f"(quiet hours) {symbol} move {s.delta_pct:+.2f}% (Δ {fmt_usd(s.delta_usd)}), "
            f"baseline {fmt_usd(s.prior_baseline)} → {fmt_usd(s.price)} @ {_fmt_ts(ts, tz_name)}"
        )
    return f"(dedup) {symbol} {s.direction} {s.delta_pct:+.2f}% held back, already alerted within window"
