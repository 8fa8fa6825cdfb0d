from __future__ import annotations


class TickerError(Exception):
    """Base class for errors raised inside tickerwatch."""


class ConfigError(TickerError, ValueError):
    """Invalid or missing configuration value."""


class StaleConnectionError(TickerError):
    """No inbound activity on an open connection within the stale threshold."""

    def __init__(self, idle_s: float, threshold_s: float):
        super().__init__(f"no activity for {idle_s:.1f}s (threshold {threshold_s:.1f}s)")
        self.idle_s = idle_s
        self.threshold_s = threshold_s


class SubscriptionError(TickerError):
    """Upstream rejected the subscribe request."""
