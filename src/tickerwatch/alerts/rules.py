# src/tickerwatch/alerts/rules.py
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional

from tickerwatch.errors import ConfigError
from tickerwatch.utils.quiet_hours import QuietHours

@dataclass(slots=True)
class BaselineRule:
    """
    Fire when price has moved >= threshold_pct (percent, not fraction) away
    from the stored rolling baseline.
    - dedup_window_s: min spacing between two alerts for the same direction
    - quiet_hours:    None disables quiet-hours suppression
    """
    threshold_pct: float = 1.0          # ±1%
    dedup_window_s: float = 180.0       # 3 minutes per direction
    quiet_hours: Optional[QuietHours] = field(default_factory=QuietHours)

    def __post_init__(self):
        if self.threshold_pct < 0:
            raise ConfigError(f"threshold_pct must be >= 0, got {self.threshold_pct}")
        if self.dedup_window_s < 0:
            raise ConfigError(f"dedup_window_s must be >= 0, got {self.dedup_window_s}")
