"""
Odds caching.

- tiered_cache: Events/odds tiers with TTLs, single-flight fetches and a background sweep
- history: Movement detection, per-book trends and the retention window
"""

from oddsedge.cache.history import OddsHistory, TrendTracker, detect_movements
from oddsedge.cache.tiered_cache import TieredCache, apply_date_window

__all__ = [
    "OddsHistory",
    "TieredCache",
    "TrendTracker",
    "apply_date_window",
    "detect_movements",
]
