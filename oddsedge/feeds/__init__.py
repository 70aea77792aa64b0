"""
Odds data feeds.

- base: PriceSource protocol and FetchResult
- odds_api: The Odds API (aggregates 40+ bookmakers, free tier available)
- strategies: Ordered fallback chain for odds requests
"""

from oddsedge.feeds.base import FetchResult, PriceSource
from oddsedge.feeds.odds_api import OddsAPIFeed
from oddsedge.feeds.strategies import FetchStrategy, build_odds_strategies, run_strategies

__all__ = [
    "FetchResult",
    "FetchStrategy",
    "OddsAPIFeed",
    "PriceSource",
    "build_odds_strategies",
    "run_strategies",
]
