"""
Sportsbook odds edge engine.

Caches upstream odds and derives betting signals from them:
- cache/: Tiered event/odds cache with movement and trend tracking
- engine/: Odds normalization, EV estimation, arbitrage and middle detection
- feeds/: Price sources (The Odds API) and fetch fallback strategies
- models/: Snapshot schemas and upstream payload validation
"""

__version__ = "0.1.0"
