"""
Configuration settings for the odds edge engine.
Uses pydantic-settings for validation and environment variable loading.

Every tuning constant lives here: cache TTLs, retention windows, movement
threshold, arbitrage safety limits, EV vig estimates and the key-number
tables used to score middles. The values are empirical defaults, not
derived quantities; override them with ``ODDSEDGE_<SECTION>__<FIELD>``
environment variables or a ``.env`` file.
"""

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class FeedSettings(BaseSettings):
    """Settings for the upstream odds source (The Odds API)."""

    api_key: str = Field(default="", description="The Odds API key")
    base_url: str = "https://api.the-odds-api.com/v4"

    # Rate limiting
    requests_per_minute: int = 10  # Conservative for free tier

    # Per-call timeout; a timed out call is treated as a miss
    fetch_timeout_seconds: float = 12.0

    # Regions per sport group
    default_regions: str = "us"
    soccer_regions: str = "us,uk,eu"

    # Bookmakers treated as sharp (their no-vig prices are the best estimate of truth)
    sharp_books: list[str] = Field(default_factory=lambda: [
        "pinnacle",
        "betfair_ex_eu",
        "betfair",
        "circa",
    ])


class CacheSettings(BaseSettings):
    """Tiered cache TTLs, retention and eviction."""

    event_ttl_seconds: float = 3600.0  # 1 hour
    odds_ttl_seconds: float = 300.0  # 5 minutes

    # Expired entries are kept this long past their TTL so they can be
    # served when a refresh fails
    stale_grace_seconds: float = 3600.0
    serve_stale_on_error: bool = True

    # Size cap per tier, oldest entries evicted first
    max_entries: int = 256

    # Background sweep
    cleanup_interval_seconds: float = 600.0

    # History / movements
    history_retention_seconds: float = 7 * 24 * 3600.0  # 7 days
    movement_threshold: float = 10.0  # American odds points
    max_snapshots_per_sport: int = 500

    # Trends
    min_trend_snapshots: int = 2
    trend_value_edge: float = 0.02  # 2% above market average
    max_value_opportunities: int = 50

    # Schedule fetching
    min_events_per_fetch: int = 10
    date_window_days: int = 7
    wide_date_window_days: int = 30
    min_events_in_window: int = 7


class EVSettings(BaseSettings):
    """EV engine thresholds and heuristics."""

    min_ev: float = 0.002  # Final display filter
    prefilter_min_ev: float = -0.05  # Quick-estimate filter
    max_candidates: int = 100
    max_results: int = 20  # Early termination
    batch_size: int = 10

    # Assumed vig when the opposing side is not priced
    vig_estimates: dict[str, float] = Field(default_factory=lambda: {
        "h2h": 0.025,
        "spreads": 0.022,
        "totals": 0.024,
        "player_points": 0.04,
        "player_assists": 0.045,
        "player_rebounds": 0.04,
    })
    default_vig: float = 0.03

    # Opposite-side estimates for advanced metrics when it is not priced
    assumed_moneyline_vig: float = 0.045
    assumed_line_opposite_prob: float = 0.5238  # -110 on spreads/totals
    assumed_prop_vig: float = 0.08

    # Public-bias adjustments applied to the no-vig probability
    heavy_favorite_odds: float = -200.0
    heavy_favorite_factor: float = 0.92
    road_underdog_odds: float = 200.0
    road_underdog_factor: float = 1.08
    over_factor: float = 0.94
    under_factor: float = 1.05

    # Confidence / stake sizing
    base_confidence: float = 0.7
    max_kelly_fraction: float = 0.05

    # Use a sharp book's no-vig price as the base probability when available
    use_sharp_baseline: bool = False


class ArbitrageSettings(BaseSettings):
    """Arbitrage validation limits."""

    safety_buffer: float = 0.015  # 1.5% margin required to absorb slippage
    max_profit_pct: float = 10.0  # Larger margins mean bad data
    max_realistic_decimal: float = 20.0  # Stale or suspended markets above this
    line_epsilon: float = 0.001
    total_stake: float = 100.0
    max_prices_per_selection: int = 3  # Depth searched for 3-way combinations


class MiddleSettings(BaseSettings):
    """Middle detection and key-number tables."""

    min_gap: float = 0.5
    max_gap: float = 20.0
    non_key_probability: float = 0.03
    max_hit_probability: float = 0.15
    stake_per_leg: float = 100.0

    # league -> market -> {final margin or total: hit probability}
    key_numbers: dict[str, dict[str, dict[float, float]]] = Field(default_factory=lambda: {
        "nfl": {
            "spreads": {3: 0.092, 7: 0.085, 10: 0.067, 14: 0.054},
            "totals": {41: 0.078, 44: 0.082, 47: 0.079},
        },
        "ncaaf": {
            "spreads": {3: 0.078, 7: 0.071, 10: 0.055, 14: 0.050},
            "totals": {45: 0.062, 52: 0.060, 55: 0.060},
        },
        "nba": {
            "spreads": {5: 0.071, 10: 0.068, 15: 0.059},
            "totals": {210: 0.076, 215: 0.081, 220: 0.077},
        },
        "mlb": {
            "spreads": {1: 0.089, 2: 0.073},
            "totals": {7: 0.084, 8: 0.087, 9: 0.079},
        },
        "nhl": {
            "spreads": {1: 0.095, 2: 0.078},
            "totals": {5: 0.088, 6: 0.091},
        },
    })


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="ODDSEDGE_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Sub-settings
    feed: FeedSettings = Field(default_factory=FeedSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    ev: EVSettings = Field(default_factory=EVSettings)
    arbitrage: ArbitrageSettings = Field(default_factory=ArbitrageSettings)
    middles: MiddleSettings = Field(default_factory=MiddleSettings)

    # Scan loop
    sports: list[str] = Field(default_factory=lambda: ["NFL", "NBA", "NHL", "MLB"])
    markets: list[str] = Field(default_factory=lambda: ["h2h", "spreads", "totals"])
    scan_interval_seconds: float = 300.0

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}")
        return v.upper()


# Global settings instance, used by the CLI only
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get or create settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """Force reload settings from environment."""
    global _settings
    _settings = Settings()
    return _settings
