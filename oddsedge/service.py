"""
Public surface of the odds edge engine.

Callers ask for a sport and get back plain data: events, snapshots,
scored bets, arbitrage and middle opportunities, trends and cache
statistics. An empty schedule or empty odds after every fallback is
reported as a NO_DATA scan, so "out of season" is distinguishable from a
failure.
"""

from datetime import datetime, timezone
from typing import Callable, Iterable, Optional, Union

import structlog

from oddsedge.cache.tiered_cache import TieredCache, resolve_sport
from oddsedge.config import Settings
from oddsedge.engine.arbitrage import ArbitrageDetector
from oddsedge.engine.ev import EVEngine
from oddsedge.engine.line_shopping import find_best_lines
from oddsedge.engine.middles import MiddleDetector
from oddsedge.feeds.base import PriceSource
from oddsedge.models.schemas import (
    ArbitrageOpportunity,
    BestLine,
    CandidateBet,
    Event,
    HistoricalWindow,
    MiddleOpportunity,
    OddsSnapshot,
    ScanResult,
    ScanStatus,
    Sport,
    TrendSummary,
)

logger = structlog.get_logger()


class OddsEdgeService:
    """
    Wires the cache, EV engine and detectors around one price source.

    Usage:
        service = OddsEdgeService(feed, settings)
        await service.start()

        snapshot = await service.get_cached_odds(Sport.NBA, ["h2h", "spreads"])
        arbs = service.find_arbitrage(snapshot)
    """

    def __init__(
        self,
        source: PriceSource,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.settings = settings or Settings()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

        self.cache = TieredCache(
            source,
            settings=self.settings.cache,
            feed_settings=self.settings.feed,
            clock=self.clock,
        )
        self.ev_engine = EVEngine(self.settings.ev, sharp_books=self.settings.feed.sharp_books)
        self.arbitrage = ArbitrageDetector(self.settings.arbitrage, clock=self.clock)
        self.middles = MiddleDetector(self.settings.middles, clock=self.clock)

        self.logger = logger.bind(component="service")

    async def start(self) -> None:
        await self.cache.start()

    async def stop(self) -> None:
        await self.cache.stop()

    # =========================================================================
    # Cached data
    # =========================================================================

    async def get_cached_events(self, sport: Union[Sport, str]) -> list[Event]:
        return await self.cache.get_events(sport)

    async def get_cached_odds(
        self,
        sport: Union[Sport, str],
        markets: Optional[Iterable[str]] = None,
    ) -> OddsSnapshot:
        """Odds snapshot for every cached event of a sport."""
        sport = resolve_sport(sport)
        market_list = list(markets) if markets else list(self.settings.markets)
        events = await self.cache.get_events(sport)
        snapshot = await self.cache.get_odds(events, market_list)
        if not events:
            # Keep the requested sport on an empty snapshot
            return OddsSnapshot.merge(sport.value, [], market_list, snapshot.fetched_at)
        return snapshot

    def get_trend_summary(self, sport: Union[Sport, str]) -> Optional[TrendSummary]:
        return self.cache.get_trends(sport)

    def get_historical_data(self, sport: Union[Sport, str], hours: float = 24) -> Optional[HistoricalWindow]:
        return self.cache.get_historical_data(sport, hours)

    def get_cache_statistics(self) -> dict:
        return self.cache.get_statistics()

    # =========================================================================
    # Signals
    # =========================================================================

    def find_positive_ev_bets(
        self,
        snapshot: OddsSnapshot,
        min_ev: Optional[float] = None,
    ) -> list[CandidateBet]:
        return self.ev_engine.find_positive_ev_bets(snapshot, min_ev)

    def find_arbitrage(self, snapshot: OddsSnapshot) -> list[ArbitrageOpportunity]:
        return self.arbitrage.find_arbitrage(snapshot)

    def find_middles(self, snapshot: OddsSnapshot) -> list[MiddleOpportunity]:
        return self.middles.find_middles(snapshot)

    def find_best_lines(self, snapshot: OddsSnapshot) -> list[BestLine]:
        return find_best_lines(snapshot)

    async def scan(
        self,
        sport: Union[Sport, str],
        markets: Optional[Iterable[str]] = None,
        min_ev: Optional[float] = None,
    ) -> ScanResult:
        """Events, odds and every signal for one sport."""
        sport = resolve_sport(sport)
        market_list = list(markets) if markets else list(self.settings.markets)

        events = await self.cache.get_events(sport)
        if not events:
            self.logger.info("No events", sport=sport.value)
            return ScanResult(
                sport=sport.value,
                status=ScanStatus.NO_DATA,
                scanned_at=self.clock(),
                reason="no_events",
            )

        snapshot = await self.cache.get_odds(events, market_list)
        if snapshot.is_empty:
            self.logger.info("No odds", sport=sport.value, events=len(events))
            return ScanResult(
                sport=sport.value,
                status=ScanStatus.NO_DATA,
                scanned_at=self.clock(),
                reason="no_odds",
                events=len(events),
            )

        result = ScanResult(
            sport=sport.value,
            status=ScanStatus.OK,
            scanned_at=self.clock(),
            events=len(events),
            ev_bets=self.find_positive_ev_bets(snapshot, min_ev),
            arbitrage=self.find_arbitrage(snapshot),
            middles=self.find_middles(snapshot),
        )
        self.logger.info(
            "Scan complete",
            sport=sport.value,
            events=result.events,
            ev_bets=len(result.ev_bets),
            arbitrage=len(result.arbitrage),
            middles=len(result.middles),
        )
        return result

    def get_metrics(self) -> dict:
        return {
            "cache": self.get_cache_statistics(),
            "ev": self.ev_engine.get_stats(),
            "arbitrage": self.arbitrage.get_stats(),
            "middles": self.middles.get_stats(),
        }
