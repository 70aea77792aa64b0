"""
Odds Edge Scanner - Main Entry Point.

Runs the scan loop:
1. Refresh schedules and odds through the tiered cache (The Odds API)
2. Score every outcome for expected value
3. Validate cross-book arbitrage and middles
4. Log what was found, then sleep until the next scan

Usage:
    python -m oddsedge.main

Environment Variables:
    ODDSEDGE_FEED__API_KEY          - Required: The Odds API key
    ODDSEDGE_SPORTS                 - JSON list of sports (default: ["NFL","NBA","NHL","MLB"])
    ODDSEDGE_SCAN_INTERVAL_SECONDS  - Seconds between scans (default: 300)
    ODDSEDGE_LOG_LEVEL              - DEBUG|INFO|WARNING|ERROR (default: INFO)
"""

import asyncio
import signal
import sys
import time
from typing import Optional

import structlog
from dotenv import load_dotenv

from oddsedge.config import Settings, get_settings
from oddsedge.feeds.odds_api import OddsAPIFeed
from oddsedge.models.schemas import ScanResult, Sport
from oddsedge.service import OddsEdgeService
from oddsedge.utils.logging import setup_logging

logger = structlog.get_logger()


class EdgeScanner:
    """Periodically scans configured sports for EV bets, arbitrage and middles."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.logger = logger.bind(component="edge_scanner")

        if not self.settings.feed.api_key:
            self.logger.error("ODDSEDGE_FEED__API_KEY environment variable required")
            raise ValueError("Missing ODDSEDGE_FEED__API_KEY")

        self.sports: list[Sport] = []
        for name in self.settings.sports:
            sport = Sport.from_string(name)
            if sport is None:
                raise ValueError(f"Unknown sport: {name}")
            self.sports.append(sport)

        self.feed = OddsAPIFeed(self.settings.feed)
        self.service = OddsEdgeService(self.feed, self.settings)

        self._running = False
        self._shutdown_event = asyncio.Event()

        # Stats
        self._scans = 0
        self._start_time_ms = 0

    async def start(self) -> None:
        """Start scanning until shutdown."""
        self.logger.info(
            "Starting odds edge scanner",
            sports=[s.value for s in self.sports],
            markets=self.settings.markets,
            interval=self.settings.scan_interval_seconds,
        )
        self._running = True
        self._start_time_ms = int(time.time() * 1000)

        await self.feed.start()
        await self.service.start()
        try:
            await self._scan_loop()
        except asyncio.CancelledError:
            self.logger.info("Scanner cancelled")

        await self.stop()

    async def stop(self) -> None:
        self.logger.info("Stopping scanner...")
        self._running = False
        await self.service.stop()
        await self.feed.stop()

        runtime_seconds = (int(time.time() * 1000) - self._start_time_ms) / 1000
        self.logger.info(
            "Scanner stopped",
            runtime_minutes=round(runtime_seconds / 60, 1),
            scans=self._scans,
            **self.feed.get_metrics(),
        )

    def shutdown(self) -> None:
        """Trigger graceful shutdown."""
        self._shutdown_event.set()
        self._running = False

    # =========================================================================
    # Main Loop
    # =========================================================================

    async def _scan_loop(self) -> None:
        while self._running:
            for sport in self.sports:
                if not self._running:
                    break
                try:
                    result = await self.service.scan(sport)
                    self._report(result)
                except Exception as e:
                    self.logger.error("Scan error", sport=sport.value, error=str(e))

            self._scans += 1
            self.logger.info("Cache statistics", **self.service.get_cache_statistics())

            try:
                await asyncio.wait_for(
                    self._shutdown_event.wait(),
                    timeout=self.settings.scan_interval_seconds,
                )
            except asyncio.TimeoutError:
                pass

    def _report(self, result: ScanResult) -> None:
        if not result.has_data:
            self.logger.info("No data", sport=result.sport, reason=result.reason)
            return

        for arb in result.arbitrage[:5]:
            self.logger.info(
                "ARBITRAGE",
                matchup=arb.matchup,
                market=arb.market_key,
                profit=f"{arb.profit_pct:.2f}%",
                legs=[f"{s.selection} @ {s.bookmaker} ${s.stake:.2f}" for s in arb.stakes],
            )
        for middle in result.middles[:5]:
            self.logger.info(
                "MIDDLE",
                matchup=middle.matchup,
                market=middle.market_key,
                window=f"{middle.window_low:g}-{middle.window_high:g}",
                hit=f"{middle.hit_probability:.1%}",
                ev=f"{middle.expected_value:.2%}",
            )
        for bet in result.ev_bets[:5]:
            self.logger.info(
                "+EV",
                matchup=bet.matchup,
                book=bet.bookmaker,
                market=bet.market_key,
                selection=bet.selection,
                odds=bet.outcome.price,
                ev=f"{bet.expected_value:.2%}",
                kelly=f"{bet.kelly_fraction:.2%}",
                edge=bet.edge_type,
            )


def main():
    """Main entry point."""
    load_dotenv()
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_json)

    try:
        scanner = EdgeScanner(settings)
    except ValueError as e:
        print(f"Configuration error: {e}")
        sys.exit(1)

    def signal_handler(sig, frame):
        print("\nShutdown requested...")
        scanner.shutdown()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        asyncio.run(scanner.start())
    except KeyboardInterrupt:
        print("\nInterrupted")


if __name__ == "__main__":
    main()
