"""
Tiered odds cache.

Tiers:
- events: upcoming schedule per sport, long TTL (1 hour)
- odds: snapshot per upstream sport key + market list, short TTL (5 minutes)
- history: rolling snapshots, movements and per-book trends (7 days)

Upstream quota is the scarce resource, so:
- concurrent misses for one key share a single in-flight fetch
- a failed refresh serves the expired entry while it is within the stale
  grace window, otherwise an empty result (nothing is stored)
- entries are replaced whole, never mutated, so readers never see a
  half-written snapshot

A background task sweeps expired entries, enforces the per-tier size cap
and prunes history on a fixed interval.
"""

import asyncio
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Generic, Iterable, Optional, TypeVar, Union

import structlog

from oddsedge.config import CacheSettings, FeedSettings
from oddsedge.cache.history import OddsHistory
from oddsedge.feeds.base import PriceSource
from oddsedge.feeds.odds_api import regions_for
from oddsedge.feeds.strategies import build_odds_strategies, run_strategies, with_timeout
from oddsedge.models.schemas import (
    Event,
    HistoricalWindow,
    OddsSnapshot,
    Sport,
    TrendSummary,
)

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    value: T
    stored_at: datetime


def resolve_sport(sport: Union[Sport, str]) -> Sport:
    if isinstance(sport, Sport):
        return sport
    resolved = Sport.from_string(sport)
    if resolved is None:
        raise ValueError(f"Unknown sport: {sport}")
    return resolved


def sport_name(source_key: str) -> str:
    sport = Sport.from_source_key(source_key)
    return sport.value if sport else source_key


def apply_date_window(
    events: list[Event],
    now: datetime,
    settings: CacheSettings,
) -> list[Event]:
    """
    Prefer events in the next week; widen to a month when the week is thin.

    Events without a start time always pass. If nothing falls inside the
    wide window either, every event is returned unfiltered.
    """
    def within(days: int) -> list[Event]:
        horizon = now + timedelta(days=days)
        return [
            e for e in events
            if e.commence_time is None or now <= e.commence_time <= horizon
        ]

    windowed = within(settings.date_window_days)
    if len(windowed) < settings.min_events_in_window:
        windowed = within(settings.wide_date_window_days)
    if not windowed:
        return list(events)
    return windowed


class TieredCache:
    """
    Explicitly constructed cache in front of a PriceSource.

    Usage:
        cache = TieredCache(source, settings.cache, settings.feed)
        await cache.start()  # Background sweep

        events = await cache.get_events(Sport.NFL)
        snapshot = await cache.get_odds(events, ["h2h", "spreads", "totals"])
    """

    def __init__(
        self,
        source: PriceSource,
        settings: Optional[CacheSettings] = None,
        feed_settings: Optional[FeedSettings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.source = source
        self.settings = settings or CacheSettings()
        self.feed_settings = feed_settings or FeedSettings()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

        self.history = OddsHistory(self.settings)
        self.logger = logger.bind(component="tiered_cache")

        # Tiers
        self._events: dict[str, CacheEntry[tuple[Event, ...]]] = {}
        self._odds: dict[str, CacheEntry[OddsSnapshot]] = {}
        self._in_flight: dict[str, asyncio.Future] = {}

        # Background sweep
        self._running = False
        self._cleanup_task: Optional[asyncio.Task] = None

        # Stats
        self._hits = 0
        self._misses = 0
        self._stale_served = 0
        self._coalesced = 0
        self._upstream_fetches = 0
        self._upstream_failures = 0
        self._evictions = 0
        self._sweeps = 0

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Start the periodic sweep."""
        if self._cleanup_task:
            return
        self._running = True
        self._cleanup_task = asyncio.create_task(self._cleanup_loop())
        self.logger.info("Cache sweep started", interval=self.settings.cleanup_interval_seconds)

    async def stop(self) -> None:
        """Stop the periodic sweep."""
        self._running = False
        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

    async def _cleanup_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.settings.cleanup_interval_seconds)
                self.sweep()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.logger.error("Cache sweep failed", error=str(e))

    # =========================================================================
    # Freshness
    # =========================================================================

    def _age_seconds(self, entry: CacheEntry) -> float:
        return (self.clock() - entry.stored_at).total_seconds()

    def _is_fresh(self, entry: Optional[CacheEntry], ttl: float) -> bool:
        return entry is not None and self._age_seconds(entry) <= ttl

    def _serve_stale(self, tier: dict[str, CacheEntry], key: str, ttl: float, empty):
        """Fallback after a failed refresh."""
        entry = tier.get(key)
        if (
            entry is not None
            and self.settings.serve_stale_on_error
            and self._age_seconds(entry) <= ttl + self.settings.stale_grace_seconds
        ):
            self._stale_served += 1
            self.logger.warning(
                "Serving stale cache entry",
                key=key,
                age_seconds=round(self._age_seconds(entry)),
            )
            return entry.value
        return empty

    async def _single_flight(self, key: str, fetch: Callable[[], Awaitable[T]]) -> T:
        """Collapse concurrent misses for ``key`` into one fetch."""
        pending = self._in_flight.get(key)
        if pending is not None:
            self._coalesced += 1
            return await asyncio.shield(pending)

        task = asyncio.ensure_future(fetch())
        self._in_flight[key] = task

        def _done(finished: asyncio.Future) -> None:
            if self._in_flight.get(key) is finished:
                del self._in_flight[key]

        task.add_done_callback(_done)
        return await asyncio.shield(task)

    # =========================================================================
    # Events tier
    # =========================================================================

    async def get_events(self, sport: Union[Sport, str]) -> list[Event]:
        """Upcoming events for a sport, fetched at most once per event TTL."""
        sport = resolve_sport(sport)
        entry = self._events.get(sport.value)
        if self._is_fresh(entry, self.settings.event_ttl_seconds):
            self._hits += 1
            return list(entry.value)

        self._misses += 1
        events = await self._single_flight(
            f"events:{sport.value}", lambda: self._refresh_events(sport)
        )
        return list(events)

    async def _refresh_events(self, sport: Sport) -> tuple[Event, ...]:
        collected: list[Event] = []
        succeeded = False

        for source_key in sport.source_keys:
            self._upstream_fetches += 1
            result = await with_timeout(
                lambda: self.source.fetch_events(source_key),
                self.feed_settings.fetch_timeout_seconds,
                source_key,
            )
            if not result.ok:
                self.logger.warning(
                    "Event fetch failed",
                    sport=sport.value,
                    source_key=source_key,
                    error=str(result.error),
                )
                continue

            succeeded = True
            collected.extend(result.data)
            if len(collected) >= self.settings.min_events_per_fetch:
                break

        if not succeeded:
            self._upstream_failures += 1
            return self._serve_stale(
                self._events, sport.value, self.settings.event_ttl_seconds, ()
            )

        now = self.clock()
        events = tuple(
            e if e.cached_at else replace(e, cached_at=now)
            for e in apply_date_window(collected, now, self.settings)
        )
        self._events[sport.value] = CacheEntry(events, now)
        self._enforce_cap(self._events)

        self.logger.info(
            "Events cached",
            sport=sport.value,
            fetched=len(collected),
            kept=len(events),
        )
        return events

    # =========================================================================
    # Odds tier
    # =========================================================================

    @staticmethod
    def odds_key(source_key: str, markets: Iterable[str]) -> str:
        return f"odds:{source_key}:{','.join(sorted(set(markets)))}"

    async def get_odds(self, events: Iterable[Event], markets: Iterable[str]) -> OddsSnapshot:
        """
        Odds for ``events``, one cached snapshot per upstream sport key.

        Rows are re-filtered to the requested events, since an upstream
        fetch returns every event for the sport key.
        """
        events = list(events)
        market_list = sorted(set(markets))

        groups: dict[str, list[Event]] = {}
        for event in events:
            groups.setdefault(event.sport_key, []).append(event)

        label = sport_name(events[0].sport_key) if events else ""
        if not groups:
            return OddsSnapshot.merge(label, [], market_list, self.clock())

        source_keys = list(groups)
        parts = await asyncio.gather(*(
            self._odds_for_source(source_key, market_list) for source_key in source_keys
        ))
        filtered = [
            part.filter_events(groups[source_key])
            for source_key, part in zip(source_keys, parts)
        ]
        return OddsSnapshot.merge(label, filtered, market_list, self.clock())

    async def _odds_for_source(self, source_key: str, markets: list[str]) -> OddsSnapshot:
        key = self.odds_key(source_key, markets)
        entry = self._odds.get(key)
        if self._is_fresh(entry, self.settings.odds_ttl_seconds):
            self._hits += 1
            return entry.value

        self._misses += 1
        return await self._single_flight(
            key, lambda: self._refresh_odds(key, source_key, markets)
        )

    async def _refresh_odds(self, key: str, source_key: str, markets: list[str]) -> OddsSnapshot:
        self._upstream_fetches += 1
        result = await run_strategies(
            self.source,
            source_key,
            build_odds_strategies(markets),
            regions_for(source_key, self.feed_settings),
            self.feed_settings.fetch_timeout_seconds,
        )

        now = self.clock()
        if not result.ok:
            self._upstream_failures += 1
            empty = OddsSnapshot(
                sport=sport_name(source_key),
                source_key=source_key,
                markets=tuple(markets),
                rows=(),
                fetched_at=now,
            )
            return self._serve_stale(self._odds, key, self.settings.odds_ttl_seconds, empty)

        rows = tuple(
            row if row.source_key == source_key else replace(row, source_key=source_key)
            for row in result.data
        )
        snapshot = OddsSnapshot(
            sport=sport_name(source_key),
            source_key=source_key,
            markets=tuple(markets),
            rows=rows,
            fetched_at=now,
        )

        self._odds[key] = CacheEntry(snapshot, now)
        self.history.record(source_key, snapshot, now)
        self._enforce_cap(self._odds)

        self.logger.info(
            "Odds cached",
            source_key=source_key,
            strategy=result.strategy,
            events=len(rows),
        )
        return snapshot

    # =========================================================================
    # History
    # =========================================================================

    def get_trends(self, sport: Union[Sport, str]) -> Optional[TrendSummary]:
        """Per-book trend statistics, or None with insufficient history."""
        sport = resolve_sport(sport)
        return self.history.trend_summary(sport.value, sport.source_keys)

    def get_historical_data(self, sport: Union[Sport, str], hours: float = 24) -> Optional[HistoricalWindow]:
        sport = resolve_sport(sport)
        return self.history.window(sport.value, sport.source_keys, hours, self.clock())

    # =========================================================================
    # Eviction
    # =========================================================================

    def _enforce_cap(self, tier: dict[str, CacheEntry]) -> None:
        overflow = len(tier) - self.settings.max_entries
        if overflow <= 0:
            return
        oldest = sorted(tier, key=lambda k: tier[k].stored_at)[:overflow]
        for key in oldest:
            del tier[key]
        self._evictions += len(oldest)

    def sweep(self) -> int:
        """Remove entries past their stale grace window and prune history."""
        removed = 0
        for tier, ttl in (
            (self._events, self.settings.event_ttl_seconds),
            (self._odds, self.settings.odds_ttl_seconds),
        ):
            limit = ttl + self.settings.stale_grace_seconds
            expired = [k for k, entry in tier.items() if self._age_seconds(entry) > limit]
            for key in expired:
                del tier[key]
            removed += len(expired)
            self._enforce_cap(tier)

        self.history.prune(self.clock())
        self._sweeps += 1
        if removed:
            self.logger.debug("Cache sweep", removed=removed)
        return removed

    def clear(self) -> None:
        self._events.clear()
        self._odds.clear()

    # =========================================================================
    # Metrics
    # =========================================================================

    def get_statistics(self) -> dict:
        """Cache health and effectiveness counters."""
        lookups = self._hits + self._misses
        return {
            "events_cached": len(self._events),
            "odds_cached": len(self._odds),
            "cached_event_count": sum(len(e.value) for e in self._events.values()),
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": self._hits / lookups if lookups else 0.0,
            "stale_served": self._stale_served,
            "coalesced_waits": self._coalesced,
            "in_flight": len(self._in_flight),
            "upstream_fetches": self._upstream_fetches,
            "upstream_failures": self._upstream_failures,
            "evictions": self._evictions,
            "sweeps": self._sweeps,
            **self.history.stats(),
        }
