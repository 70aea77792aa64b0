"""
Odds history: movements and per-book trends.

Every fresh odds snapshot is compared with the last retained snapshot
for the same source key and market set. Price changes of at least the
movement threshold become Movement records, and each book's prices are
scored against the cross-book average to build a running picture of
which books tend to hang the best numbers.

Snapshots and movements older than the retention window are dropped on
every write.
"""

from collections import deque
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Optional

import structlog

from oddsedge.config import CacheSettings
from oddsedge.models.schemas import (
    BookTrend,
    HistoricalWindow,
    Movement,
    OddsSnapshot,
    TrendSummary,
    ValueSighting,
)

logger = structlog.get_logger()

PriceKey = tuple[str, str, str, str, Optional[float]]  # event, book, market, selection, point


def _price_index(snapshot: OddsSnapshot) -> dict[PriceKey, tuple[float, str]]:
    index: dict[PriceKey, tuple[float, str]] = {}
    for row in snapshot.rows:
        for book in row.bookmakers:
            for market in book.markets:
                for outcome in market.outcomes:
                    key = (row.event_id, book.key, market.key, outcome.selection, outcome.point)
                    index[key] = (outcome.price, row.matchup)
    return index


def american_distance(previous: float, current: float) -> float:
    """
    Signed move between two American prices.

    Prices are mapped onto a continuous scale first, so -105 to +105 is
    a 10 point move rather than 210.
    """
    def continuous(price: float) -> float:
        return price - 100 if price > 0 else price + 100

    return continuous(current) - continuous(previous)


def detect_movements(
    previous: OddsSnapshot,
    current: OddsSnapshot,
    threshold: float,
    detected_at: datetime,
) -> list[Movement]:
    """
    Significant price changes for outcomes present in both snapshots.

    ``delta`` is measured with ``american_distance``, not ``current - previous``.
    A raw difference would turn -105 to +105 into a 210 point move that
    clears any threshold, while the real change in price is 10 points.
    ``previous_price`` and ``current_price`` keep the quoted values.
    """
    before = _price_index(previous)
    movements = []
    for key, (price, matchup) in _price_index(current).items():
        if key not in before:
            continue
        previous_price = before[key][0]
        delta = american_distance(previous_price, price)
        if abs(delta) < threshold:
            continue

        event_id, book, market, selection, point = key
        movements.append(Movement(
            event_id=event_id,
            matchup=matchup,
            bookmaker=book,
            market=market,
            outcome=selection,
            point=point,
            previous_price=previous_price,
            current_price=price,
            delta=delta,
            direction="up" if delta > 0 else "down",
            pct_change=round(delta / abs(previous_price) * 100, 2),
            detected_at=detected_at,
        ))
    return movements


class TrendTracker:
    """Per-book comparison against the market average, accumulated across snapshots."""

    def __init__(self, value_edge: float = 0.02, max_value_opportunities: int = 50):
        self.value_edge = value_edge
        self.max_value_opportunities = max_value_opportunities

        self._books: dict[str, dict[str, BookTrend]] = {}
        self._snapshots: dict[str, int] = {}
        self._values: dict[str, deque[ValueSighting]] = {}
        self._updated_at: dict[str, datetime] = {}

    def update(self, source_key: str, snapshot: OddsSnapshot, now: datetime) -> None:
        books = self._books.setdefault(source_key, {})
        values = self._values.setdefault(source_key, deque(maxlen=self.max_value_opportunities))

        for row in snapshot.rows:
            quotes: dict[tuple, list[tuple[str, float, float]]] = {}
            for book in row.bookmakers:
                for market in book.markets:
                    for outcome in market.outcomes:
                        key = (market.key, outcome.selection, outcome.point)
                        quotes.setdefault(key, []).append(
                            (book.key, outcome.price, outcome.decimal_odds)
                        )

            for (market_key, selection, point), prices in quotes.items():
                if len(prices) < 2:
                    continue
                average = sum(p[2] for p in prices) / len(prices)
                for book_key, price, decimal in prices:
                    edge = decimal / average - 1
                    books.setdefault(book_key, BookTrend(bookmaker=book_key)).record(edge)
                    if edge >= self.value_edge:
                        values.append(ValueSighting(
                            event_id=row.event_id,
                            matchup=row.matchup,
                            bookmaker=book_key,
                            market=market_key,
                            outcome=selection,
                            point=point,
                            price=price,
                            market_average_decimal=average,
                            edge=edge,
                            seen_at=now,
                        ))

        self._snapshots[source_key] = self._snapshots.get(source_key, 0) + 1
        self._updated_at[source_key] = now

    def summary(
        self,
        sport: str,
        source_keys: list[str],
        min_snapshots: int = 2,
    ) -> Optional[TrendSummary]:
        """
        Trend statistics across a sport's source keys.

        Returns None until ``min_snapshots`` snapshots have been analysed.
        """
        keys = [k for k in source_keys if k in self._snapshots]
        analyzed = sum(self._snapshots[k] for k in keys)
        if analyzed < min_snapshots:
            return None

        merged: dict[str, BookTrend] = {}
        for key in keys:
            for trend in self._books.get(key, {}).values():
                combined = merged.get(trend.bookmaker)
                if combined is None:
                    merged[trend.bookmaker] = replace(trend)
                    continue
                total = combined.total_comparisons + trend.total_comparisons
                combined.average_edge = (
                    combined.average_edge * combined.total_comparisons
                    + trend.average_edge * trend.total_comparisons
                ) / total
                combined.total_comparisons = total
                combined.times_beat_average += trend.times_beat_average

        values = sorted(
            (v for key in keys for v in self._values.get(key, ())),
            key=lambda v: v.seen_at,
        )
        return TrendSummary(
            sport=sport,
            books=tuple(sorted(merged.values(), key=lambda t: t.value_percentage, reverse=True)),
            snapshots_analyzed=analyzed,
            value_opportunities=tuple(values[-self.max_value_opportunities:]),
            updated_at=max(self._updated_at[k] for k in keys),
        )

    def prune_values(self, cutoff: datetime) -> None:
        for source_key, values in self._values.items():
            self._values[source_key] = deque(
                (v for v in values if v.seen_at >= cutoff),
                maxlen=self.max_value_opportunities,
            )


class OddsHistory:
    """
    Rolling window of snapshots and movements per source key, plus trends.

    History is keyed by upstream source key; a sport's view aggregates the
    keys behind it (e.g. NFL covers the regular season and preseason keys).
    """

    def __init__(self, settings: Optional[CacheSettings] = None):
        self.settings = settings or CacheSettings()
        self.trends = TrendTracker(
            value_edge=self.settings.trend_value_edge,
            max_value_opportunities=self.settings.max_value_opportunities,
        )
        self.logger = logger.bind(component="odds_history")

        self._snapshots: dict[str, deque[OddsSnapshot]] = {}
        self._movements: dict[str, list[Movement]] = {}

    def latest(self, source_key: str, markets: tuple[str, ...]) -> Optional[OddsSnapshot]:
        """Most recent retained snapshot for a source key and market set."""
        for snapshot in reversed(self._snapshots.get(source_key, ())):
            if snapshot.markets == markets:
                return snapshot
        return None

    def record(self, source_key: str, snapshot: OddsSnapshot, now: datetime) -> list[Movement]:
        """Store a fresh snapshot; returns movements against the last retained one."""
        self.prune(now)
        previous = self.latest(source_key, snapshot.markets)

        movements: list[Movement] = []
        if previous is not None:
            movements = detect_movements(previous, snapshot, self.settings.movement_threshold, now)
            if movements:
                self.logger.info(
                    "Odds movement detected",
                    source_key=source_key,
                    count=len(movements),
                    largest=max(abs(m.delta) for m in movements),
                )

        self._snapshots.setdefault(
            source_key, deque(maxlen=self.settings.max_snapshots_per_sport)
        ).append(snapshot)
        self._movements.setdefault(source_key, []).extend(movements)
        self.trends.update(source_key, snapshot, now)
        return movements

    def prune(self, now: datetime) -> None:
        """Drop snapshots, movements and value sightings older than the retention window."""
        cutoff = now - timedelta(seconds=self.settings.history_retention_seconds)
        for snapshots in self._snapshots.values():
            while snapshots and snapshots[0].fetched_at < cutoff:
                snapshots.popleft()
        for source_key, movements in self._movements.items():
            self._movements[source_key] = [m for m in movements if m.detected_at >= cutoff]
        self.trends.prune_values(cutoff)

    def movements(self, source_keys: list[str]) -> list[Movement]:
        found = [m for key in source_keys for m in self._movements.get(key, [])]
        return sorted(found, key=lambda m: m.detected_at)

    def trend_summary(self, sport: str, source_keys: list[str]) -> Optional[TrendSummary]:
        return self.trends.summary(sport, source_keys, self.settings.min_trend_snapshots)

    def window(
        self,
        sport: str,
        source_keys: list[str],
        hours: float,
        now: datetime,
    ) -> Optional[HistoricalWindow]:
        """Snapshots and movements within the last ``hours``; None with no history."""
        if not any(self._snapshots.get(key) for key in source_keys):
            return None
        cutoff = now - timedelta(hours=hours)
        snapshots = sorted(
            (s for key in source_keys for s in self._snapshots.get(key, ()) if s.fetched_at >= cutoff),
            key=lambda s: s.fetched_at,
        )
        return HistoricalWindow(
            sport=sport,
            hours=hours,
            snapshots=tuple(snapshots),
            movements=tuple(m for m in self.movements(source_keys) if m.detected_at >= cutoff),
        )

    def stats(self) -> dict:
        return {
            "history_keys": len(self._snapshots),
            "snapshots_retained": sum(len(s) for s in self._snapshots.values()),
            "movements_tracked": sum(len(m) for m in self._movements.values()),
        }
