"""
Middle detection.

A middle is two bets on opposite sides of a spread or total at different
lines, e.g. Over 45 at one book and Under 47 at another. A final total of
46 wins both; anything else wins one and loses the other.

Hit probability comes from key-number tables: results such as 3 and 7
in NFL spreads land far more often than their neighbours.
"""

import itertools
import math
from datetime import datetime, timezone
from typing import Callable, Optional

import structlog

from oddsedge.config import MiddleSettings
from oddsedge.models.schemas import (
    EventOdds,
    MarketType,
    MiddleLeg,
    MiddleOpportunity,
    OddsSnapshot,
    key_number_league,
)

logger = structlog.get_logger()


def window_numbers(low: float, high: float) -> list[float]:
    """Whole-number results strictly inside (low, high)."""
    start = math.floor(low) + 1
    numbers = []
    n = start
    while n < high:
        numbers.append(float(n))
        n += 1
    return numbers


class MiddleDetector:
    """Finds positive-EV middles on spreads and totals."""

    def __init__(
        self,
        settings: Optional[MiddleSettings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.settings = settings or MiddleSettings()
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.logger = logger.bind(component="middle_detector")

        self._pairs_checked = 0
        self._middles_found = 0

    # =========================================================================
    # Scoring
    # =========================================================================

    def key_number_table(self, sport_key: str, market_type: MarketType) -> dict:
        league = key_number_league(sport_key)
        if league is None:
            return {}
        family = "spreads" if market_type == MarketType.SPREAD else "totals"
        return self.settings.key_numbers.get(league, {}).get(family, {})

    def hit_probability(
        self,
        numbers: list[float],
        sport_key: str,
        market_type: MarketType,
    ) -> float:
        """Chance the final margin/total lands on one of ``numbers``."""
        table = self.key_number_table(sport_key, market_type)
        probability = 0.0
        for n in numbers:
            key = abs(n)
            probability += table.get(key, self.settings.non_key_probability)
        return min(probability, self.settings.max_hit_probability)

    def expected_value(self, d1: float, d2: float, hit_probability: float) -> float:
        """
        EV per unit staked across both legs.

        A hit wins both legs. A miss wins one leg and loses the other;
        the worse-paying leg is assumed to be the winner.
        """
        stake = self.settings.stake_per_leg
        middle_win = stake * (d1 - 1) + stake * (d2 - 1)
        miss_loss = stake - stake * (min(d1, d2) - 1)
        ev = hit_probability * middle_win - (1 - hit_probability) * miss_loss
        return ev / (2 * stake)

    # =========================================================================
    # Pairing
    # =========================================================================

    def _window(self, leg1: MiddleLeg, leg2: MiddleLeg, market_type: MarketType) -> Optional[tuple[float, float]]:
        """Result window in which both legs win, or None if they are not opposite sides."""
        if market_type == MarketType.TOTAL:
            names = (leg1.selection.lower(), leg2.selection.lower())
            if names == ("over", "under"):
                over, under = leg1, leg2
            elif names == ("under", "over"):
                over, under = leg2, leg1
            else:
                return None
            return over.point, under.point

        if leg1.selection == leg2.selection:
            return None
        # Margin from leg1's team's perspective: leg1 covers above -p1, leg2 covers below p2
        return -leg1.point, leg2.point

    def _market_legs(self, row: EventOdds) -> dict[str, list[MiddleLeg]]:
        by_market: dict[str, list[MiddleLeg]] = {}
        for book in row.bookmakers:
            for market in book.markets:
                if market.market_type not in (MarketType.SPREAD, MarketType.TOTAL):
                    continue
                for outcome in market.outcomes:
                    if outcome.point is None:
                        continue
                    by_market.setdefault(market.key, []).append(MiddleLeg(
                        bookmaker=book.key,
                        selection=outcome.name,
                        point=outcome.point,
                        price=outcome.price,
                        decimal_odds=outcome.decimal_odds,
                    ))
        return by_market

    def find_for_event(self, row: EventOdds) -> list[MiddleOpportunity]:
        sport_key = row.source_key or row.sport_key
        best: dict[tuple, MiddleOpportunity] = {}

        for market_key, legs in self._market_legs(row).items():
            market_type = MarketType.from_key(market_key)
            for leg1, leg2 in itertools.combinations(legs, 2):
                if leg1.bookmaker == leg2.bookmaker:
                    continue
                self._pairs_checked += 1

                window = self._window(leg1, leg2, market_type)
                if window is None:
                    continue
                low, high = window
                gap = high - low
                if gap <= self.settings.min_gap or gap > self.settings.max_gap:
                    continue

                numbers = window_numbers(low, high)
                hit = self.hit_probability(numbers, sport_key, market_type)
                ev = self.expected_value(leg1.decimal_odds, leg2.decimal_odds, hit)
                if ev <= 0:
                    continue

                ordered = (leg1, leg2)
                if market_type == MarketType.TOTAL and leg1.selection.lower() != "over":
                    ordered = (leg2, leg1)
                key = (market_key,) + tuple((leg.selection, leg.point) for leg in ordered)
                opportunity = MiddleOpportunity(
                    opportunity_id=(
                        f"middle_{row.event_id}_{market_key}_{low:g}_{high:g}_"
                        f"{ordered[0].bookmaker}_{ordered[1].bookmaker}"
                    ),
                    event_id=row.event_id,
                    sport_key=sport_key,
                    matchup=row.matchup,
                    market_key=market_key,
                    legs=ordered,
                    window_low=low,
                    window_high=high,
                    gap=gap,
                    middle_numbers=tuple(numbers),
                    hit_probability=hit,
                    expected_value=ev,
                    detected_at=self.clock(),
                    commence_time=row.commence_time,
                )
                current = best.get(key)
                if current is None or opportunity.expected_value > current.expected_value:
                    best[key] = opportunity

        return list(best.values())

    def find_middles(self, snapshot: OddsSnapshot) -> list[MiddleOpportunity]:
        """
        Positive-EV middles in a snapshot.

        Returns:
            Middles sorted by EV, then hit probability, best first
        """
        middles: list[MiddleOpportunity] = []
        for row in snapshot.rows:
            middles.extend(self.find_for_event(row))

        middles.sort(key=lambda m: (m.expected_value, m.hit_probability), reverse=True)
        self._middles_found += len(middles)
        self.logger.info("Middle scan complete", sport=snapshot.sport, middles=len(middles))
        return middles

    def get_stats(self) -> dict:
        return {
            "pairs_checked": self._pairs_checked,
            "middles_found": self._middles_found,
        }
