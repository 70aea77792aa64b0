"""
Arbitrage detection.

Finds sets of complementary prices across books whose combined implied
probability is below 1, so a stake split across them wins the same amount
whatever happens.

Every candidate leg pair runs through an ordered validation pipeline and
stops at the first failure:
1. Different books
2. Realistic prices (stale or suspended markets quote absurd odds)
3. Complementary selections (same line, opposite sides)
4. Combined implied probability below 1 - safety buffer
5. Profit margin below the sanity ceiling (bigger means bad data)
6. Whole-number lines must survive the push scenario

Sports with a draw only arb on the full 3-way moneyline. Other sports
have any draw/tie outcome dropped before pairing, and their 3-way
markets are skipped entirely.
"""

import itertools
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional, Sequence

import structlog

from oddsedge.config import ArbitrageSettings
from oddsedge.models.schemas import (
    ArbitrageLeg,
    ArbitrageOpportunity,
    EventOdds,
    MarketType,
    OddsSnapshot,
    StakeAllocation,
    is_three_way_key,
)

logger = structlog.get_logger()


class RejectionReason(Enum):
    """Why a leg set was rejected."""
    SAME_BOOK = "same_book"
    UNREALISTIC_ODDS = "unrealistic_odds"
    NOT_COMPLEMENTARY = "not_complementary"
    INSUFFICIENT_MARGIN = "insufficient_margin"
    MARGIN_TOO_HIGH = "margin_too_high"
    PUSH_RISK = "push_risk"


# =============================================================================
# Line helpers
# =============================================================================

def is_same_line(a: Optional[float], b: Optional[float], epsilon: float = 0.001) -> bool:
    if a is None or b is None:
        return False
    return abs(a - b) < epsilon


def is_whole_number(line: Optional[float], epsilon: float = 0.001) -> bool:
    if line is None:
        return False
    return abs(line - round(line)) < epsilon


def total_side(selection: str) -> Optional[str]:
    """``over`` / ``under`` for a totals selection (player props end with the side)."""
    parts = selection.strip().lower().split()
    if parts and parts[-1] in ("over", "under"):
        return parts[-1]
    return None


def _subject(selection: str) -> str:
    """Selection without its over/under side (the player for props)."""
    parts = selection.strip().split()
    return " ".join(parts[:-1]).lower()


# =============================================================================
# Stake allocation
# =============================================================================

def two_way_stakes(d1: float, d2: float, total: float = 100.0) -> tuple[float, float, float]:
    """
    Equal-payout stakes for a 2-leg arbitrage.

    Returns:
        (stake1, stake2, guaranteed_profit)
    """
    stake1 = total * d2 / (d1 + d2)
    stake2 = total * d1 / (d1 + d2)
    profit = total * (d1 * d2 / (d1 + d2) - 1)
    return stake1, stake2, profit


def multi_way_stakes(decimals: Sequence[float], total: float = 100.0) -> tuple[list[float], float]:
    """
    Equal-payout stakes for any number of legs.

    Returns:
        (stakes, guaranteed_profit)
    """
    arb_index = sum(1 / d for d in decimals)
    stakes = [total / (d * arb_index) for d in decimals]
    payout = total / arb_index
    return stakes, payout - sum(stakes)


def push_worst_case(d1: float, d2: float, total: float = 100.0) -> float:
    """Worst net result when one leg of a whole-number line pushes and the other loses."""
    stake1, stake2, _ = two_way_stakes(d1, d2, total)
    return min(stake1 - stake2, stake2 - stake1)


# =============================================================================
# Detector
# =============================================================================

class ArbitrageDetector:
    """
    Cross-book arbitrage finder with strict leg validation.

    Usage:
        detector = ArbitrageDetector()
        opportunities = detector.find_arbitrage(snapshot)
    """

    def __init__(
        self,
        settings: Optional[ArbitrageSettings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.settings = settings or ArbitrageSettings()
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.logger = logger.bind(component="arbitrage_detector")

        # Stats
        self._pairs_checked = 0
        self._opportunities_found = 0
        self._rejection_counts: dict[str, int] = {}

    # =========================================================================
    # Validation
    # =========================================================================

    def _track_rejection(self, reason: RejectionReason) -> None:
        self._rejection_counts[reason.value] = self._rejection_counts.get(reason.value, 0) + 1

    def is_complementary(self, leg1: ArbitrageLeg, leg2: ArbitrageLeg, market_key: str) -> bool:
        """True when the two legs cover opposite sides of the same proposition."""
        epsilon = self.settings.line_epsilon
        market_type = MarketType.from_key(market_key)
        side1, side2 = total_side(leg1.selection), total_side(leg2.selection)

        if market_type == MarketType.SPREAD:
            if leg1.point is None or leg2.point is None:
                return False
            if not is_same_line(abs(leg1.point), abs(leg2.point), epsilon):
                return False
            # One team gives the points the other takes
            if leg1.point * leg2.point > 0:
                return False
            return leg1.selection != leg2.selection

        if market_type == MarketType.TOTAL or (side1 and side2):
            if not is_same_line(leg1.point, leg2.point, epsilon):
                return False
            if not side1 or not side2 or side1 == side2:
                return False
            return _subject(leg1.selection) == _subject(leg2.selection)

        return leg1.selection != leg2.selection

    def validate_pair(
        self,
        leg1: ArbitrageLeg,
        leg2: ArbitrageLeg,
        market_key: str,
    ) -> Optional[RejectionReason]:
        """
        Run the validation pipeline on a leg pair.

        Returns:
            None if the pair is a valid arbitrage, else the first failed check
        """
        s = self.settings

        if leg1.bookmaker == leg2.bookmaker:
            return RejectionReason.SAME_BOOK

        if leg1.decimal_odds >= s.max_realistic_decimal or leg2.decimal_odds >= s.max_realistic_decimal:
            return RejectionReason.UNREALISTIC_ODDS

        if not self.is_complementary(leg1, leg2, market_key):
            return RejectionReason.NOT_COMPLEMENTARY

        arb_index = leg1.implied_prob + leg2.implied_prob
        if arb_index >= 1 - s.safety_buffer:
            return RejectionReason.INSUFFICIENT_MARGIN

        if (1 - arb_index) * 100 > s.max_profit_pct:
            return RejectionReason.MARGIN_TOO_HIGH

        market_type = MarketType.from_key(market_key)
        if market_type in (MarketType.SPREAD, MarketType.TOTAL) and is_whole_number(leg1.point, s.line_epsilon):
            worst = push_worst_case(leg1.decimal_odds, leg2.decimal_odds, s.total_stake)
            if worst < -1e-9:
                return RejectionReason.PUSH_RISK

        return None

    def validate_group(self, legs: Sequence[ArbitrageLeg]) -> Optional[RejectionReason]:
        """Validation for a 3-way (draw) leg set."""
        s = self.settings
        if len({leg.bookmaker for leg in legs}) != len(legs):
            return RejectionReason.SAME_BOOK
        if any(leg.decimal_odds >= s.max_realistic_decimal for leg in legs):
            return RejectionReason.UNREALISTIC_ODDS
        if len({leg.selection for leg in legs}) != len(legs):
            return RejectionReason.NOT_COMPLEMENTARY
        arb_index = sum(leg.implied_prob for leg in legs)
        if arb_index >= 1 - s.safety_buffer:
            return RejectionReason.INSUFFICIENT_MARGIN
        if (1 - arb_index) * 100 > s.max_profit_pct:
            return RejectionReason.MARGIN_TOO_HIGH
        return None

    # =========================================================================
    # Opportunity building
    # =========================================================================

    def build_opportunity(
        self,
        row: EventOdds,
        market_key: str,
        legs: Sequence[ArbitrageLeg],
    ) -> ArbitrageOpportunity:
        """Stake distribution and profit for a validated leg set."""
        total = self.settings.total_stake
        decimals = [leg.decimal_odds for leg in legs]
        arb_index = sum(leg.implied_prob for leg in legs)

        push_worst = None
        if len(legs) == 2:
            stake1, stake2, profit = two_way_stakes(decimals[0], decimals[1], total)
            stakes = [stake1, stake2]
            if MarketType.from_key(market_key) in (MarketType.SPREAD, MarketType.TOTAL) \
                    and is_whole_number(legs[0].point, self.settings.line_epsilon):
                push_worst = round(push_worst_case(decimals[0], decimals[1], total), 2)
        else:
            stakes, profit = multi_way_stakes(decimals, total)

        line = None
        if legs[0].point is not None:
            line = abs(legs[0].point) if MarketType.from_key(market_key) == MarketType.SPREAD else legs[0].point

        books = "_".join(leg.bookmaker for leg in legs)
        return ArbitrageOpportunity(
            opportunity_id=f"arb_{row.event_id}_{market_key}_{line if line is not None else 'ml'}_{books}",
            event_id=row.event_id,
            sport_key=row.source_key or row.sport_key,
            matchup=row.matchup,
            market_key=market_key,
            line=line,
            legs=tuple(legs),
            arb_index=arb_index,
            profit_pct=round((1 - arb_index) * 100, 4),
            total_stake=total,
            guaranteed_profit=round(profit, 2),
            stakes=tuple(
                StakeAllocation(
                    bookmaker=leg.bookmaker,
                    selection=leg.selection,
                    stake=round(stake, 2),
                    payout=round(stake * leg.decimal_odds, 2),
                )
                for leg, stake in zip(legs, stakes)
            ),
            detected_at=self.clock(),
            commence_time=row.commence_time,
            push_worst_case=push_worst,
        )

    # =========================================================================
    # Search
    # =========================================================================

    def _market_legs(self, row: EventOdds) -> dict[str, list[ArbitrageLeg]]:
        by_market: dict[str, list[ArbitrageLeg]] = {}
        has_draw = row.has_draw
        for book in row.bookmakers:
            for market in book.markets:
                if is_three_way_key(market.key) and not has_draw:
                    # Home/away alone leaves the draw uncovered
                    continue
                for outcome in market.outcomes:
                    if outcome.is_draw and not has_draw:
                        continue
                    by_market.setdefault(market.key, []).append(
                        ArbitrageLeg.from_outcome(book.key, outcome)
                    )
        return by_market

    def find_two_way(
        self,
        row: EventOdds,
        market_key: str,
        legs: Sequence[ArbitrageLeg],
    ) -> list[ArbitrageOpportunity]:
        """Best validated pair per complementary selection set."""
        best: dict[frozenset, ArbitrageOpportunity] = {}
        for leg1, leg2 in itertools.combinations(legs, 2):
            self._pairs_checked += 1
            reason = self.validate_pair(leg1, leg2, market_key)
            if reason is not None:
                self._track_rejection(reason)
                continue

            opportunity = self.build_opportunity(row, market_key, (leg1, leg2))
            key = frozenset({(leg1.selection, leg1.point), (leg2.selection, leg2.point)})
            current = best.get(key)
            if current is None or opportunity.profit_pct > current.profit_pct:
                best[key] = opportunity
        return list(best.values())

    def find_three_way(
        self,
        row: EventOdds,
        market_key: str,
        legs: Sequence[ArbitrageLeg],
    ) -> Optional[ArbitrageOpportunity]:
        """Best home/draw/away combination across distinct books."""
        by_selection: dict[str, list[ArbitrageLeg]] = {}
        for leg in legs:
            by_selection.setdefault(leg.selection, []).append(leg)
        if len(by_selection) != 3:
            return None

        depth = self.settings.max_prices_per_selection
        top_prices = [
            sorted(group, key=lambda leg: leg.decimal_odds, reverse=True)[:depth]
            for group in by_selection.values()
        ]

        best: Optional[tuple[float, tuple[ArbitrageLeg, ...]]] = None
        for combo in itertools.product(*top_prices):
            self._pairs_checked += 1
            reason = self.validate_group(combo)
            if reason is not None:
                self._track_rejection(reason)
                continue
            arb_index = sum(leg.implied_prob for leg in combo)
            if best is None or arb_index < best[0]:
                best = (arb_index, combo)

        if best is None:
            return None
        return self.build_opportunity(row, market_key, best[1])

    def find_for_event(self, row: EventOdds) -> list[ArbitrageOpportunity]:
        opportunities: list[ArbitrageOpportunity] = []
        for market_key, legs in self._market_legs(row).items():
            if row.has_draw and MarketType.from_key(market_key) == MarketType.MONEYLINE:
                # Two sides of a draw market never cover every result
                opportunity = self.find_three_way(row, market_key, legs)
                if opportunity:
                    opportunities.append(opportunity)
                continue
            opportunities.extend(self.find_two_way(row, market_key, legs))
        return opportunities

    def find_arbitrage(self, snapshot: OddsSnapshot) -> list[ArbitrageOpportunity]:
        """
        All validated arbitrage opportunities in a snapshot.

        Returns:
            Opportunities sorted by profit percentage, best first
        """
        opportunities: list[ArbitrageOpportunity] = []
        for row in snapshot.rows:
            opportunities.extend(self.find_for_event(row))

        opportunities.sort(key=lambda o: o.profit_pct, reverse=True)
        self._opportunities_found += len(opportunities)

        if opportunities:
            best = opportunities[0]
            self.logger.info(
                "Arbitrage found",
                sport=snapshot.sport,
                count=len(opportunities),
                best_profit_pct=round(best.profit_pct, 2),
                best_matchup=best.matchup,
                best_market=best.market_key,
            )
        else:
            self.logger.debug("No arbitrage", sport=snapshot.sport, events=len(snapshot.rows))
        return opportunities

    # =========================================================================
    # Metrics
    # =========================================================================

    def get_stats(self) -> dict:
        return {
            "pairs_checked": self._pairs_checked,
            "opportunities_found": self._opportunities_found,
            "rejections": dict(self._rejection_counts),
        }
