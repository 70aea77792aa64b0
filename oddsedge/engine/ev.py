"""
Expected-value engine.

Two passes over an odds snapshot:
1. quick_estimate() - cheap no-vig probability with public-bias
   adjustments, used to cut thousands of outcomes down to a candidate list
2. precise_estimate() - confidence, edge classification, Kelly stake and
   advanced no-vig metrics for each surviving candidate

Candidates are processed in batches with early termination once enough
positive-EV results are found.
"""

from dataclasses import replace
from typing import Optional

import structlog

from oddsedge.config import EVSettings
from oddsedge.engine.odds import (
    clamp_probability,
    probability_to_american,
    remove_vig_two_way,
)
from oddsedge.models.schemas import (
    AdvancedMetrics,
    CandidateBet,
    Market,
    MarketType,
    OddsSnapshot,
    Outcome,
    source_key_is_major,
)

logger = structlog.get_logger()

FAMILY_KEYS = {
    MarketType.MONEYLINE: "h2h",
    MarketType.SPREAD: "spreads",
    MarketType.TOTAL: "totals",
}


class EVEngine:
    """
    Scores every priced outcome in a snapshot for expected value.

    EV = true_probability * decimal_odds - 1, where the true probability
    is the no-vig implied probability nudged for known public biases
    (favourites and overs are overbet, road dogs and unders underbet).
    """

    # Confidence
    MODERATE_ODDS_RANGE = (120, 200)
    MODERATE_ODDS_BONUS = 0.1
    EXTREME_ODDS = 400
    EXTREME_ODDS_PENALTY = 0.2

    # True-probability heuristics for advanced metrics
    FAVORITE_TRUE_FACTOR = 0.95  # Odds below -200
    LONGSHOT_ODDS = 300
    LONGSHOT_TRUE_FACTOR = 1.03
    PROP_OVER_FACTOR = 0.97
    PROP_UNDER_FACTOR = 1.02

    def __init__(
        self,
        settings: Optional[EVSettings] = None,
        sharp_books: Optional[list[str]] = None,
    ):
        self.settings = settings or EVSettings()
        self.sharp_books = sharp_books or ["pinnacle", "betfair_ex_eu", "betfair", "circa"]
        self.logger = logger.bind(component="ev_engine")

        # Stats
        self._snapshots_scored = 0
        self._candidates_evaluated = 0
        self._early_terminations = 0

    # =========================================================================
    # Quick estimate
    # =========================================================================

    def vig_estimate(self, market_key: str) -> float:
        """Configured vig for a market key, falling back to its family (``spreads_h1`` → ``spreads``)."""
        estimates = self.settings.vig_estimates
        if market_key in estimates:
            return estimates[market_key]
        family = FAMILY_KEYS.get(MarketType.from_key(market_key))
        return estimates.get(family, self.settings.default_vig)

    def base_probability(
        self,
        outcome: Outcome,
        market: Market,
        sharp_prob: Optional[float] = None,
    ) -> float:
        """No-vig probability before any bias adjustment."""
        if sharp_prob is not None:
            return sharp_prob

        opposite = market.opposite_of(outcome)
        if opposite is not None:
            fair, _ = remove_vig_two_way(outcome.implied_prob, opposite.implied_prob)
            return fair

        return outcome.implied_prob / (1 + self.vig_estimate(market.key))

    def adjust_for_bias(self, probability: float, outcome: Outcome, is_away: bool = False) -> float:
        """Apply public-bias corrections and clamp to [0.01, 0.99]."""
        s = self.settings
        if outcome.price < s.heavy_favorite_odds:
            probability *= s.heavy_favorite_factor
        elif is_away and outcome.price > s.road_underdog_odds:
            probability *= s.road_underdog_factor

        if outcome.is_over:
            probability *= s.over_factor
        elif outcome.is_under:
            probability *= s.under_factor

        return clamp_probability(probability)

    def true_probability(
        self,
        outcome: Outcome,
        market: Market,
        *,
        is_away: bool = False,
        sharp_prob: Optional[float] = None,
    ) -> float:
        base = self.base_probability(outcome, market, sharp_prob)
        return self.adjust_for_bias(base, outcome, is_away)

    def quick_estimate(
        self,
        outcome: Outcome,
        market: Market,
        *,
        is_away: bool = False,
        sharp_prob: Optional[float] = None,
    ) -> float:
        """First-pass expected value of one outcome."""
        probability = self.true_probability(
            outcome, market, is_away=is_away, sharp_prob=sharp_prob,
        )
        return probability * outcome.decimal_odds - 1

    # =========================================================================
    # Precise estimate
    # =========================================================================

    def confidence(self, american: float) -> float:
        magnitude = abs(american)
        confidence = self.settings.base_confidence
        low, high = self.MODERATE_ODDS_RANGE
        if low <= magnitude <= high:
            confidence += self.MODERATE_ODDS_BONUS
        if magnitude > self.EXTREME_ODDS:
            confidence -= self.EXTREME_ODDS_PENALTY
        return round(max(0.0, min(1.0, confidence)), 4)

    @staticmethod
    def edge_type(market_type: MarketType, american: float) -> str:
        if market_type == MarketType.PLAYER_PROP:
            return "prop_value"
        if american > 200:
            return "underdog_value_spot"
        if american < -200:
            return "favorite_overvaluation"
        return "market_inefficiency"

    def kelly_fraction(self, ev: float, confidence: float) -> float:
        """Confidence-weighted Kelly stake, capped at the bankroll limit."""
        if ev <= 0:
            return 0.0
        return max(0.0, min(ev * confidence, self.settings.max_kelly_fraction))

    def precise_estimate(self, candidate: CandidateBet) -> CandidateBet:
        """Add confidence, edge type, Kelly fraction and metrics to a candidate."""
        ev = candidate.quick_ev
        american = candidate.outcome.price
        confidence = self.confidence(american)
        return replace(
            candidate,
            expected_value=ev,
            confidence=confidence,
            edge_type=self.edge_type(candidate.market_type, american),
            kelly_fraction=self.kelly_fraction(ev, confidence),
            metrics=self.advanced_metrics(candidate),
        )

    # =========================================================================
    # Advanced metrics
    # =========================================================================

    def _opposite_probability(self, candidate: CandidateBet) -> float:
        if candidate.opposite_implied_prob is not None:
            return candidate.opposite_implied_prob

        implied = candidate.outcome.implied_prob
        market_type = candidate.market_type
        if market_type == MarketType.MONEYLINE:
            return 1 - implied + self.settings.assumed_moneyline_vig
        if market_type in (MarketType.SPREAD, MarketType.TOTAL):
            return self.settings.assumed_line_opposite_prob
        return 1 - implied + self.settings.assumed_prop_vig

    def _heuristic_true_probability(
        self,
        no_vig_prob: float,
        outcome: Outcome,
        market_type: MarketType,
    ) -> float:
        probability = no_vig_prob
        if outcome.price < -200:
            probability *= self.FAVORITE_TRUE_FACTOR
        elif outcome.price > self.LONGSHOT_ODDS:
            probability *= self.LONGSHOT_TRUE_FACTOR

        if market_type == MarketType.PLAYER_PROP:
            if outcome.is_over:
                probability *= self.PROP_OVER_FACTOR
            elif outcome.is_under:
                probability *= self.PROP_UNDER_FACTOR

        return clamp_probability(probability)

    @staticmethod
    def _market_efficiency(
        vig_percent: float,
        true_prob: float,
        no_vig_prob: float,
        market_type: MarketType,
        is_major: bool,
    ) -> float:
        score = 100.0
        if vig_percent > 5:
            score -= 10
        if vig_percent > 7:
            score -= 10

        difference = abs(true_prob - no_vig_prob)
        if difference > 0.05:
            score -= 15
        if difference > 0.10:
            score -= 15

        if market_type == MarketType.PLAYER_PROP:
            score -= 20
        if not is_major:
            score -= 10

        return max(0.0, min(100.0, score))

    def advanced_metrics(self, candidate: CandidateBet) -> AdvancedMetrics:
        """No-vig fair price, vig split and a 0-100 market efficiency score."""
        outcome = candidate.outcome
        market_type = candidate.market_type
        implied = outcome.implied_prob
        opposite = self._opposite_probability(candidate)

        total = implied + opposite
        no_vig = implied / total if total > 0 else implied
        vig_percent = (total - 1) / 2 * 100
        true_prob = self._heuristic_true_probability(no_vig, outcome, market_type)

        return AdvancedMetrics(
            vig_percent=round(vig_percent, 3),
            implied_prob=implied,
            no_vig_prob=no_vig,
            no_vig_odds=round(probability_to_american(clamp_probability(no_vig))),
            true_prob=true_prob,
            market_efficiency=self._market_efficiency(
                vig_percent,
                true_prob,
                no_vig,
                market_type,
                source_key_is_major(candidate.sport_key),
            ),
            probability_edge=round((true_prob - implied) * 100, 3),
        )

    # =========================================================================
    # Snapshot search
    # =========================================================================

    def _sharp_probabilities(self, snapshot: OddsSnapshot) -> dict[tuple, float]:
        """No-vig probabilities from the sharpest book pricing each 2-way market."""
        sharp: dict[tuple, float] = {}
        for row in snapshot.rows:
            books = {book.key: book for book in row.bookmakers}
            for book_key in reversed(self.sharp_books):  # Sharpest wins
                book = books.get(book_key)
                if not book:
                    continue
                for market in book.markets:
                    for outcome in market.outcomes:
                        opposite = market.opposite_of(outcome)
                        if opposite is None:
                            continue
                        fair, _ = remove_vig_two_way(outcome.implied_prob, opposite.implied_prob)
                        sharp[(row.event_id, market.key, outcome.selection, outcome.point)] = fair
        return sharp

    def collect_candidates(self, snapshot: OddsSnapshot) -> list[CandidateBet]:
        """Quick-estimate every outcome and keep those above the pre-filter."""
        sharp = self._sharp_probabilities(snapshot) if self.settings.use_sharp_baseline else {}

        candidates: list[CandidateBet] = []
        for row in snapshot.rows:
            for book in row.bookmakers:
                for market in book.markets:
                    for outcome in market.outcomes:
                        is_away = outcome.name == row.away_team
                        sharp_prob = None
                        if book.key not in self.sharp_books:
                            sharp_prob = sharp.get(
                                (row.event_id, market.key, outcome.selection, outcome.point)
                            )
                        probability = self.true_probability(
                            outcome, market, is_away=is_away, sharp_prob=sharp_prob,
                        )
                        quick_ev = probability * outcome.decimal_odds - 1
                        if quick_ev <= self.settings.prefilter_min_ev:
                            continue

                        opposite = market.opposite_of(outcome)
                        candidates.append(CandidateBet(
                            event_id=row.event_id,
                            sport_key=row.source_key or row.sport_key,
                            matchup=row.matchup,
                            bookmaker=book.key,
                            market_key=market.key,
                            outcome=outcome,
                            quick_ev=quick_ev,
                            commence_time=row.commence_time,
                            is_away=is_away,
                            true_probability=probability,
                            opposite_implied_prob=opposite.implied_prob if opposite else None,
                        ))

        candidates.sort(key=lambda c: c.quick_ev, reverse=True)
        return candidates[:self.settings.max_candidates]

    def find_positive_ev_bets(
        self,
        snapshot: OddsSnapshot,
        min_ev: Optional[float] = None,
    ) -> list[CandidateBet]:
        """
        Positive-EV bets in a snapshot, best first.

        Args:
            snapshot: Cached odds snapshot
            min_ev: Minimum expected value (defaults to the configured threshold)

        Returns:
            Scored candidates with EV above ``min_ev``, sorted by EV descending
        """
        threshold = self.settings.min_ev if min_ev is None else min_ev
        max_results = self.settings.max_results
        batch_size = max(1, self.settings.batch_size)

        candidates = self.collect_candidates(snapshot)
        self._snapshots_scored += 1

        results: list[CandidateBet] = []
        for start in range(0, len(candidates), batch_size):
            for candidate in candidates[start:start + batch_size]:
                self._candidates_evaluated += 1
                scored = self.precise_estimate(candidate)
                if scored.expected_value > threshold:
                    results.append(scored)

            if len(results) >= max_results:
                self._early_terminations += 1
                self.logger.debug(
                    "Early termination",
                    sport=snapshot.sport,
                    found=len(results),
                    processed=min(start + batch_size, len(candidates)),
                    candidates=len(candidates),
                )
                break

        results.sort(key=lambda c: c.expected_value, reverse=True)
        results = results[:max_results]

        self.logger.info(
            "EV scan complete",
            sport=snapshot.sport,
            candidates=len(candidates),
            positive=len(results),
            min_ev=threshold,
        )
        return results

    # =========================================================================
    # Metrics
    # =========================================================================

    def get_stats(self) -> dict:
        return {
            "snapshots_scored": self._snapshots_scored,
            "candidates_evaluated": self._candidates_evaluated,
            "early_terminations": self._early_terminations,
        }
