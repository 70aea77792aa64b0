"""Tests for the expected-value engine."""

import pytest
from structlog.testing import capture_logs

from oddsedge.config import EVSettings
from oddsedge.engine.ev import EVEngine
from oddsedge.models.schemas import CandidateBet, MarketType
from tests.factories import book, event_odds, market, outcome, snapshot


@pytest.fixture
def engine():
    return EVEngine(EVSettings())


def candidate(price, market_key="h2h", opposite=None, sport_key="basketball_nba", name="Lakers"):
    o = outcome(name, price)
    return CandidateBet(
        event_id="evt1",
        sport_key=sport_key,
        matchup="Lakers @ Celtics",
        bookmaker="draftkings",
        market_key=market_key,
        outcome=o,
        quick_ev=0.0,
        opposite_implied_prob=opposite,
    )


class TestQuickEstimate:

    def test_even_market_loses_the_vig(self, engine):
        m = market("h2h", outcome("Lakers", -110), outcome("Celtics", -110))
        assert engine.quick_estimate(m.outcomes[0], m) == pytest.approx(-0.04545, abs=1e-4)

    def test_unpaired_outcome_uses_vig_estimate(self, engine):
        m = market("h2h", outcome("Lakers", 150))
        assert engine.quick_estimate(m.outcomes[0], m) == pytest.approx(-0.02439, abs=1e-4)

    def test_vig_estimate_falls_back_to_market_family(self, engine):
        assert engine.vig_estimate("spreads") == 0.022
        assert engine.vig_estimate("alternate_spreads_h1") == 0.022
        assert engine.vig_estimate("totals_q1") == 0.024
        assert engine.vig_estimate("h2h_h1") == 0.025
        assert engine.vig_estimate("outrights") == 0.03

    def test_road_underdog_boost(self, engine):
        m = market("h2h", outcome("Lakers", 250), outcome("Celtics", -300))
        away = engine.quick_estimate(m.outcomes[0], m, is_away=True)
        home = engine.quick_estimate(m.outcomes[0], m, is_away=False)

        assert away == pytest.approx(0.0428, abs=1e-3)
        assert home < 0

    def test_heavy_favorite_discounted(self, engine):
        m = market("h2h", outcome("Lakers", 250), outcome("Celtics", -300))
        assert engine.true_probability(m.outcomes[1], m) == pytest.approx(0.6662, abs=1e-3)

    def test_under_boost_over_discount(self, engine):
        m = market("totals", outcome("Over", -110, 220.5), outcome("Under", -110, 220.5))
        over, under = m.outcomes

        assert engine.quick_estimate(under, m) == pytest.approx(0.00227, abs=1e-4)
        assert engine.quick_estimate(over, m) < 0

    def test_probability_clamped(self, engine):
        m = market("h2h", outcome("Lakers", -5000), outcome("Celtics", 2000))
        assert engine.true_probability(m.outcomes[0], m) <= 0.99
        assert engine.true_probability(m.outcomes[1], m) >= 0.01

    def test_sharp_probability_overrides_book(self, engine):
        m = market("h2h", outcome("Lakers", 150), outcome("Celtics", -170))
        assert engine.quick_estimate(m.outcomes[0], m, sharp_prob=0.45) == pytest.approx(0.125)


class TestPreciseEstimate:

    @pytest.mark.parametrize("price,expected", [
        (150, 0.8),
        (-110, 0.7),
        (250, 0.7),
        (500, 0.5),
        (-450, 0.5),
    ])
    def test_confidence(self, engine, price, expected):
        assert engine.confidence(price) == pytest.approx(expected)

    @pytest.mark.parametrize("market_type,price,expected", [
        (MarketType.PLAYER_PROP, 250, "prop_value"),
        (MarketType.MONEYLINE, 250, "underdog_value_spot"),
        (MarketType.MONEYLINE, -250, "favorite_overvaluation"),
        (MarketType.SPREAD, -110, "market_inefficiency"),
    ])
    def test_edge_type(self, market_type, price, expected):
        assert EVEngine.edge_type(market_type, price) == expected

    def test_kelly_capped(self, engine):
        assert engine.kelly_fraction(0.2, 0.8) == pytest.approx(0.05)
        assert engine.kelly_fraction(0.0428, 0.7) == pytest.approx(0.02996)
        assert engine.kelly_fraction(-0.01, 0.8) == 0.0

    def test_metrics_with_priced_opposite(self, engine):
        bet = candidate(-110, opposite=outcome("Celtics", -110).implied_prob)
        metrics = engine.advanced_metrics(bet)

        assert metrics.no_vig_prob == pytest.approx(0.5)
        assert metrics.no_vig_odds == 100
        assert metrics.vig_percent == pytest.approx(2.381, abs=1e-3)
        assert metrics.market_efficiency == 100

    def test_minor_sport_less_efficient(self, engine):
        bet = candidate(-110, opposite=outcome("Draw", -110).implied_prob, sport_key="soccer_epl")
        assert engine.advanced_metrics(bet).market_efficiency == 90

    def test_metrics_assume_opposite_for_lines(self, engine):
        bet = candidate(-110, market_key="spreads")
        metrics = engine.advanced_metrics(bet)
        assert metrics.no_vig_prob == pytest.approx(0.5, abs=1e-3)

    def test_prop_efficiency_penalized(self, engine):
        bet = candidate(-110, market_key="player_points", name="Over")
        metrics = engine.advanced_metrics(bet)
        assert metrics.market_efficiency <= 80


class TestFindPositiveEV:

    def test_finds_road_underdog(self, engine):
        row = event_odds(
            "evt1", "Celtics", "Lakers",
            book("draftkings", market("h2h", outcome("Lakers", 250), outcome("Celtics", -300))),
        )

        [bet] = engine.find_positive_ev_bets(snapshot(row))

        assert bet.selection == "Lakers"
        assert bet.is_away
        assert bet.expected_value == pytest.approx(0.0428, abs=1e-3)
        assert bet.confidence == pytest.approx(0.7)
        assert bet.edge_type == "underdog_value_spot"
        assert bet.kelly_fraction == pytest.approx(bet.expected_value * 0.7)
        assert bet.metrics is not None

    def test_min_ev_filter(self, engine):
        row = event_odds(
            "evt1", "Celtics", "Lakers",
            book("draftkings", market("totals", outcome("Over", -110, 220.5), outcome("Under", -110, 220.5))),
        )
        assert len(engine.find_positive_ev_bets(snapshot(row))) == 1
        assert engine.find_positive_ev_bets(snapshot(row), min_ev=0.01) == []

    def test_efficient_market_returns_nothing(self, engine):
        row = event_odds(
            "evt1", "Celtics", "Lakers",
            book("draftkings", market("h2h", outcome("Lakers", -110), outcome("Celtics", -110))),
        )
        assert engine.find_positive_ev_bets(snapshot(row)) == []

    def test_early_termination_and_limit(self):
        engine = EVEngine(EVSettings(max_results=3, batch_size=2))
        rows = [
            event_odds(
                f"evt{i}", "Home", "Away",
                book("draftkings", market("h2h", outcome("Away", 250 + i * 10), outcome("Home", -300))),
            )
            for i in range(10)
        ]

        bets = engine.find_positive_ev_bets(snapshot(*rows))

        assert len(bets) == 3
        evs = [b.expected_value for b in bets]
        assert evs == sorted(evs, reverse=True)
        stats = engine.get_stats()
        assert stats["early_terminations"] == 1
        assert stats["candidates_evaluated"] == 4

    def test_early_termination_log_counts_processed_candidates(self):
        engine = EVEngine(EVSettings(max_results=3, batch_size=500))
        rows = [
            event_odds(
                f"evt{i}", "Home", "Away",
                book("draftkings", market("h2h", outcome("Away", 250 + i * 10), outcome("Home", -300))),
            )
            for i in range(10)
        ]

        with capture_logs() as logs:
            engine.find_positive_ev_bets(snapshot(*rows))

        [entry] = [log for log in logs if log["event"] == "Early termination"]
        assert entry["processed"] == entry["candidates"]
        assert entry["processed"] == engine.get_stats()["candidates_evaluated"]

    def test_sharp_baseline(self):
        engine = EVEngine(EVSettings(use_sharp_baseline=True), sharp_books=["pinnacle"])
        row = event_odds(
            "evt1", "Celtics", "Lakers",
            book("pinnacle", market("h2h", outcome("Lakers", 120), outcome("Celtics", -130))),
            book("draftkings", market("h2h", outcome("Lakers", 140), outcome("Celtics", -160))),
        )

        bets = engine.find_positive_ev_bets(snapshot(row))

        assert [(b.bookmaker, b.selection) for b in bets] == [("draftkings", "Lakers")]
