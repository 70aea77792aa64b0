"""Tests for the arbitrage detector."""

import pytest

from oddsedge.config import ArbitrageSettings
from oddsedge.engine.arbitrage import (
    ArbitrageDetector,
    RejectionReason,
    is_same_line,
    multi_way_stakes,
    push_worst_case,
    two_way_stakes,
)
from oddsedge.models.schemas import ArbitrageLeg, MarketType
from tests.factories import FakeClock, book, event_odds, market, outcome, snapshot


def leg(bookmaker: str, name: str, price: float, point=None) -> ArbitrageLeg:
    return ArbitrageLeg.from_outcome(bookmaker, outcome(name, price, point))


@pytest.fixture
def detector():
    return ArbitrageDetector(ArbitrageSettings(), clock=FakeClock())


class TestValidationPipeline:
    """Each rule of the validation pipeline, in order."""

    def test_valid_moneyline_pair(self, detector):
        """+150 / -130 at different books is a ~3.5% arbitrage."""
        reason = detector.validate_pair(
            leg("draftkings", "Lakers", 150),
            leg("fanduel", "Celtics", -130),
            "h2h",
        )
        assert reason is None

    def test_rejects_same_book_even_when_profitable(self, detector):
        reason = detector.validate_pair(
            leg("draftkings", "Lakers", 300),
            leg("draftkings", "Celtics", 300),
            "h2h",
        )
        assert reason == RejectionReason.SAME_BOOK

    def test_rejects_unrealistic_odds(self, detector):
        reason = detector.validate_pair(
            leg("draftkings", "Lakers", 2000),
            leg("fanduel", "Celtics", -110),
            "h2h",
        )
        assert reason == RejectionReason.UNREALISTIC_ODDS

    def test_rejects_same_selection(self, detector):
        reason = detector.validate_pair(
            leg("draftkings", "Lakers", 150),
            leg("fanduel", "Lakers", 140),
            "h2h",
        )
        assert reason == RejectionReason.NOT_COMPLEMENTARY

    def test_rejects_thin_margin(self, detector):
        reason = detector.validate_pair(
            leg("draftkings", "Lakers", -110),
            leg("fanduel", "Celtics", -110),
            "h2h",
        )
        assert reason == RejectionReason.INSUFFICIENT_MARGIN

    def test_rejects_margin_inside_buffer(self, detector):
        """1/2.02 + 1/2.02 = 0.990, below 1 but not below 0.985."""
        reason = detector.validate_pair(
            leg("draftkings", "Lakers", 102),
            leg("fanduel", "Celtics", 102),
            "h2h",
        )
        assert reason == RejectionReason.INSUFFICIENT_MARGIN

    def test_rejects_implausible_margin(self, detector):
        reason = detector.validate_pair(
            leg("draftkings", "Lakers", 150),
            leg("fanduel", "Celtics", 150),
            "h2h",
        )
        assert reason == RejectionReason.MARGIN_TOO_HIGH

    def test_whole_number_total_with_unequal_stakes_is_push_risk(self, detector):
        reason = detector.validate_pair(
            leg("draftkings", "Over", 110, 220),
            leg("fanduel", "Under", 100, 220),
            "totals",
        )
        assert reason == RejectionReason.PUSH_RISK

    def test_whole_number_total_with_balanced_stakes_passes(self, detector):
        reason = detector.validate_pair(
            leg("draftkings", "Over", 105, 220),
            leg("fanduel", "Under", 105, 220),
            "totals",
        )
        assert reason is None

    def test_half_point_total_has_no_push_check(self, detector):
        reason = detector.validate_pair(
            leg("draftkings", "Over", 110, 220.5),
            leg("fanduel", "Under", 100, 220.5),
            "totals",
        )
        assert reason is None


class TestComplementary:
    """Tests for same-line, opposite-side matching."""

    def test_line_epsilon(self):
        assert is_same_line(3, 3.0001)
        assert not is_same_line(3, 4)
        assert not is_same_line(3, None)

    def test_spread_within_epsilon_is_complementary(self, detector):
        assert detector.is_complementary(
            leg("a", "Lakers", -110, -3),
            leg("b", "Celtics", -110, 3.0001),
            "spreads",
        )

    def test_spread_lines_a_point_apart_are_not_an_arbitrage(self, detector):
        assert not detector.is_complementary(
            leg("a", "Lakers", -110, -3),
            leg("b", "Celtics", -110, 4),
            "spreads",
        )

    def test_spread_same_team_or_same_sign(self, detector):
        assert not detector.is_complementary(
            leg("a", "Lakers", -110, -3),
            leg("b", "Lakers", -110, 3),
            "spreads",
        )
        assert not detector.is_complementary(
            leg("a", "Lakers", -110, 3),
            leg("b", "Celtics", -110, 3),
            "spreads",
        )

    def test_totals_need_same_line_and_opposite_sides(self, detector):
        assert detector.is_complementary(
            leg("a", "Over", -110, 220.5), leg("b", "Under", -110, 220.5), "totals",
        )
        assert not detector.is_complementary(
            leg("a", "Over", -110, 220.5), leg("b", "Under", -110, 221.5), "totals",
        )
        assert not detector.is_complementary(
            leg("a", "Over", -110, 220.5), leg("b", "Over", -110, 220.5), "totals",
        )

    def test_player_props_match_on_player(self, detector):
        lebron_over = ArbitrageLeg.from_outcome("a", outcome("Over", 120, 25.5, "LeBron James"))
        lebron_under = ArbitrageLeg.from_outcome("b", outcome("Under", 110, 25.5, "LeBron James"))
        davis_under = ArbitrageLeg.from_outcome("b", outcome("Under", 110, 25.5, "Anthony Davis"))

        assert detector.is_complementary(lebron_over, lebron_under, "player_points")
        assert not detector.is_complementary(lebron_over, davis_under, "player_points")

    def test_period_spreads_use_spread_rules(self, detector):
        assert detector.is_complementary(
            leg("a", "Lakers", 110, -1.5), leg("b", "Celtics", 110, 1.5), "spreads_h1",
        )
        assert not detector.is_complementary(
            leg("a", "Lakers", 110, -1.5), leg("b", "Celtics", 110, -7.5), "spreads_h1",
        )
        assert not detector.is_complementary(
            leg("a", "Lakers", 110, -1.5), leg("b", "Celtics", 110, 2.5), "alternate_spreads_q1",
        )

    def test_period_totals_use_total_rules(self, detector):
        assert not detector.is_complementary(
            leg("a", "Over", 110, 110.5), leg("b", "Under", 110, 112.5), "totals_h1",
        )

    def test_market_families(self):
        assert MarketType.from_key("spreads_q1") == MarketType.SPREAD
        assert MarketType.from_key("alternate_spreads_h1") == MarketType.SPREAD
        assert MarketType.from_key("alternate_totals_p1") == MarketType.TOTAL
        assert MarketType.from_key("team_totals") == MarketType.TOTAL
        assert MarketType.from_key("h2h_h1") == MarketType.MONEYLINE
        assert MarketType.from_key("player_points") == MarketType.PLAYER_PROP
        assert MarketType.from_key("outrights") == MarketType.OTHER


class TestStakes:
    """Tests for stake allocation."""

    def test_two_way_split(self):
        stake1, stake2, profit = two_way_stakes(2.10, 2.00, 100)
        assert stake1 == pytest.approx(48.78, abs=0.01)
        assert stake2 == pytest.approx(51.22, abs=0.01)
        assert profit > 0
        # Equal payout either way
        assert stake1 * 2.10 == pytest.approx(stake2 * 2.00)

    def test_three_way_split(self):
        stakes, profit = multi_way_stakes([2.8, 3.6, 3.4], 100)
        payouts = [s * d for s, d in zip(stakes, [2.8, 3.6, 3.4])]
        assert sum(stakes) == pytest.approx(100)
        assert max(payouts) == pytest.approx(min(payouts))
        assert profit == pytest.approx(7.64, abs=0.01)

    def test_push_worst_case(self):
        assert push_worst_case(2.05, 2.05) == pytest.approx(0)
        assert push_worst_case(2.10, 2.00) == pytest.approx(-2.44, abs=0.01)


class TestFindArbitrage:
    """End-to-end detection over snapshots."""

    def test_moneyline_arbitrage(self, detector):
        row = event_odds(
            "evt1", "Celtics", "Lakers",
            book("draftkings", market("h2h", outcome("Lakers", 150), outcome("Celtics", -200))),
            book("fanduel", market("h2h", outcome("Lakers", 120), outcome("Celtics", -130))),
        )

        opportunities = detector.find_arbitrage(snapshot(row))

        assert len(opportunities) == 1
        arb = opportunities[0]
        assert {l.bookmaker for l in arb.legs} == {"draftkings", "fanduel"}
        assert {l.selection for l in arb.legs} == {"Lakers", "Celtics"}
        assert arb.arb_index == pytest.approx(0.965, abs=0.001)
        assert arb.profit_pct == pytest.approx(3.48, abs=0.01)
        assert arb.guaranteed_profit > 0
        assert sum(s.stake for s in arb.stakes) == pytest.approx(100, abs=0.02)
        assert arb.type == "2-way"

    def test_reported_stakes_for_210_and_200(self, detector):
        row = event_odds(
            "evt1", "Celtics", "Lakers",
            book("draftkings", market("h2h", outcome("Lakers", 110), outcome("Celtics", -150))),
            book("fanduel", market("h2h", outcome("Lakers", -150), outcome("Celtics", 100))),
        )

        [arb] = detector.find_arbitrage(snapshot(row))

        stakes = {s.selection: s.stake for s in arb.stakes}
        assert stakes["Lakers"] == pytest.approx(48.78, abs=0.01)
        assert stakes["Celtics"] == pytest.approx(51.22, abs=0.01)
        assert arb.guaranteed_profit == pytest.approx(2.44, abs=0.01)

    def test_no_arbitrage_in_efficient_market(self, detector):
        row = event_odds(
            "evt1", "Celtics", "Lakers",
            book("draftkings", market("h2h", outcome("Lakers", 120), outcome("Celtics", -140))),
            book("fanduel", market("h2h", outcome("Lakers", 115), outcome("Celtics", -135))),
        )
        assert detector.find_arbitrage(snapshot(row)) == []

    def test_draw_outcomes_ignored_without_draw_sport(self, detector):
        row = event_odds(
            "evt1", "Bruins", "Rangers",
            book("draftkings", market("h2h", outcome("Draw", 150), outcome("Bruins", -300))),
            book("fanduel", market("h2h", outcome("Rangers", -110), outcome("Bruins", -250))),
            sport_key="icehockey_nhl",
        )
        assert detector.find_arbitrage(snapshot(row, sport="NHL")) == []

    def test_soccer_moneyline_needs_all_three_legs(self, detector):
        row = event_odds(
            "evt1", "Arsenal", "Chelsea",
            book("bet365", market("h2h", outcome("Arsenal", 150), outcome("Chelsea", 100))),
            book("williamhill", market("h2h", outcome("Arsenal", 110), outcome("Chelsea", 150))),
            sport_key="soccer_epl",
        )
        assert detector.find_arbitrage(snapshot(row, sport="SOCCER")) == []

    def test_three_way_soccer_arbitrage(self, detector):
        row = event_odds(
            "evt1", "Arsenal", "Chelsea",
            book("bet365", market("h2h",
                                  outcome("Arsenal", 180), outcome("Chelsea", 200), outcome("Draw", 200))),
            book("williamhill", market("h2h",
                                       outcome("Arsenal", 150), outcome("Chelsea", 260), outcome("Draw", 210))),
            book("unibet", market("h2h",
                                  outcome("Arsenal", 140), outcome("Chelsea", 220), outcome("Draw", 240))),
            sport_key="soccer_epl",
        )

        [arb] = detector.find_arbitrage(snapshot(row, sport="SOCCER"))

        assert arb.type == "3-way"
        picks = {l.selection: l.bookmaker for l in arb.legs}
        assert picks == {"Arsenal": "bet365", "Chelsea": "williamhill", "Draw": "unibet"}
        assert arb.arb_index == pytest.approx(0.929, abs=0.001)
        assert arb.guaranteed_profit == pytest.approx(7.64, abs=0.01)
        payouts = [s.payout for s in arb.stakes]
        assert max(payouts) - min(payouts) < 0.02

    def test_spread_arbitrage_at_same_line(self, detector):
        row = event_odds(
            "evt1", "Celtics", "Lakers",
            book("draftkings", market("spreads",
                                      outcome("Lakers", 115, 3.5), outcome("Celtics", -135, -3.5))),
            book("fanduel", market("spreads",
                                   outcome("Lakers", -130, 3.5), outcome("Celtics", 110, -3.5))),
        )

        [arb] = detector.find_arbitrage(snapshot(row))

        assert arb.market_key == "spreads"
        assert arb.line == 3.5
        assert arb.push_worst_case is None
        assert {(l.bookmaker, l.selection) for l in arb.legs} == {
            ("draftkings", "Lakers"), ("fanduel", "Celtics"),
        }

    def test_period_spread_favourites_are_not_an_arbitrage(self, detector):
        row = event_odds(
            "evt1", "Celtics", "Lakers",
            book("draftkings", market("spreads_h1", outcome("Lakers", 110, -1.5))),
            book("fanduel", market("spreads_h1", outcome("Celtics", 110, -7.5))),
        )
        assert detector.find_arbitrage(snapshot(row)) == []
        assert detector.get_stats()["rejections"]["not_complementary"] == 1

    def test_three_way_market_skipped_without_draw_sport(self, detector):
        """Bruins 2.10 / Rangers 2.05 would be a 3.6% pair, but the draw is uncovered."""
        row = event_odds(
            "evt1", "Bruins", "Rangers",
            book("draftkings", market("h2h_3_way",
                                      outcome("Bruins", 110), outcome("Rangers", 200), outcome("Draw", 300))),
            book("fanduel", market("h2h_3_way",
                                   outcome("Bruins", 150), outcome("Rangers", 105), outcome("Draw", 280))),
            sport_key="icehockey_nhl",
        )
        assert detector.find_arbitrage(snapshot(row, sport="NHL")) == []
        assert detector.get_stats()["pairs_checked"] == 0

    def test_sorted_by_profit(self, detector):
        small = event_odds(
            "evt1", "Celtics", "Lakers",
            book("draftkings", market("h2h", outcome("Lakers", 110), outcome("Celtics", -150))),
            book("fanduel", market("h2h", outcome("Lakers", -150), outcome("Celtics", 100))),
        )
        large = event_odds(
            "evt2", "Knicks", "Heat",
            book("draftkings", market("h2h", outcome("Heat", 150), outcome("Knicks", -200))),
            book("fanduel", market("h2h", outcome("Heat", 120), outcome("Knicks", -130))),
        )

        opportunities = detector.find_arbitrage(snapshot(small, large))

        assert [o.event_id for o in opportunities] == ["evt2", "evt1"]

    def test_rejections_are_counted(self, detector):
        row = event_odds(
            "evt1", "Celtics", "Lakers",
            book("draftkings", market("h2h", outcome("Lakers", 300), outcome("Celtics", 300))),
        )
        detector.find_arbitrage(snapshot(row))
        assert detector.get_stats()["rejections"]["same_book"] == 1
