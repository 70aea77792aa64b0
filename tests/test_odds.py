"""Tests for odds conversions and vig removal."""

import math

import pytest

from oddsedge.engine.odds import (
    american_to_decimal,
    american_to_implied,
    decimal_to_american,
    format_american,
    implied_probability,
    parse_american,
    remove_vig,
    remove_vig_power,
    remove_vig_two_way,
    vig_percent,
)
from oddsedge.errors import InvariantViolation


class TestConversions:
    """Tests for American/decimal/probability conversions."""

    def test_positive_and_negative_prices(self):
        assert american_to_decimal(150) == pytest.approx(2.5)
        assert american_to_decimal(-130) == pytest.approx(1.769230769)
        assert american_to_decimal(-110) == pytest.approx(1.909090909)

    @pytest.mark.parametrize("price", [-500, -130, -110, 100, 110, 150, 1000])
    def test_round_trip(self, price):
        """American -> decimal -> American returns the original price."""
        assert decimal_to_american(american_to_decimal(price)) == pytest.approx(price)

    @pytest.mark.parametrize("decimal", [1.01, 1.5, 2.0, 2.5, 21.0])
    def test_implied_probability_is_reciprocal(self, decimal):
        assert implied_probability(decimal) == pytest.approx(1 / decimal)

    @pytest.mark.parametrize("price", [0, None, 50, -99, float("nan")])
    def test_unusable_price_falls_back_to_even_money(self, price):
        assert american_to_decimal(price) == 2.0
        assert american_to_implied(price) == 0.5

    @pytest.mark.parametrize("decimal", [1.0, 0.5, 0.0, -2.0])
    def test_impossible_decimal_raises(self, decimal):
        with pytest.raises(InvariantViolation):
            implied_probability(decimal)
        with pytest.raises(ValueError):
            decimal_to_american(decimal)

    def test_format_and_parse(self):
        assert format_american(150) == "+150"
        assert format_american(-130) == "-130"
        assert format_american(0) == "+100"
        assert parse_american("+150") == 150
        assert parse_american("-130") == -130
        assert parse_american("even") == 100
        assert parse_american(None) == 100


class TestVigRemoval:
    """Tests for no-vig probabilities."""

    @pytest.mark.parametrize("p1,p2", [(-110, -110), (-150, 130), (-300, 250), (120, -140)])
    def test_two_way_sums_to_one(self, p1, p2):
        fair1, fair2 = remove_vig_two_way(american_to_implied(p1), american_to_implied(p2))
        assert fair1 + fair2 == pytest.approx(1.0)

    def test_even_market_splits_evenly(self):
        fair1, fair2 = remove_vig_two_way(american_to_implied(-110), american_to_implied(-110))
        assert fair1 == pytest.approx(0.5)
        assert fair2 == pytest.approx(0.5)

    def test_degenerate_market(self):
        assert remove_vig_two_way(0.0, 0.0) == (0.5, 0.5)

    def test_three_way(self):
        probs = [american_to_implied(p) for p in (180, 260, 240)]
        fair = remove_vig(probs)
        assert sum(fair) == pytest.approx(1.0)
        assert fair[0] > fair[2] > fair[1]

    def test_power_method_shades_longshot(self):
        fav, dog = american_to_implied(-200), american_to_implied(170)
        power_fav, power_dog = remove_vig_power(fav, dog)
        _, proportional_dog = remove_vig_two_way(fav, dog)

        assert power_fav + power_dog == pytest.approx(1.0, abs=1e-6)
        assert power_dog < proportional_dog

    def test_vig_percent(self):
        probs = [american_to_implied(-110), american_to_implied(-110)]
        assert vig_percent(probs) == pytest.approx(4.545, abs=0.01)
        assert not math.isnan(vig_percent([]))
