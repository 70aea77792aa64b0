"""
Odds normalization.

Pure conversions between American (moneyline) prices, decimal odds and
implied probabilities, plus vig removal.

American prices with magnitude below 100 do not exist; those, zero, NaN
and missing prices normalize to the neutral price (+100, decimal 2.0) so
nothing downstream can divide by zero.
"""

import math
from typing import Optional, Sequence

from oddsedge.errors import InvariantViolation

NEUTRAL_AMERICAN = 100.0
NEUTRAL_DECIMAL = 2.0

PROBABILITY_FLOOR = 0.01
PROBABILITY_CEILING = 0.99


def is_valid_american(price: Optional[float]) -> bool:
    """True when ``price`` is a usable American price."""
    if price is None:
        return False
    try:
        value = float(price)
    except (TypeError, ValueError):
        return False
    if math.isnan(value) or math.isinf(value):
        return False
    return abs(value) >= 100


def normalize_american(price: Optional[float]) -> float:
    """Return ``price`` as a float, or the neutral price if it is unusable."""
    if not is_valid_american(price):
        return NEUTRAL_AMERICAN
    return float(price)


def american_to_decimal(price: Optional[float]) -> float:
    """Convert American odds to decimal odds (always > 1.0)."""
    american = normalize_american(price)
    if american > 0:
        return 1 + american / 100
    return 1 + 100 / abs(american)


def decimal_to_american(decimal: float) -> float:
    """Convert decimal odds back to American odds."""
    if decimal is None or decimal <= 1:
        raise InvariantViolation(f"decimal odds must be > 1, got {decimal}")
    if decimal >= 2.0:
        return (decimal - 1) * 100
    return -100 / (decimal - 1)


def implied_probability(decimal: float) -> float:
    """Implied probability of decimal odds, vig included."""
    if decimal is None or decimal <= 1:
        raise InvariantViolation(f"decimal odds must be > 1, got {decimal}")
    return 1 / decimal


def american_to_implied(price: Optional[float]) -> float:
    return implied_probability(american_to_decimal(price))


def probability_to_decimal(probability: float) -> float:
    if not 0 < probability < 1:
        raise InvariantViolation(f"probability must be in (0, 1), got {probability}")
    return 1 / probability


def probability_to_american(probability: float) -> float:
    return decimal_to_american(probability_to_decimal(probability))


def clamp_probability(
    probability: float,
    low: float = PROBABILITY_FLOOR,
    high: float = PROBABILITY_CEILING,
) -> float:
    return max(low, min(high, probability))


def overround(probabilities: Sequence[float]) -> float:
    """Sum of implied probabilities; above 1.0 by the bookmaker's margin."""
    return sum(probabilities)


def vig_percent(probabilities: Sequence[float]) -> float:
    """Bookmaker margin as a percentage of the stake."""
    total = overround(probabilities)
    if total <= 0:
        return 0.0
    return (total - 1) / total * 100


def remove_vig_two_way(p1: float, p2: float) -> tuple[float, float]:
    """
    Proportional vig removal for a 2-way market.

    Each side is divided by the sum of both sides, so the fair
    probabilities always sum to 1.0.
    """
    total = p1 + p2
    if total <= 0:
        return 0.5, 0.5
    return p1 / total, p2 / total


def remove_vig(probabilities: Sequence[float]) -> list[float]:
    """Proportional vig removal for any number of outcomes."""
    total = overround(probabilities)
    if total <= 0:
        n = len(probabilities)
        return [1 / n] * n if n else []
    return [p / total for p in probabilities]


def remove_vig_power(p1: float, p2: float, iterations: int = 50) -> tuple[float, float]:
    """
    Power-method vig removal for a 2-way market.

    Finds k such that p1^k + p2^k = 1. Shades more of the margin off the
    longshot than proportional removal does, which matches how books
    actually price favourite/longshot bias.
    """
    if p1 <= 0 or p2 <= 0:
        return remove_vig_two_way(p1, p2)

    low, high = 0.5, 2.0
    k = 1.0
    for _ in range(iterations):
        k = (low + high) / 2
        total = p1 ** k + p2 ** k
        if abs(total - 1) < 1e-9:
            break
        # Sum decreases as k grows (probabilities are below 1)
        if total > 1:
            low = k
        else:
            high = k

    fair1, fair2 = p1 ** k, p2 ** k
    return remove_vig_two_way(fair1, fair2)


def format_american(price: Optional[float]) -> str:
    """Format a price for display, e.g. ``+150`` or ``-130``."""
    american = round(normalize_american(price))
    return f"+{american}" if american > 0 else str(american)


def parse_american(text: Optional[str]) -> float:
    """Parse a displayed price such as ``"+150"``; unusable text gives the neutral price."""
    if text is None:
        return NEUTRAL_AMERICAN
    try:
        return normalize_american(float(str(text).strip().replace("+", "")))
    except ValueError:
        return NEUTRAL_AMERICAN
