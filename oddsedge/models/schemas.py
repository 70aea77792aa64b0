"""
Sportsbook odds data models and schemas.

Defines the core data structures for:
- Sports and the upstream sport keys behind them
- Events, books, markets and outcomes (the odds snapshot)
- Movements and per-book trends derived from snapshot history
- Candidate bets, arbitrage and middle opportunities

Snapshot types are frozen and hold tuples, so a snapshot handed to one
reader can never be changed by a later fetch.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Iterable, Optional

from oddsedge.engine.odds import (
    american_to_decimal,
    implied_probability,
    normalize_american,
)


# =============================================================================
# Sports
# =============================================================================

# Upstream sport keys per sport, tried in order (preseason variants included)
SPORT_SOURCE_KEYS: dict[str, list[str]] = {
    "NFL": ["americanfootball_nfl_preseason", "americanfootball_nfl"],
    "NCAAF": ["americanfootball_ncaaf"],
    "NBA": ["basketball_nba", "basketball_nba_preseason"],
    "NCAAB": ["basketball_ncaab"],
    "MLB": ["baseball_mlb"],
    "NHL": ["icehockey_nhl", "icehockey_nhl_preseason"],
    "UFC": ["mma_mixed_martial_arts"],
    "BOXING": ["boxing_boxing"],
    "SOCCER": ["soccer_epl", "soccer_usa_mls"],
    "EPL": ["soccer_epl"],
    "MLS": ["soccer_usa_mls"],
    "TENNIS": ["tennis_atp", "tennis_wta"],
}

DRAW_SPORTS = {"SOCCER", "EPL", "MLS"}
MAJOR_SPORTS = {"NFL", "NBA", "MLB", "NHL"}


class Sport(Enum):
    """Supported sports."""
    NFL = "NFL"
    NCAAF = "NCAAF"
    NBA = "NBA"
    NCAAB = "NCAAB"
    MLB = "MLB"
    NHL = "NHL"
    UFC = "UFC"
    BOXING = "BOXING"
    SOCCER = "SOCCER"
    EPL = "EPL"
    MLS = "MLS"
    TENNIS = "TENNIS"

    @property
    def source_keys(self) -> list[str]:
        return list(SPORT_SOURCE_KEYS[self.value])

    @property
    def has_draw(self) -> bool:
        return self.value in DRAW_SPORTS

    @property
    def is_major(self) -> bool:
        return self.value in MAJOR_SPORTS

    @property
    def key_number_league(self) -> str:
        return self.value.lower()

    @classmethod
    def from_string(cls, value: str) -> Optional["Sport"]:
        """Convert string to Sport enum."""
        value_lower = value.lower()
        for sport in cls:
            if sport.value.lower() == value_lower or sport.name.lower() == value_lower:
                return sport
        return cls.from_source_key(value)

    @classmethod
    def from_source_key(cls, source_key: str) -> Optional["Sport"]:
        """Map an upstream sport key (e.g. ``basketball_nba``) to its sport."""
        key = source_key.lower()
        for sport in cls:
            if key in SPORT_SOURCE_KEYS[sport.value]:
                return sport
        # Unlisted variants such as soccer_spain_la_liga or tennis_atp_french_open
        if key.startswith("soccer_"):
            return cls.SOCCER
        if key.startswith("tennis_"):
            return cls.TENNIS
        return None


def source_key_has_draw(source_key: str) -> bool:
    return source_key.lower().startswith("soccer_")


def source_key_is_major(source_key: str) -> bool:
    sport = Sport.from_source_key(source_key)
    return bool(sport and sport.is_major)


def key_number_league(source_key: str) -> Optional[str]:
    """League used for key-number lookups, matched on the sport key."""
    key = source_key.lower()
    for league in ("ncaaf", "nfl", "nba", "mlb", "nhl"):
        if league in key:
            return league
    return None


# =============================================================================
# Markets & outcomes
# =============================================================================

class MarketType(Enum):
    """Market families."""
    MONEYLINE = "moneyline"
    SPREAD = "spread"
    TOTAL = "total"
    PLAYER_PROP = "player_prop"
    OTHER = "other"

    @classmethod
    def from_key(cls, market_key: str) -> "MarketType":
        """Family for an upstream market key, including period and alternate variants."""
        key = market_key.lower()
        if key.startswith("player_"):
            return cls.PLAYER_PROP
        if key.startswith("h2h") or key == "moneyline":
            return cls.MONEYLINE
        if "spread" in key:
            return cls.SPREAD
        if "total" in key:
            return cls.TOTAL
        return cls.OTHER


def is_three_way_key(market_key: str) -> bool:
    """Markets quoted with a draw leg (``h2h_3_way``, ``h2h_3_way_h1``)."""
    return "3_way" in market_key.lower()


DRAW_NAMES = {"draw", "tie", "the draw"}


@dataclass(frozen=True)
class Outcome:
    """A single priced selection (e.g. "Kansas City Chiefs", "Over 45.5")."""
    name: str
    price: float  # American
    decimal_odds: float
    implied_prob: float  # Raw, includes vig
    point: Optional[float] = None  # Spread / total line
    description: Optional[str] = None  # Player name for props

    @classmethod
    def from_american(
        cls,
        name: str,
        price: Optional[float],
        point: Optional[float] = None,
        description: Optional[str] = None,
    ) -> "Outcome":
        american = normalize_american(price)
        decimal = american_to_decimal(american)
        return cls(
            name=name,
            price=american,
            decimal_odds=decimal,
            implied_prob=implied_probability(decimal),
            point=point,
            description=description,
        )

    @property
    def is_draw(self) -> bool:
        return self.name.strip().lower() in DRAW_NAMES

    @property
    def is_over(self) -> bool:
        return self.name.strip().lower().startswith("over")

    @property
    def is_under(self) -> bool:
        return self.name.strip().lower().startswith("under")

    @property
    def selection(self) -> str:
        """Selection identity within a market (player props include the player)."""
        if self.description:
            return f"{self.description} {self.name}"
        return self.name


@dataclass(frozen=True)
class Market:
    """A named market holding 2-3 outcomes from one book."""
    key: str
    outcomes: tuple[Outcome, ...]

    @property
    def market_type(self) -> MarketType:
        return MarketType.from_key(self.key)

    @property
    def overround(self) -> float:
        return sum(o.implied_prob for o in self.outcomes)

    def opposite_of(self, outcome: Outcome) -> Optional[Outcome]:
        """The other side of a 2-way market, if it is priced."""
        if len(self.outcomes) != 2:
            return None
        for other in self.outcomes:
            if other is not outcome and other.selection != outcome.selection:
                if outcome.description and other.description != outcome.description:
                    continue
                return other
        return None


@dataclass(frozen=True)
class BookOdds:
    """One bookmaker's markets for one event."""
    key: str
    title: str
    markets: tuple[Market, ...]
    last_update: Optional[datetime] = None

    def get_market(self, market_key: str) -> Optional[Market]:
        for market in self.markets:
            if market.key == market_key:
                return market
        return None


@dataclass(frozen=True)
class Event:
    """A scheduled game or fight."""
    event_id: str
    sport_key: str
    home_team: str
    away_team: str
    commence_time: Optional[datetime] = None
    cached_at: Optional[datetime] = None

    @property
    def matchup(self) -> str:
        return f"{self.away_team} @ {self.home_team}"


@dataclass(frozen=True)
class EventOdds:
    """A snapshot row: every book's markets for one event, tagged with its source key."""
    event_id: str
    sport_key: str
    home_team: str
    away_team: str
    bookmakers: tuple[BookOdds, ...]
    commence_time: Optional[datetime] = None
    source_key: str = ""

    @property
    def matchup(self) -> str:
        return f"{self.away_team} @ {self.home_team}"

    @property
    def has_draw(self) -> bool:
        return source_key_has_draw(self.source_key or self.sport_key)

    def matches(self, event: Event) -> bool:
        return (
            self.home_team == event.home_team
            and self.away_team == event.away_team
            and (self.source_key or self.sport_key) == event.sport_key
        )

    def market_keys(self) -> list[str]:
        keys: list[str] = []
        for book in self.bookmakers:
            for market in book.markets:
                if market.key not in keys:
                    keys.append(market.key)
        return keys


@dataclass(frozen=True)
class OddsSnapshot:
    """Immutable capture of all books/markets/outcomes for a sport at one time."""
    sport: str
    source_key: str
    markets: tuple[str, ...]
    rows: tuple[EventOdds, ...]
    fetched_at: datetime

    @property
    def is_empty(self) -> bool:
        return not self.rows

    def filter_events(self, events: Iterable[Event]) -> "OddsSnapshot":
        """Keep only rows belonging to ``events`` (matched on teams and source key)."""
        wanted = list(events)
        rows = tuple(
            row for row in self.rows
            if any(row.matches(event) for event in wanted)
        )
        return replace(self, rows=rows)

    @classmethod
    def merge(
        cls,
        sport: str,
        snapshots: Iterable["OddsSnapshot"],
        markets: Iterable[str],
        fetched_at: datetime,
    ) -> "OddsSnapshot":
        """Combine per-source snapshots into one sport-wide snapshot."""
        parts = list(snapshots)
        rows: list[EventOdds] = []
        for part in parts:
            rows.extend(part.rows)
        source_key = ",".join(part.source_key for part in parts)
        oldest = min((part.fetched_at for part in parts), default=fetched_at)
        return cls(
            sport=sport,
            source_key=source_key,
            markets=tuple(markets),
            rows=tuple(rows),
            fetched_at=oldest,
        )


# =============================================================================
# History & trends
# =============================================================================

@dataclass(frozen=True)
class Movement:
    """A significant price change between two consecutive snapshots."""
    event_id: str
    matchup: str
    bookmaker: str
    market: str
    outcome: str
    point: Optional[float]
    previous_price: float
    current_price: float
    delta: float
    direction: str  # "up" or "down"
    pct_change: float
    detected_at: datetime

    @property
    def magnitude(self) -> float:
        return abs(self.delta)


@dataclass
class BookTrend:
    """Running comparison of one book against the market average."""
    bookmaker: str
    total_comparisons: int = 0
    times_beat_average: int = 0
    average_edge: float = 0.0  # Mean of (book decimal / market average - 1)

    @property
    def value_percentage(self) -> float:
        if self.total_comparisons == 0:
            return 0.0
        return self.times_beat_average / self.total_comparisons * 100

    def record(self, edge: float) -> None:
        self.total_comparisons += 1
        if edge > 0:
            self.times_beat_average += 1
        self.average_edge += (edge - self.average_edge) / self.total_comparisons


@dataclass(frozen=True)
class ValueSighting:
    """A price noticeably better than the cross-book average."""
    event_id: str
    matchup: str
    bookmaker: str
    market: str
    outcome: str
    point: Optional[float]
    price: float
    market_average_decimal: float
    edge: float
    seen_at: datetime


@dataclass(frozen=True)
class TrendSummary:
    """Per-book trend statistics for one sport."""
    sport: str
    books: tuple[BookTrend, ...]
    snapshots_analyzed: int
    value_opportunities: tuple[ValueSighting, ...]
    updated_at: datetime

    @property
    def best_value_book(self) -> Optional[str]:
        ranked = [b for b in self.books if b.total_comparisons > 0]
        if not ranked:
            return None
        return max(ranked, key=lambda b: (b.value_percentage, b.average_edge)).bookmaker


@dataclass(frozen=True)
class HistoricalWindow:
    """Snapshots and movements for a sport over the last N hours."""
    sport: str
    hours: float
    snapshots: tuple[OddsSnapshot, ...]
    movements: tuple[Movement, ...]

    @property
    def significant_movements(self) -> list[Movement]:
        return [m for m in self.movements if m.magnitude >= 20]

    @property
    def moderate_movements(self) -> list[Movement]:
        return [m for m in self.movements if m.magnitude < 20]


# =============================================================================
# Candidate bets
# =============================================================================

@dataclass(frozen=True)
class AdvancedMetrics:
    """No-vig and efficiency metrics for a candidate."""
    vig_percent: float
    implied_prob: float
    no_vig_prob: float
    no_vig_odds: float  # American
    true_prob: float
    market_efficiency: float  # 0-100
    probability_edge: float  # Percentage points, true - implied


@dataclass(frozen=True)
class CandidateBet:
    """One outcome plus an estimated true probability."""
    event_id: str
    sport_key: str
    matchup: str
    bookmaker: str
    market_key: str
    outcome: Outcome
    quick_ev: float
    commence_time: Optional[datetime] = None
    is_away: bool = False
    true_probability: Optional[float] = None
    opposite_implied_prob: Optional[float] = None  # Other side of a 2-way market, same book

    # Filled in by precise estimation
    expected_value: Optional[float] = None
    confidence: Optional[float] = None
    edge_type: Optional[str] = None
    kelly_fraction: Optional[float] = None
    metrics: Optional[AdvancedMetrics] = None

    @property
    def selection(self) -> str:
        return self.outcome.selection

    @property
    def market_type(self) -> MarketType:
        return MarketType.from_key(self.market_key)

    @property
    def ev(self) -> float:
        return self.expected_value if self.expected_value is not None else self.quick_ev


# =============================================================================
# Opportunities
# =============================================================================

@dataclass(frozen=True)
class ArbitrageLeg:
    """One side of an arbitrage."""
    bookmaker: str
    selection: str
    price: float  # American
    decimal_odds: float
    implied_prob: float
    point: Optional[float] = None

    @classmethod
    def from_outcome(cls, bookmaker: str, outcome: Outcome) -> "ArbitrageLeg":
        return cls(
            bookmaker=bookmaker,
            selection=outcome.selection,
            price=outcome.price,
            decimal_odds=outcome.decimal_odds,
            implied_prob=outcome.implied_prob,
            point=outcome.point,
        )


@dataclass(frozen=True)
class StakeAllocation:
    bookmaker: str
    selection: str
    stake: float
    payout: float


@dataclass(frozen=True)
class ArbitrageOpportunity:
    """A validated set of complementary legs across books."""
    opportunity_id: str
    event_id: str
    sport_key: str
    matchup: str
    market_key: str
    line: Optional[float]
    legs: tuple[ArbitrageLeg, ...]
    arb_index: float  # Summed implied probability
    profit_pct: float
    total_stake: float
    guaranteed_profit: float
    stakes: tuple[StakeAllocation, ...]
    detected_at: datetime
    commence_time: Optional[datetime] = None
    push_worst_case: Optional[float] = None

    @property
    def type(self) -> str:
        return "3-way" if len(self.legs) == 3 else "2-way"


@dataclass(frozen=True)
class MiddleLeg:
    bookmaker: str
    selection: str
    point: float
    price: float
    decimal_odds: float


@dataclass(frozen=True)
class MiddleOpportunity:
    """Two lines far enough apart that one result can win both bets."""
    opportunity_id: str
    event_id: str
    sport_key: str
    matchup: str
    market_key: str
    legs: tuple[MiddleLeg, MiddleLeg]
    window_low: float
    window_high: float
    gap: float
    middle_numbers: tuple[float, ...]
    hit_probability: float
    expected_value: float
    detected_at: datetime
    commence_time: Optional[datetime] = None


@dataclass(frozen=True)
class BestLine:
    """Best and worst price for one selection across books."""
    event_id: str
    matchup: str
    market_key: str
    selection: str
    point: Optional[float]
    best_bookmaker: str
    best_price: float
    worst_bookmaker: str
    worst_price: float
    market_average_decimal: float
    edge_vs_average: float
    books_compared: int


# =============================================================================
# Scan results
# =============================================================================

class ScanStatus(Enum):
    OK = "ok"
    NO_DATA = "no_data"


@dataclass
class ScanResult:
    """Everything found for a sport in one pass."""
    sport: str
    status: ScanStatus
    scanned_at: datetime
    reason: Optional[str] = None
    events: int = 0
    ev_bets: list[CandidateBet] = field(default_factory=list)
    arbitrage: list[ArbitrageOpportunity] = field(default_factory=list)
    middles: list[MiddleOpportunity] = field(default_factory=list)

    @property
    def has_data(self) -> bool:
        return self.status == ScanStatus.OK
