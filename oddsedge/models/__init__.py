"""Snapshot schemas and upstream payload parsing."""

from oddsedge.models.schemas import (
    ArbitrageLeg,
    ArbitrageOpportunity,
    BookOdds,
    CandidateBet,
    Event,
    EventOdds,
    Market,
    MarketType,
    MiddleOpportunity,
    Movement,
    OddsSnapshot,
    Outcome,
    ScanResult,
    ScanStatus,
    Sport,
    TrendSummary,
)

__all__ = [
    "ArbitrageLeg",
    "ArbitrageOpportunity",
    "BookOdds",
    "CandidateBet",
    "Event",
    "EventOdds",
    "Market",
    "MarketType",
    "MiddleOpportunity",
    "Movement",
    "OddsSnapshot",
    "Outcome",
    "ScanResult",
    "ScanStatus",
    "Sport",
    "TrendSummary",
]
