"""
Upstream payload validation.

Raw JSON from the price source is parsed here, once, into the frozen
snapshot types. Children are validated one at a time so a single bad
outcome, market, bookmaker or event is skipped without losing the rest of
the response.
"""

from datetime import datetime, timezone
from typing import Any, Optional

import structlog
from pydantic import BaseModel, Field, ValidationError

from oddsedge.errors import MalformedData
from oddsedge.models.schemas import (
    BookOdds,
    Event,
    EventOdds,
    Market,
    Outcome,
)

logger = structlog.get_logger()


class OutcomePayload(BaseModel):
    name: str = Field(min_length=1)
    price: Optional[float] = None
    point: Optional[float] = None
    description: Optional[str] = None


class MarketPayload(BaseModel):
    key: str = Field(min_length=1)
    outcomes: list[Any] = Field(default_factory=list)


class BookmakerPayload(BaseModel):
    key: str = Field(min_length=1)
    title: str = ""
    last_update: Optional[datetime] = None
    markets: list[Any] = Field(default_factory=list)


class EventPayload(BaseModel):
    id: str = Field(min_length=1)
    sport_key: str = ""
    home_team: str = Field(min_length=1)
    away_team: str = Field(min_length=1)
    commence_time: Optional[datetime] = None
    bookmakers: list[Any] = Field(default_factory=list)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _validate(model: type[BaseModel], data: Any, unit: str) -> Any:
    if not isinstance(data, dict):
        raise MalformedData(unit, f"expected object, got {type(data).__name__}")
    try:
        return model.model_validate(data)
    except ValidationError as e:
        fields = ",".join(str(err["loc"][0]) for err in e.errors() if err.get("loc"))
        raise MalformedData(unit, f"invalid fields: {fields or 'unknown'}") from e


def parse_outcome(data: Any) -> Outcome:
    payload = _validate(OutcomePayload, data, "outcome")
    if payload.price is None:
        raise MalformedData("outcome", f"no price for {payload.name}")
    return Outcome.from_american(
        name=payload.name,
        price=payload.price,
        point=payload.point,
        description=payload.description,
    )


def parse_market(data: Any, context: dict) -> Market:
    payload = _validate(MarketPayload, data, "market")
    outcomes = []
    for raw in payload.outcomes:
        try:
            outcomes.append(parse_outcome(raw))
        except MalformedData as e:
            logger.debug("Skipping outcome", market=payload.key, error=str(e), **context)
    if not outcomes:
        raise MalformedData("market", f"{payload.key} has no usable outcomes")
    return Market(key=payload.key, outcomes=tuple(outcomes))


def parse_bookmaker(data: Any, context: dict) -> BookOdds:
    payload = _validate(BookmakerPayload, data, "bookmaker")
    book_context = {**context, "book": payload.key}
    markets = []
    for raw in payload.markets:
        try:
            markets.append(parse_market(raw, book_context))
        except MalformedData as e:
            logger.debug("Skipping market", error=str(e), **book_context)
    if not markets:
        raise MalformedData("bookmaker", f"{payload.key} has no usable markets")
    return BookOdds(
        key=payload.key,
        title=payload.title or payload.key,
        markets=tuple(markets),
        last_update=_as_utc(payload.last_update),
    )


def parse_event(data: Any, source_key: str, cached_at: Optional[datetime] = None) -> Event:
    """Parse a schedule entry (no odds)."""
    payload = _validate(EventPayload, data, "event")
    return Event(
        event_id=payload.id,
        sport_key=source_key,
        home_team=payload.home_team,
        away_team=payload.away_team,
        commence_time=_as_utc(payload.commence_time),
        cached_at=cached_at,
    )


def parse_event_odds(data: Any, source_key: str) -> EventOdds:
    """Parse an event with bookmaker odds; books without usable markets are dropped."""
    payload = _validate(EventPayload, data, "event")
    context = {"source_key": source_key, "event_id": payload.id}
    books = []
    for raw in payload.bookmakers:
        try:
            books.append(parse_bookmaker(raw, context))
        except MalformedData as e:
            logger.debug("Skipping bookmaker", error=str(e), **context)
    return EventOdds(
        event_id=payload.id,
        sport_key=payload.sport_key or source_key,
        home_team=payload.home_team,
        away_team=payload.away_team,
        bookmakers=tuple(books),
        commence_time=_as_utc(payload.commence_time),
        source_key=source_key,
    )


def parse_events(data: Any, source_key: str, cached_at: Optional[datetime] = None) -> list[Event]:
    if not isinstance(data, list):
        raise MalformedData("response", f"expected list of events for {source_key}")
    events = []
    for raw in data:
        try:
            events.append(parse_event(raw, source_key, cached_at))
        except MalformedData as e:
            logger.warning("Skipping event", source_key=source_key, error=str(e))
    return events


def parse_odds_rows(data: Any, source_key: str) -> list[EventOdds]:
    if not isinstance(data, list):
        raise MalformedData("response", f"expected list of odds for {source_key}")
    rows = []
    for raw in data:
        try:
            rows.append(parse_event_odds(raw, source_key))
        except MalformedData as e:
            logger.warning("Skipping event odds", source_key=source_key, error=str(e))
    return rows
