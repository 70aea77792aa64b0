"""
Price source interface.

Sources never raise for upstream problems: every call returns a
FetchResult that is either ok with data or failed with the error that
caused it.
"""

from dataclasses import dataclass, field
from typing import Generic, Optional, Protocol, TypeVar

from oddsedge.errors import UpstreamUnavailable
from oddsedge.models.schemas import Event, EventOdds

T = TypeVar("T")


@dataclass
class FetchResult(Generic[T]):
    """Outcome of one upstream call."""
    ok: bool
    data: list[T] = field(default_factory=list)
    error: Optional[UpstreamUnavailable] = None
    strategy: Optional[str] = None

    @classmethod
    def success(cls, data: list[T], strategy: Optional[str] = None) -> "FetchResult[T]":
        return cls(ok=True, data=list(data), strategy=strategy)

    @classmethod
    def failure(cls, error: UpstreamUnavailable, strategy: Optional[str] = None) -> "FetchResult[T]":
        return cls(ok=False, error=error, strategy=strategy)


class PriceSource(Protocol):
    """Anything that can supply schedules and odds for an upstream sport key."""

    async def fetch_events(self, source_key: str) -> FetchResult[Event]:
        ...

    async def fetch_odds(
        self,
        source_key: str,
        markets: list[str],
        regions: str,
    ) -> FetchResult[EventOdds]:
        ...
