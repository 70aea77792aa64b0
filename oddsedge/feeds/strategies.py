"""
Odds fetch fallback chain.

Requesting many markets (player props, alternates) is the call most
likely to fail or time out upstream. Instead of retrying in exception
handlers, the fallback chain is plain data: an ordered list of
strategies, each tried until one succeeds.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable

import structlog

from oddsedge.errors import UpstreamUnavailable
from oddsedge.feeds.base import FetchResult, PriceSource
from oddsedge.models.schemas import EventOdds

logger = structlog.get_logger()

CORE_MARKETS = ("h2h", "spreads", "totals")


@dataclass(frozen=True)
class FetchStrategy:
    """One attempt in the fallback chain."""
    name: str
    markets: tuple[str, ...]


def build_odds_strategies(markets: list[str]) -> list[FetchStrategy]:
    """
    Ordered strategies for an odds request.

    1. Every requested market
    2. Only the core markets (moneyline/spread/total) among them,
       or all core markets if none were requested
    """
    requested = tuple(dict.fromkeys(markets)) or CORE_MARKETS
    core = tuple(m for m in requested if m in CORE_MARKETS) or CORE_MARKETS

    strategies = [FetchStrategy(name="requested_markets", markets=requested)]
    if core != requested:
        strategies.append(FetchStrategy(name="core_markets", markets=core))
    return strategies


async def with_timeout(
    call: Callable[[], Awaitable[FetchResult]],
    timeout: float,
    source_key: str,
) -> FetchResult:
    """Run a fetch, turning a timeout into a failed result."""
    try:
        return await asyncio.wait_for(call(), timeout=timeout)
    except asyncio.TimeoutError:
        return FetchResult.failure(
            UpstreamUnavailable(source_key, f"timed out after {timeout:g}s")
        )


async def run_strategies(
    source: PriceSource,
    source_key: str,
    strategies: list[FetchStrategy],
    regions: str,
    timeout: float,
) -> FetchResult[EventOdds]:
    """
    Try each strategy in order.

    Returns:
        The first successful result, or the last failure
    """
    result: FetchResult[EventOdds] = FetchResult.failure(
        UpstreamUnavailable(source_key, "no fetch strategies")
    )
    for strategy in strategies:
        result = await with_timeout(
            lambda: source.fetch_odds(source_key, list(strategy.markets), regions),
            timeout,
            source_key,
        )
        result.strategy = strategy.name
        if result.ok:
            return result

        logger.warning(
            "Odds fetch strategy failed",
            source_key=source_key,
            strategy=strategy.name,
            markets=",".join(strategy.markets),
            error=str(result.error),
        )
    return result
