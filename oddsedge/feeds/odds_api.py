"""
The Odds API Feed.

Aggregates odds from 40+ sportsbooks including Pinnacle, Betfair, DraftKings, etc.
Free tier: 500 requests/month. Paid: $20/mo for 10k requests.

API Docs: https://the-odds-api.com/liveapi/guides/v4/

Key endpoints:
- /sports/{sport}/events: Get events without odds (cheap, used for schedules)
- /sports/{sport}/odds: Get odds for events (costs one request per market and region)

Upstream problems never raise out of this feed. Every call returns a
FetchResult; failures carry an UpstreamUnavailable describing the status
or network error.
"""

import asyncio
import ssl
import time
from datetime import datetime, timezone
from typing import Callable, Optional

import certifi
import httpx
import orjson
import structlog

from oddsedge.config import FeedSettings
from oddsedge.errors import MalformedData, UpstreamUnavailable
from oddsedge.feeds.base import FetchResult
from oddsedge.models.payloads import parse_events, parse_odds_rows
from oddsedge.models.schemas import Event, EventOdds, source_key_has_draw

logger = structlog.get_logger()


def regions_for(source_key: str, settings: FeedSettings) -> str:
    """Soccer is priced mostly by UK/EU books, everything else by US books."""
    if source_key_has_draw(source_key):
        return settings.soccer_regions
    return settings.default_regions


def _header_int(headers: httpx.Headers, name: str) -> Optional[int]:
    value = headers.get(name, "")
    try:
        return int(float(value))
    except ValueError:
        return None


class OddsAPIFeed:
    """
    Odds and schedules from The Odds API.

    Usage:
        feed = OddsAPIFeed(settings.feed)
        await feed.start()

        events = await feed.fetch_events("americanfootball_nfl")
        odds = await feed.fetch_odds("americanfootball_nfl", ["h2h", "spreads"], "us")

        await feed.stop()
    """

    def __init__(
        self,
        settings: Optional[FeedSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.settings = settings or FeedSettings()
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._transport = transport

        self.logger = logger.bind(feed="odds_api")

        # HTTP client
        self._http_client: Optional[httpx.AsyncClient] = None

        # Rate limiting
        self._request_timestamps: list[float] = []
        self._requests_remaining: Optional[int] = None
        self._requests_used: int = 0

        # Health
        self._connected: bool = False
        self._error_count: int = 0
        self._last_success_ms: int = 0
        self._last_status: Optional[int] = None

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Open the HTTP client."""
        if self._http_client:
            return
        self.logger.info("Starting Odds API feed")

        ssl_context = ssl.create_default_context(cafile=certifi.where())
        self._http_client = httpx.AsyncClient(
            verify=ssl_context,
            timeout=self.settings.fetch_timeout_seconds,
            headers={"Accept": "application/json"},
            transport=self._transport,
        )

    async def stop(self) -> None:
        """Close the HTTP client."""
        self.logger.info("Stopping Odds API feed")
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
        self._connected = False

    async def __aenter__(self) -> "OddsAPIFeed":
        await self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.stop()

    # =========================================================================
    # Rate Limiting
    # =========================================================================

    async def _wait_for_rate_limit(self) -> None:
        """Wait if we're hitting rate limits."""
        now = time.time()

        # Clean old timestamps (older than 1 minute)
        self._request_timestamps = [
            ts for ts in self._request_timestamps
            if now - ts < 60
        ]

        if len(self._request_timestamps) >= self.settings.requests_per_minute:
            wait_time = 60 - (now - self._request_timestamps[0])
            if wait_time > 0:
                self.logger.debug("Rate limit reached, waiting", seconds=round(wait_time, 1))
                await asyncio.sleep(wait_time)

    def _track_quota(self, headers: httpx.Headers) -> None:
        """Track API quota from response headers."""
        self._request_timestamps.append(time.time())

        remaining = _header_int(headers, "x-requests-remaining")
        if remaining is not None:
            self._requests_remaining = remaining
        used = _header_int(headers, "x-requests-used")
        if used is not None:
            self._requests_used = used

    # =========================================================================
    # API Calls
    # =========================================================================

    async def _make_request(
        self,
        source_key: str,
        endpoint: str,
        params: Optional[dict] = None,
    ) -> tuple[Optional[list], Optional[UpstreamUnavailable]]:
        """Make an API request with rate limiting."""
        if not self._http_client:
            await self.start()

        await self._wait_for_rate_limit()

        url = f"{self.settings.base_url}{endpoint}"
        full_params = {"apiKey": self.settings.api_key}
        if params:
            full_params.update(params)

        try:
            response = await self._http_client.get(url, params=full_params)
        except httpx.HTTPError as e:
            self.logger.error("Request failed", source_key=source_key, endpoint=endpoint, error=str(e))
            self._error_count += 1
            return None, UpstreamUnavailable(source_key, f"network error: {e}")

        self._track_quota(response.headers)
        self._last_status = response.status_code
        self.logger.debug(
            "API request",
            source_key=source_key,
            endpoint=endpoint,
            status=response.status_code,
            used=self._requests_used,
            remaining=self._requests_remaining,
        )

        if response.status_code == 200:
            try:
                data = orjson.loads(response.content)
            except orjson.JSONDecodeError as e:
                self._error_count += 1
                self.logger.warning("Invalid JSON from API", source_key=source_key, error=str(e))
                return None, UpstreamUnavailable(source_key, "invalid JSON", response.status_code)
            self._connected = True
            self._last_success_ms = int(time.time() * 1000)
            return data, None

        self._error_count += 1
        if response.status_code == 401:
            self.logger.error("Invalid API key")
            self._connected = False
            reason = "unauthorized"
        elif response.status_code == 422:
            self.logger.warning("Request rejected (out of season or unsupported market)",
                                source_key=source_key, body=response.text[:200])
            reason = "unprocessable request"
        elif response.status_code == 429:
            self.logger.warning("Rate limited by API", source_key=source_key)
            reason = "rate limited"
        else:
            self.logger.warning(
                "API error",
                source_key=source_key,
                status=response.status_code,
                body=response.text[:200],
            )
            reason = "upstream error"
        return None, UpstreamUnavailable(source_key, reason, response.status_code)

    async def fetch_events(self, source_key: str) -> FetchResult[Event]:
        """Schedule for one sport key (no odds, cheapest call)."""
        data, error = await self._make_request(source_key, f"/sports/{source_key}/events")
        if error:
            return FetchResult.failure(error)

        try:
            events = parse_events(data, source_key, cached_at=self.clock())
        except MalformedData as e:
            return FetchResult.failure(UpstreamUnavailable(source_key, str(e)))

        self.logger.info(
            "Fetched events",
            source_key=source_key,
            count=len(events),
            requests_remaining=self._requests_remaining,
        )
        return FetchResult.success(events)

    async def fetch_odds(
        self,
        source_key: str,
        markets: list[str],
        regions: str,
    ) -> FetchResult[EventOdds]:
        """Odds for every upcoming event of one sport key."""
        params = {
            "regions": regions,
            "markets": ",".join(markets),
            "oddsFormat": "american",
            "dateFormat": "iso",
        }
        data, error = await self._make_request(source_key, f"/sports/{source_key}/odds", params)
        if error:
            return FetchResult.failure(error)

        try:
            rows = parse_odds_rows(data, source_key)
        except MalformedData as e:
            return FetchResult.failure(UpstreamUnavailable(source_key, str(e)))

        self.logger.info(
            "Fetched odds",
            source_key=source_key,
            markets=params["markets"],
            events=len(rows),
            requests_remaining=self._requests_remaining,
        )
        return FetchResult.success(rows)

    # =========================================================================
    # Metrics
    # =========================================================================

    def get_metrics(self) -> dict:
        """Get feed health metrics."""
        return {
            "name": "odds_api",
            "connected": self._connected,
            "requests_remaining": self._requests_remaining,
            "requests_used": self._requests_used,
            "error_count": self._error_count,
            "last_status": self._last_status,
            "age_seconds": (int(time.time() * 1000) - self._last_success_ms) / 1000 if self._last_success_ms else 0,
        }
