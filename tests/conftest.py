"""Shared fixtures."""

import pytest

from oddsedge.config import CacheSettings, FeedSettings
from oddsedge.cache.tiered_cache import TieredCache
from tests.factories import FakeClock, FakeSource


@pytest.fixture
def clock():
    """Clock frozen at T0 until advanced."""
    return FakeClock()


@pytest.fixture
def source():
    return FakeSource()


@pytest.fixture
def feed_settings():
    return FeedSettings(api_key="test-key", fetch_timeout_seconds=1.0)


@pytest.fixture
def cache(source, clock, feed_settings):
    """Cache over the fake source with default TTLs."""
    return TieredCache(source, CacheSettings(), feed_settings, clock=clock)
