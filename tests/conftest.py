"""Shared pytest fixtures for market-pulse."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from fakes import NOW
from market_pulse.core.models import MarketPriceRecord, PriceHistoryPoint, SearchResult


# --- Factories ---


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def make_result():
    """Factory for SearchResult with overridable defaults."""

    def _make(**overrides):
        defaults = dict(
            title="Bitcoin climbs",
            snippet="Bitcoin trades at $97,200 today.",
            source_host="news.example.com",
            url="https://news.example.com/btc",
            published_at=NOW,
        )
        defaults.update(overrides)
        return SearchResult(**defaults)

    return _make


@pytest.fixture
def make_price_record():
    """Factory for MarketPriceRecord."""

    def _make(**overrides):
        defaults = dict(
            symbol="BTC",
            display_name="Bitcoin",
            price=96_000.0,
            change_24h=1.1,
            high_24h=97_000.0,
            low_24h=95_000.0,
            volume=2e9,
            updated_at=NOW - timedelta(minutes=10),
        )
        defaults.update(overrides)
        return MarketPriceRecord(**defaults)

    return _make


@pytest.fixture
def make_history_point():
    """Factory for PriceHistoryPoint."""

    def _make(**overrides):
        defaults = dict(
            symbol="BTC",
            price=96_000.0,
            high=96_500.0,
            low=95_500.0,
            volume=1e6,
            timestamp=NOW,
            interval="1h",
        )
        defaults.update(overrides)
        return PriceHistoryPoint(**defaults)

    return _make


@pytest.fixture
def btc_snapshot() -> dict:
    """Gateway snapshot item for Bitcoin."""
    return {
        "ticker": "BTC-USD",
        "price": 96_000,
        "changePercent": 1.1,
        "high": 97_000,
        "low": 95_000,
        "volume": 2e9,
    }
