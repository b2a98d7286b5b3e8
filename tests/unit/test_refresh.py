"""Tests for market_pulse.refresh.service (RefreshService)."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from fakes import NOW, FakeQuoteSource, FakeSearch
from market_pulse.core.config import RefreshConfig, ResolverConfig, StorageConfig
from market_pulse.core.exceptions import StorageError, UpstreamError
from market_pulse.core.models import AnalysisType, PriceHistoryPoint, SearchResult, Sentiment
from market_pulse.prices.resolver import QuoteResolver
from market_pulse.refresh.service import HistorySource, RefreshService
from market_pulse.storage.store import SqliteStore


def _hits(prefix: str, n: int) -> list[SearchResult]:
    return [
        SearchResult(
            title=f"{prefix} bitcoin story {i}",
            snippet="Analysts see a surge",
            url=f"https://{prefix}.test/{i}",
            published_at=NOW - timedelta(minutes=i),
        )
        for i in range(n)
    ]


def _points(symbol: str, n: int = 3) -> list[PriceHistoryPoint]:
    return [
        PriceHistoryPoint(symbol=symbol, price=100 + i, timestamp=NOW - timedelta(hours=i))
        for i in range(n)
    ]


class _SlowHistory:
    async def get_history(self, symbol, interval="1h", limit=None):
        await asyncio.sleep(5)
        return []


# --- Fixtures ---


@pytest.fixture
async def store():
    s = SqliteStore(StorageConfig(sqlite_path=":memory:"))
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def history():
    return FakeQuoteSource(
        history={"BTC": _points("BTC"), "ETH": _points("ETH"), "USDKZT": _points("USDKZT")}
    )


@pytest.fixture
def make_service(store, btc_snapshot, history):
    def _make(search=None, quotes=None, history_source=None, symbols=("BTC",), **config):
        resolver = QuoteResolver(
            quotes or FakeQuoteSource([btc_snapshot]),
            FakeSearch(),
            store,
            ResolverConfig(symbols=list(symbols), primary_timeout=0.05),
        )
        return RefreshService(
            resolver,
            search if search is not None else FakeSearch(default=_hits("news", 12)),
            history_source or history,
            store,
            RefreshConfig(**config),
        )

    return _make


# --- Full runs ---


class TestRefresh:
    async def test_all_stages_succeed(self, make_service, store):
        result = await make_service().refresh()

        assert result.success
        assert (result.prices, result.news, result.analysis, result.history) == (
            True, True, True, True,
        )
        assert result.counts == {"prices": 1, "news": 7, "analysis": 10, "history": 9}
        assert result.completed_at >= result.started_at
        assert await store.last_refresh() is not None
        assert (await store.get_price("BTC")).price == 96_000

    async def test_stage_failures_are_independent(self, make_service):
        result = await make_service(search=FakeSearch()).refresh()

        assert result.prices and result.history
        assert not result.news and not result.analysis
        assert "no results" in result.errors["news"]
        assert "no results" in result.errors["analysis"]
        assert not result.success

    async def test_settings_failure_is_recorded(self, make_service, store, monkeypatch):
        monkeypatch.setattr(store, "mark_refreshed", AsyncMock(side_effect=StorageError("locked")))
        result = await make_service().refresh()
        assert result.errors == {"settings": "locked"}
        assert result.prices and result.news and result.analysis and result.history

    async def test_timeout_marks_unfinished_stages(self, make_service):
        service = make_service(history_source=_SlowHistory(), overall_timeout=0.5)

        result = await service.refresh()

        assert result.prices and result.news and result.analysis
        assert not result.history
        assert result.errors["history"] == "timed out after 0.5s"
        assert result.completed_at is not None


# --- Individual stages ---


class TestStages:
    async def test_prices_fail_when_batch_degraded(self, make_service):
        service = make_service(symbols=("BTC", "AAPL"))
        result = await service.refresh()
        assert not result.prices
        assert "AAPL" in result.errors["prices"]

    async def test_news_store_limit(self, make_service, store):
        search = FakeSearch(
            {"today": _hits("a", 7), "latest": _hits("b", 7), "analysis": _hits("c", 7)}
        )
        stored = await make_service(search=search, news_count=20).refresh_news()
        assert stored == 15
        assert len(await store.list_news(limit=50)) == 15

    async def test_analysis_is_tagged(self, make_service, store):
        created = await make_service(analysis_count=4).refresh_analysis()
        assert created == 4
        items = await store.list_analysis()
        assert {a.symbol for a in items} == {"BTC"}
        predictions = [a for a in items if a.type == AnalysisType.PREDICTION]
        analysis = [a for a in items if a.type == AnalysisType.ANALYSIS]
        assert (len(predictions), len(analysis)) == (2, 2)
        assert {a.sentiment for a in predictions} == {Sentiment.BULLISH}
        assert {a.sentiment for a in analysis} == {Sentiment.NEUTRAL}

    async def test_history_partial_failure_tolerated(self, make_service, history):
        history.history["ETH"] = UpstreamError("404")
        saved = await make_service().refresh_history()
        assert saved == 6
        assert [c[0] for c in history.history_calls] == ["BTC", "ETH", "USDKZT"]
        assert history.history_calls[0][1:] == ("1h", 24)

    async def test_history_total_failure_raises(self, make_service, history):
        for symbol in ("BTC", "ETH", "USDKZT"):
            history.history[symbol] = UpstreamError("down")
        result = await make_service().refresh()
        assert not result.history
        assert "every symbol" in result.errors["history"]

    async def test_history_duplicates_not_counted(self, make_service):
        service = make_service()
        assert await service.refresh_history() == 9
        assert await service.refresh_history() == 0


def test_fake_source_satisfies_history_protocol(history):
    assert isinstance(history, HistorySource)
