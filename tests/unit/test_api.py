"""Tests for the FastAPI REST API module."""

from __future__ import annotations

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from fakes import NOW, FakeQuoteSource, FakeSearch
from market_pulse.api.app import create_app
from market_pulse.api.deps import AppState
from market_pulse.core.config import (
    APIConfig,
    PulseConfig,
    RefreshConfig,
    ResolverConfig,
    StorageConfig,
)
from market_pulse.core.exceptions import (
    ConfigError,
    RateLimitError,
    StorageError,
    UpstreamUnavailable,
)
from market_pulse.core.models import PriceHistoryPoint, SearchResult


# -- Fixtures --


def _make_config(tmp_path, api_key=None):
    """Create a test config with the background scheduler off."""
    return PulseConfig(
        storage=StorageConfig(sqlite_path=str(tmp_path / "test.db")),
        resolver=ResolverConfig(primary_timeout=0.05),
        refresh=RefreshConfig(enabled=False),
        api=APIConfig(api_key=api_key),
    )


def _hits(n: int) -> list[SearchResult]:
    return [
        SearchResult(
            title=f"Bitcoin rally {i}",
            snippet="Analysts expect a surge",
            source_host="coins.test",
            url=f"https://coins.test/{i}",
            published_at=NOW - timedelta(minutes=i),
        )
        for i in range(n)
    ]


@pytest.fixture
def quotes(btc_snapshot):
    points = [
        PriceHistoryPoint(symbol="BTC", price=95_000 + i, timestamp=NOW - timedelta(hours=i))
        for i in range(3)
    ]
    return FakeQuoteSource([btc_snapshot], history={"BTC": points})


@pytest.fixture
def search():
    # Snippet extraction queries find nothing, so unresolved symbols get defaults
    return FakeSearch({"current price": []}, default=_hits(12))


@pytest.fixture
def app(tmp_path, quotes, search):
    return create_app(config=_make_config(tmp_path), quote_source=quotes, search_source=search)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def authed_client(tmp_path, quotes, search):
    app = create_app(
        config=_make_config(tmp_path, api_key="test-secret-key"),
        quote_source=quotes,
        search_source=search,
    )
    with TestClient(app) as c:
        yield c


# -- Lifespan --


class TestLifespan:
    def test_app_state_attached(self, app):
        with TestClient(app):
            state = app.state.app_state
            assert isinstance(state, AppState)
            assert state.scheduler.running is False

    def test_scheduler_started_when_enabled(self, tmp_path, quotes, search):
        config = _make_config(tmp_path).model_copy(
            update={"refresh": RefreshConfig(startup_delay_seconds=3600)}
        )
        app = create_app(config=config, quote_source=quotes, search_source=search)
        with TestClient(app) as c:
            assert c.get("/api/health").json()["scheduler_running"] is True


# -- Health --


class TestHealth:
    def test_health(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "ok"
        assert body["storage_ok"] is True
        assert body["storage_backend"] == "sqlite"
        assert body["last_refresh"] is None
        assert body["statistics"]["prices"] == 0


# -- Prices --


class TestPrices:
    def test_all_prices(self, client):
        resp = client.get("/api/market/prices")
        assert resp.status_code == 200
        body = resp.json()
        assert body["source"] == "live"
        assert body["missing"] == []
        prices = {p["symbol"]: p for p in body["prices"]}
        assert list(prices) == ["SP500", "GOLD", "SILVER", "BTC", "ETH", "USDKZT"]
        assert prices["BTC"]["price"] == 96_000
        assert prices["BTC"]["name"] == "Bitcoin"
        assert prices["BTC"]["source"] == "live"
        assert prices["GOLD"]["source"] == "default"

    def test_symbol_filter(self, client):
        body = client.get("/api/market/prices", params={"symbols": "btc-usd,XAUUSD"}).json()
        assert [p["symbol"] for p in body["prices"]] == ["BTC", "GOLD"]

    def test_unknown_symbol_marks_batch_degraded(self, client):
        body = client.get("/api/market/prices", params={"symbols": "BTC,DOGE"}).json()
        assert body["source"] == "degraded"
        assert body["missing"] == ["DOGE"]

    def test_single_price(self, client):
        resp = client.get("/api/market/prices/BTC-USD")
        assert resp.status_code == 200
        body = resp.json()
        assert body["symbol"] == "BTC"
        assert body["high_24h"] == 97_000

    def test_single_price_not_found(self, client):
        resp = client.get("/api/market/prices/DOGE")
        assert resp.status_code == 404
        assert "DOGE" in resp.json()["detail"]

    def test_prices_served_from_defaults_when_upstream_down(self, tmp_path, search):
        search.default = []
        app = create_app(
            config=_make_config(tmp_path),
            quote_source=FakeQuoteSource(error=UpstreamUnavailable("down")),
            search_source=search,
        )
        with TestClient(app) as c:
            body = c.get("/api/market/prices").json()
        assert body["source"] == "default"
        assert len(body["prices"]) == 6


# -- History --


class TestHistory:
    def test_empty_history(self, client):
        body = client.get("/api/market/history/BTC").json()
        assert body == {"symbol": "BTC", "interval": None, "points": []}

    def test_history_after_refresh(self, client):
        client.post("/api/refresh")
        body = client.get("/api/market/history/btc-usd", params={"limit": 2}).json()
        assert body["symbol"] == "BTC"
        assert [p["price"] for p in body["points"]] == [95_001, 95_000]

    def test_limit_validated(self, client):
        assert client.get("/api/market/history/BTC", params={"limit": 0}).status_code == 422


# -- News & Analysis --


class TestNews:
    def test_live_news_is_stored(self, client):
        body = client.get("/api/crypto/news").json()
        assert body["source"] == "live"
        assert len(body["news"]) == 7
        assert body["news"][0]["url"] == "https://coins.test/0"
        assert client.get("/api/health").json()["statistics"]["news"] == 7

    def test_falls_back_to_stored_news(self, client, search):
        client.get("/api/crypto/news")
        search.default = []
        body = client.get("/api/crypto/news").json()
        assert body["source"] == "cached"
        assert len(body["news"]) == 7

    def test_empty_everywhere(self, client, search):
        search.default = []
        body = client.get("/api/crypto/news").json()
        assert body == {"news": [], "timestamp": body["timestamp"], "source": "cached"}


class TestAnalysis:
    def test_live_analysis(self, client):
        body = client.get("/api/crypto/analysis").json()
        assert body["source"] == "live"
        items = body["analysis"]
        assert {i["type"] for i in items} == {"prediction", "analysis"}
        assert items[0]["symbol"] == "BTC"
        assert items[0]["sentiment"] == "bullish"

    def test_falls_back_to_stored_analysis(self, client, search):
        client.get("/api/crypto/analysis")
        search.default = []
        body = client.get("/api/crypto/analysis").json()
        assert body["source"] == "cached"
        assert len(body["analysis"]) == 10
        assert all(i["id"] is not None for i in body["analysis"])


# -- Refresh --


class TestRefresh:
    def test_post_refresh(self, client):
        resp = client.post("/api/refresh")
        assert resp.status_code == 200
        body = resp.json()
        assert body["results"] == {
            "prices": True,
            "news": True,
            "analysis": True,
            "history": True,
        }
        assert body["success"] is True
        assert body["errors"] == {}
        assert body["counts"]["history"] == 3

    def test_get_refresh_reports_failures(self, client, search):
        search.default = []
        body = client.get("/api/refresh").json()
        assert body["success"] is False
        assert body["results"]["news"] is False
        assert "news" in body["errors"]

    def test_refresh_updates_health(self, client):
        client.post("/api/refresh")
        health = client.get("/api/health").json()
        assert health["last_refresh"] is not None
        assert health["statistics"]["history_points"] == 3


# -- Auth --


class TestApiKey:
    def test_health_is_exempt(self, authed_client):
        assert authed_client.get("/api/health").status_code == 200

    def test_missing_key_rejected(self, authed_client):
        resp = authed_client.get("/api/market/prices")
        assert resp.status_code == 401
        assert resp.json()["error"] == "Unauthorized"

    def test_valid_key_accepted(self, authed_client):
        resp = authed_client.get(
            "/api/market/prices", headers={"X-API-Key": "test-secret-key"}
        )
        assert resp.status_code == 200


# -- Error mapping --


class TestExceptionHandler:
    @pytest.mark.parametrize(
        "exc, status",
        [
            (ConfigError("bad"), 400),
            (StorageError("disk"), 500),
            (RateLimitError("slow"), 503),
            (UpstreamUnavailable("down"), 502),
        ],
    )
    def test_status_mapping(self, app, exc, status):
        @app.get("/api/boom")
        async def boom():
            raise exc

        with TestClient(app) as c:
            resp = c.get("/api/boom")
        assert resp.status_code == status
        assert resp.json() == {"error": type(exc).__name__, "detail": str(exc)}
