"""Tests for the CLI module."""

from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from click.testing import CliRunner

from fakes import NOW, FakeQuoteSource, FakeSearch
from market_pulse.cli import _Services, cli, main
from market_pulse.core.config import (
    PulseConfig,
    RefreshConfig,
    ResolverConfig,
    StorageConfig,
)
from market_pulse.core.exceptions import UpstreamUnavailable
from market_pulse.core.models import NewsRecord, SearchResult
from market_pulse.prices.resolver import QuoteResolver
from market_pulse.refresh.service import RefreshService
from market_pulse.storage.store import SqliteStore


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def config(tmp_path):
    return PulseConfig(
        storage=StorageConfig(sqlite_path=str(tmp_path / "cli.db")),
        resolver=ResolverConfig(symbols=["BTC"], primary_timeout=0.05),
        refresh=RefreshConfig(startup_delay_seconds=0, history_symbols=["BTC"]),
    )


@pytest.fixture
def search():
    return FakeSearch(
        default=[
            SearchResult(
                title=f"Bitcoin rally {i}",
                snippet="Analysts expect a surge",
                source_host="coins.test",
                url=f"https://coins.test/{i}",
                published_at=NOW,
            )
            for i in range(3)
        ]
    )


@pytest.fixture
def gateway(btc_snapshot):
    gw = FakeQuoteSource([btc_snapshot])
    gw.get_market_news = AsyncMock(
        return_value=[NewsRecord(title="Gateway headline", url="https://gw.test/1", published_at=NOW)]
    )
    return gw


@pytest.fixture
def patched(config, search, gateway):
    """Patch config loading and service wiring with in-process fakes."""

    @asynccontextmanager
    async def fake_open(cfg):
        store = SqliteStore(cfg.storage)
        await store.initialize()
        try:
            resolver = QuoteResolver(gateway, search, store, cfg.resolver)
            refresh = RefreshService(resolver, search, gateway, store, cfg.refresh)
            yield _Services(store, gateway, search, resolver, refresh)
        finally:
            await store.close()

    with patch("market_pulse.cli._load_config", return_value=config), patch(
        "market_pulse.cli._open_services", fake_open
    ):
        yield


def _seed_news(path: str) -> None:
    async def _seed():
        store = SqliteStore(StorageConfig(sqlite_path=path))
        await store.initialize()
        await store.upsert_news(NewsRecord(title="Stored story", url="https://s.test/1", published_at=NOW))
        await store.close()

    asyncio.run(_seed())


# ---------------------------------------------------------------------------
# Group
# ---------------------------------------------------------------------------


class TestGroup:
    def test_help(self, runner):
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "Market Pulse" in result.output
        for command in ("prices", "news", "refresh", "serve", "schedule", "status"):
            assert command in result.output

    def test_version(self, runner):
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output


# ---------------------------------------------------------------------------
# prices
# ---------------------------------------------------------------------------


class TestPricesCommand:
    def test_prices_help(self, runner):
        result = runner.invoke(cli, ["prices", "--help"])
        assert result.exit_code == 0
        assert "--symbols" in result.output

    def test_prices_table(self, runner, patched):
        result = runner.invoke(cli, ["prices"])
        assert result.exit_code == 0, result.output
        assert "BTC" in result.output
        assert "96,000.00" in result.output

    def test_prices_json(self, runner, patched):
        result = runner.invoke(cli, ["prices", "--symbols", "btc-usd", "--format", "json"])
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["source"] == "live"
        assert data["quotes"][0]["symbol"] == "BTC"
        assert data["quotes"][0]["price"] == 96_000

    def test_prices_reports_missing(self, runner, patched):
        result = runner.invoke(cli, ["prices", "--symbols", "BTC,DOGE"])
        assert result.exit_code == 0, result.output
        assert "No price for: DOGE" in result.output


# ---------------------------------------------------------------------------
# news
# ---------------------------------------------------------------------------


class TestNewsCommand:
    def test_news_from_search(self, runner, patched, search):
        result = runner.invoke(cli, ["news", "--format", "json"])
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert [n["url"] for n in data] == [f"https://coins.test/{i}" for i in range(3)]
        assert search.queries

    def test_news_limit(self, runner, patched):
        result = runner.invoke(cli, ["news", "-n", "2", "--format", "json"])
        assert len(json.loads(result.output)) == 2

    def test_news_from_gateway(self, runner, patched, gateway):
        result = runner.invoke(cli, ["news", "--source", "gateway"])
        assert result.exit_code == 0, result.output
        assert "Gateway headline" in result.output
        gateway.get_market_news.assert_awaited_once()

    def test_gateway_failure_is_reported(self, runner, patched, gateway):
        gateway.get_market_news.side_effect = UpstreamUnavailable("gateway down")
        result = runner.invoke(cli, ["news", "--source", "gateway"])
        assert result.exit_code == 0
        assert "Gateway news failed" in result.output
        assert "No news found" in result.output

    def test_news_from_store(self, runner, patched, config):
        _seed_news(config.storage.sqlite_path)
        result = runner.invoke(cli, ["news", "--source", "stored", "--format", "json"])
        assert result.exit_code == 0, result.output
        assert [n["title"] for n in json.loads(result.output)] == ["Stored story"]


# ---------------------------------------------------------------------------
# refresh
# ---------------------------------------------------------------------------


class TestRefreshCommand:
    def test_refresh_success(self, runner, patched):
        result = runner.invoke(cli, ["refresh", "--format", "json"])
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["success"] is True
        assert data["prices"] and data["news"] and data["analysis"]

    def test_refresh_failure_exits_nonzero(self, runner, patched, search):
        search.default = []
        result = runner.invoke(cli, ["refresh"])
        assert result.exit_code == 1
        assert "Refresh Result" in result.output
        assert "failed" in result.output


# ---------------------------------------------------------------------------
# schedule / serve / status
# ---------------------------------------------------------------------------


class TestScheduleCommand:
    def test_schedule_once(self, runner, patched):
        result = runner.invoke(cli, ["schedule", "--once"])
        assert result.exit_code == 0, result.output
        assert "Refreshing every" in result.output
        assert "Refresh Result" in result.output


class TestServeCommand:
    def test_serve_runs_app_factory(self, runner, patched):
        with patch("uvicorn.run") as mock_run:
            result = runner.invoke(cli, ["serve", "--port", "9000"])
        assert result.exit_code == 0, result.output
        mock_run.assert_called_once()
        args, kwargs = mock_run.call_args
        assert args == ("market_pulse.api.app:create_app",)
        assert kwargs["factory"] is True
        assert kwargs["port"] == 9000
        assert kwargs["host"] == "0.0.0.0"


class TestStatusCommand:
    def test_status_empty_db(self, runner, patched):
        result = runner.invoke(cli, ["status"])
        assert result.exit_code == 0, result.output
        assert "Status" in result.output
        assert "never" in result.output

    def test_status_with_data(self, runner, patched, config):
        _seed_news(config.storage.sqlite_path)
        result = runner.invoke(cli, ["status"])
        assert result.exit_code == 0, result.output
        assert "News items" in result.output
        assert "1" in result.output


# ---------------------------------------------------------------------------
# Module-level tests
# ---------------------------------------------------------------------------


class TestModuleImports:
    def test_cli_importable(self):
        assert cli is not None
        assert main is not None

    def test_config_loaded_lazily(self, runner):
        loader = MagicMock()
        with patch("market_pulse.core.load_config", loader):
            result = runner.invoke(cli, ["prices", "--help"])
        assert result.exit_code == 0
        loader.assert_not_called()
