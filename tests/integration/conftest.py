"""Integration test fixtures: real clients and SQLite, upstream HTTP mocked with respx."""

from __future__ import annotations

import json
from pathlib import Path

import httpx
import pytest
import respx

from market_pulse.core.config import (
    GatewayConfig,
    PulseConfig,
    RefreshConfig,
    ResolverConfig,
    SearchConfig,
    StorageConfig,
)
from market_pulse.core.models import StorageBackend
from market_pulse.storage.store import SqliteStore

GATEWAY_BASE = "https://gw.test/external/finance"
SNAPSHOTS_URL = f"{GATEWAY_BASE}/v1/markets/stock/quotes"
HISTORY_URL = f"{GATEWAY_BASE}/v2/markets/stock/history"
SEARCH_URL = "https://search.test/api/web_search"

# 2025-01-15 09:00 / 10:00 / 11:00 UTC
CANDLE_TIMES = (1736931600, 1736935200, 1736938800)


@pytest.fixture
def pipeline_config(tmp_path: Path) -> PulseConfig:
    return PulseConfig(
        gateway=GatewayConfig(base_url="https://gw.test", rate_limit=50),
        search=SearchConfig(base_url="https://search.test/api", rate_limit=50),
        storage=StorageConfig(
            backend=StorageBackend.SQLITE,
            sqlite_path=str(tmp_path / "data" / "pulse.db"),
        ),
        resolver=ResolverConfig(symbols=["BTC", "ETH", "GOLD"], primary_timeout=2.0),
        refresh=RefreshConfig(enabled=False, history_symbols=["BTC", "ETH"]),
    )


@pytest.fixture
async def integration_store(pipeline_config: PulseConfig) -> SqliteStore:
    """An initialized SqliteStore on the pipeline database file."""
    store = SqliteStore(pipeline_config.storage)
    await store.initialize()
    yield store
    await store.close()


class Upstream:
    """Mutable upstream state behind the respx routes."""

    def __init__(self) -> None:
        self.snapshots: list[dict] | None = [
            {
                "symbol": "BTC-USD",
                "regularMarketPrice": 96_000,
                "regularMarketChangePercent": 1.1,
                "regularMarketDayHigh": 97_000,
                "regularMarketDayLow": 95_000,
            },
            {"symbol": "ETH-USD", "regularMarketPrice": 3_400, "regularMarketChangePercent": -0.5},
            {"symbol": "GC=F", "regularMarketPrice": 2_650},
        ]
        # query substring -> raw search items
        self.search_items: dict[str, list[dict]] = {
            "current price": [],
            "": [
                {
                    "name": f"Bitcoin surge story {i}",
                    "snippet": "Analysts expect a rally",
                    "host_name": "coins.test",
                    "url": f"https://coins.test/{i}",
                    "date": f"2025-01-15T{10 - i % 10:02d}:00:00Z",
                }
                for i in range(12)
            ],
        }
        self.search_status = 200

    def snapshot_response(self, request: httpx.Request) -> httpx.Response:
        if self.snapshots is None:
            return httpx.Response(404, json={"message": "not found"})
        return httpx.Response(200, json={"body": self.snapshots})

    def history_response(self, request: httpx.Request) -> httpx.Response:
        ticker = request.url.params["symbol"]
        base = 96_000 if ticker == "BTC-USD" else 3_400
        body = {
            str(ts): {"timestamp": ts, "close": base + i, "high": base + 10, "low": base - 10}
            for i, ts in enumerate(CANDLE_TIMES)
        }
        return httpx.Response(200, json={"body": body})

    def search_response(self, request: httpx.Request) -> httpx.Response:
        if self.search_status != 200:
            return httpx.Response(self.search_status, json={"error": "bad request"})
        payload = json.loads(request.content)
        for key, items in self.search_items.items():
            if key in payload["query"]:
                return httpx.Response(200, json=items[: payload["num"]])
        return httpx.Response(200, json=[])


@pytest.fixture
def upstream():
    """Route gateway and search traffic to an ``Upstream`` instance."""
    state = Upstream()
    with respx.mock(assert_all_called=False) as router:
        router.get(SNAPSHOTS_URL).mock(side_effect=state.snapshot_response)
        router.get(HISTORY_URL).mock(side_effect=state.history_response)
        router.post(SEARCH_URL).mock(side_effect=state.search_response)
        yield state
