"""Collaborator protocols consumed by the quote resolver.

Architecture
------------
The resolver depends only on three narrow interfaces:

    QuoteSource  ──┐
    SearchSource ──┼──> QuoteResolver ──> PriceBatch
    PriceStore   ──┘

- **QuoteSource** is the primary structured quote provider. It may fail
  or stall; the resolver bounds it with a timeout and fails over.
- **SearchSource** returns unstructured web search hits. "No results" is
  an empty list, never an exception.
- **PriceStore** persists the latest price per canonical symbol with
  idempotent upsert semantics.

Concrete implementations live in ``prices.gateway``, ``search.client`` and
``storage.store``; tests substitute in-memory fakes.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from market_pulse.core.models import MarketPriceRecord, QuoteSnapshot, SearchResult


@runtime_checkable
class QuoteSource(Protocol):
    """Batch snapshot quotes from the financial gateway."""

    async def fetch_snapshots(self, tickers: list[str]) -> list[QuoteSnapshot]:
        """Fetch snapshot quotes for a batch of upstream tickers.

        May raise or hang; callers are expected to apply a timeout. No
        retry contract is implied.
        """
        ...


@runtime_checkable
class SearchSource(Protocol):
    """Web search used for snippet extraction and news feeds."""

    async def search(self, query: str, result_count: int = 10) -> list[SearchResult]:
        """Return up to ``result_count`` hits; empty list when none."""
        ...


@runtime_checkable
class PriceStore(Protocol):
    """Persistence for the latest price of each canonical symbol."""

    async def upsert_price(self, record: MarketPriceRecord) -> None:
        """Insert or fully overwrite the row keyed by ``record.symbol``."""
        ...

    async def list_prices(self) -> list[MarketPriceRecord]:
        """All stored price records."""
        ...

    async def get_price(self, symbol: str) -> MarketPriceRecord | None:
        """Stored record for one symbol, if any."""
        ...
