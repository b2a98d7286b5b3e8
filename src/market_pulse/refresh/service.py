"""One-shot refresh of prices, news, analysis and price history."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Protocol, runtime_checkable

from market_pulse.core.config import RefreshConfig
from market_pulse.core.exceptions import RefreshError, StorageError
from market_pulse.core.models import (
    AnalysisType,
    BatchSource,
    PriceHistoryPoint,
    RefreshResult,
    utcnow,
)
from market_pulse.prices.provider import SearchSource
from market_pulse.prices.resolver import QuoteResolver
from market_pulse.search.feeds import (
    search_crypto_news,
    search_crypto_predictions,
    search_market_analysis,
    to_news_records,
)
from market_pulse.search.sentiment import SentimentTagger
from market_pulse.storage.store import StorageProtocol

logger = logging.getLogger(__name__)

STAGES = ("prices", "news", "analysis", "history")


@runtime_checkable
class HistorySource(Protocol):
    async def get_history(
        self, symbol: str, interval: str = "1h", limit: int | None = None
    ) -> list[PriceHistoryPoint]: ...


class RefreshService:
    """Runs the four refresh stages independently under one overall timeout.

    A failing stage is recorded in the result and never aborts the others.
    Hitting the timeout cancels unfinished stages; rows already written stay
    written. Concurrent runs are allowed.
    """

    def __init__(
        self,
        resolver: QuoteResolver,
        search: SearchSource,
        history: HistorySource,
        store: StorageProtocol,
        config: RefreshConfig | None = None,
        tagger: SentimentTagger | None = None,
    ) -> None:
        self._resolver = resolver
        self._search = search
        self._history = history
        self._store = store
        self._config = config or RefreshConfig()
        self._tagger = tagger or SentimentTagger()

    async def refresh(self) -> RefreshResult:
        result = RefreshResult(started_at=utcnow())
        stages: dict[str, Callable[[], Awaitable[int]]] = {
            "prices": self.refresh_prices,
            "news": self.refresh_news,
            "analysis": self.refresh_analysis,
            "history": self.refresh_history,
        }

        logger.info("Starting refresh")
        try:
            await asyncio.wait_for(
                asyncio.gather(
                    *(self._run_stage(name, stage, result) for name, stage in stages.items())
                ),
                timeout=self._config.overall_timeout,
            )
        except TimeoutError:
            logger.error("Refresh timed out after %.0fs", self._config.overall_timeout)
            for name in STAGES:
                if not getattr(result, name) and name not in result.errors:
                    result.errors[name] = f"timed out after {self._config.overall_timeout:g}s"

        try:
            await self._store.mark_refreshed()
        except StorageError as e:
            logger.error("Failed to record refresh time: %s", e)
            result.errors["settings"] = str(e)

        result.completed_at = utcnow()
        logger.info(
            "Refresh finished: prices=%s news=%s analysis=%s history=%s errors=%d",
            result.prices, result.news, result.analysis, result.history, len(result.errors),
        )
        return result

    async def _run_stage(
        self,
        name: str,
        stage: Callable[[], Awaitable[int]],
        result: RefreshResult,
    ) -> None:
        try:
            count = await stage()
        except Exception as e:
            error = e if isinstance(e, RefreshError) else RefreshError(
                f"{name} stage failed: {e}", context={"stage": name}
            )
            logger.error("Refresh stage %s failed: %s", name, error)
            result.errors[name] = str(error)
            return
        setattr(result, name, True)
        result.counts[name] = count

    # --- Stages ---

    async def refresh_prices(self) -> int:
        batch = await self._resolver.resolve_all()
        if batch.source == BatchSource.DEGRADED:
            raise RefreshError(
                f"No price for: {', '.join(batch.missing)}",
                context={"stage": "prices", "missing": batch.missing},
            )
        return len(batch.quotes)

    async def refresh_news(self) -> int:
        results = await search_crypto_news(self._search, self._config.news_count)
        if not results:
            raise RefreshError("News search returned no results", context={"stage": "news"})

        stored = 0
        for record in to_news_records(results)[: self._config.news_store_limit]:
            try:
                await self._store.upsert_news(record)
                stored += 1
            except StorageError as e:
                logger.warning("Skipping news item %s: %s", record.url, e)
        return stored

    async def refresh_analysis(self) -> int:
        count = self._config.analysis_count
        predictions, analysis = await asyncio.gather(
            search_crypto_predictions(self._search, count),
            search_market_analysis(self._search, count),
        )
        items = self._tagger.tag_all(predictions, AnalysisType.PREDICTION)
        items += self._tagger.tag_all(analysis, AnalysisType.ANALYSIS)
        if not items:
            raise RefreshError(
                "Analysis search returned no results", context={"stage": "analysis"}
            )

        created = 0
        for item in items[:count]:
            try:
                await self._store.create_analysis(item)
                created += 1
            except StorageError as e:
                logger.warning("Skipping analysis item %r: %s", item.title, e)
        return created

    async def refresh_history(self) -> int:
        saved = 0
        failures: dict[str, str] = {}
        for symbol in self._config.history_symbols:
            try:
                points = await self._history.get_history(
                    symbol, self._config.history_interval, self._config.history_limit
                )
                saved += await self._store.save_history_points(points)
            except Exception as e:
                logger.warning("History refresh failed for %s: %s", symbol, e)
                failures[symbol] = str(e)

        if failures and len(failures) == len(self._config.history_symbols):
            raise RefreshError(
                f"History refresh failed for every symbol: {', '.join(failures)}",
                context={"stage": "history", "failures": failures},
            )
        return saved
