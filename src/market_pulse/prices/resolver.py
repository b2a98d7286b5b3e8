"""Quote resolver: cascading price sources with graceful degradation.

For a batch of symbols the resolver walks these stages:

1. **Attempt-Primary**: one batch call to the quote source, bounded by
   ``primary_timeout``. A failure or timeout sends every symbol to stage 3.
2. **Normalize+Validate**: each returned item is mapped to its canonical
   symbol and sanity-checked against the prior stored price (or the static
   range). Implausible prices are replaced by the reference value rather
   than dropped; zero or negative prices send that symbol to stage 3.
3. **Fallback-Extract**: per symbol, concurrently: web search plus
   snippet extraction.
4. **Persist**: every resolved quote is upserted; write failures are
   logged and never abort the batch.
5. **Cache-Fallback**: only if nothing resolved: stored records, gated by
   the freshness window and ``CachePolicy``.
6. **Default-Fallback**: every requested symbol still missing gets its
   static default.

No stage raises to the caller.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta, timezone

from market_pulse.core.config import ResolverConfig
from market_pulse.core.exceptions import StorageError
from market_pulse.core.models import (
    BatchSource,
    CachePolicy,
    MarketPriceRecord,
    PriceBatch,
    QuoteSnapshot,
    ResolvedQuote,
    SourceTag,
    utcnow,
)
from market_pulse.prices.extractor import SnippetPriceExtractor
from market_pulse.prices.provider import PriceStore, QuoteSource, SearchSource
from market_pulse.prices.symbols import (
    DEFAULT_PRICES,
    display_name,
    normalize,
    search_name,
    upstream_ticker,
)
from market_pulse.prices.validator import PlausibilityValidator

logger = logging.getLogger(__name__)

SEARCH_QUERY_TEMPLATE = "{name} current price USD today"


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class QuoteResolver:
    """Resolves canonical symbols to prices through the fallback cascade.

    All collaborators are injected; the resolver keeps no state between
    calls other than its configuration.
    """

    def __init__(
        self,
        quote_source: QuoteSource,
        search_source: SearchSource,
        store: PriceStore,
        config: ResolverConfig | None = None,
        *,
        search_result_count: int = 5,
        validator: PlausibilityValidator | None = None,
        extractor: SnippetPriceExtractor | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._quotes = quote_source
        self._search = search_source
        self._store = store
        self._config = config or ResolverConfig()
        self._result_count = search_result_count
        self._validator = validator or PlausibilityValidator()
        self._extractor = extractor or SnippetPriceExtractor()
        self._clock = clock
        self._defaults = {**DEFAULT_PRICES, **self._config.default_prices}

    @property
    def symbols(self) -> list[str]:
        return self._canonicalize(self._config.symbols)

    # --- Public API ---

    async def resolve_all(self, symbols: Iterable[str] | None = None) -> PriceBatch:
        """Resolve every requested symbol, degrading stage by stage.

        The returned batch holds exactly one quote per requested symbol that
        has a configured default; symbols with nothing at all are left out
        and the batch is tagged ``degraded``.
        """
        requested = self._canonicalize(symbols if symbols is not None else self._config.symbols)
        prior = await self._load_prior()

        resolved = await self._attempt_primary(requested, prior)

        pending = [s for s in requested if s not in resolved]
        if pending:
            resolved.update(await self._fallback_extract(pending))

        await self._persist(resolved.values())

        if not resolved:
            resolved = await self._cache_fallback(requested)

        quotes: list[ResolvedQuote] = []
        for symbol in requested:
            quote = resolved.get(symbol) or self._default_quote(symbol)
            if quote is not None:
                quotes.append(quote)

        batch = PriceBatch(
            quotes=quotes,
            requested=requested,
            source=self._batch_source(quotes, requested),
            timestamp=self._clock(),
        )
        logger.info(
            "Resolved %d/%d symbols (%s): %s",
            len(quotes),
            len(requested),
            batch.source.value,
            ", ".join(f"{q.symbol}={q.price:g}[{q.source.value}]" for q in quotes),
        )
        return batch

    async def resolve_one(self, ticker: str) -> ResolvedQuote | None:
        """Resolve a single ticker; ``None`` means nothing could be found."""
        symbol, _ = normalize(ticker)
        prior = await self._load_prior()

        quote = (await self._attempt_primary([symbol], prior)).get(symbol)
        if quote is None:
            quote = (await self._fallback_extract([symbol])).get(symbol)
        if quote is not None:
            await self._persist([quote])
            return quote

        cached = await self._cache_fallback([symbol])
        if symbol in cached:
            return cached[symbol]
        return self._default_quote(symbol)

    # --- Stages ---

    async def _attempt_primary(
        self,
        requested: list[str],
        prior: dict[str, MarketPriceRecord],
    ) -> dict[str, ResolvedQuote]:
        tickers = [upstream_ticker(s) for s in requested]
        try:
            snapshots = await asyncio.wait_for(
                self._quotes.fetch_snapshots(tickers),
                timeout=self._config.primary_timeout,
            )
        except TimeoutError:
            logger.warning(
                "Primary quote source timed out after %.1fs, falling back to search",
                self._config.primary_timeout,
            )
            return {}
        except Exception as e:
            logger.warning("Primary quote source failed, falling back to search: %s", e)
            return {}

        wanted = set(requested)
        resolved: dict[str, ResolvedQuote] = {}
        for snapshot in snapshots:
            symbol, name = normalize(snapshot.ticker)
            if symbol not in wanted or symbol in resolved:
                continue
            quote = self._validate_snapshot(symbol, name, snapshot, prior.get(symbol))
            if quote is not None:
                resolved[symbol] = quote
        return resolved

    def _validate_snapshot(
        self,
        symbol: str,
        name: str,
        snapshot: QuoteSnapshot,
        prior: MarketPriceRecord | None,
    ) -> ResolvedQuote | None:
        if snapshot.price <= 0:
            logger.warning(
                "Primary source returned non-positive price %s for %s", snapshot.price, symbol
            )
            return None

        if name == symbol and snapshot.name:
            name = snapshot.name

        prior_price = prior.price if prior is not None else None
        price = snapshot.price
        high, low = snapshot.high, snapshot.low

        if not self._validator.is_plausible(symbol, price, prior_price):
            reference = self._validator.reference_price(symbol, prior_price)
            if reference is None:
                return None
            logger.warning(
                "Implausible live price %s for %s, substituting %s", price, symbol, reference
            )
            price = reference
            if not self._validator.is_plausible(symbol, high, price):
                high = None
            if not self._validator.is_plausible(symbol, low, price):
                low = None

        return ResolvedQuote(
            symbol=symbol,
            display_name=name,
            price=price,
            change_24h=snapshot.change_percent,
            high_24h=high,
            low_24h=low,
            volume=snapshot.volume,
            source=SourceTag.LIVE,
            resolved_at=self._clock(),
        )

    async def _fallback_extract(self, symbols: list[str]) -> dict[str, ResolvedQuote]:
        semaphore = asyncio.Semaphore(self._config.max_concurrency)

        async def _bounded(symbol: str) -> ResolvedQuote | None:
            async with semaphore:
                return await self._extract_one(symbol)

        results = await asyncio.gather(*(_bounded(s) for s in symbols), return_exceptions=True)

        resolved: dict[str, ResolvedQuote] = {}
        for symbol, result in zip(symbols, results):
            if isinstance(result, BaseException):
                logger.warning("Snippet extraction failed for %s: %s", symbol, result)
            elif result is not None:
                resolved[symbol] = result
        return resolved

    async def _extract_one(self, symbol: str) -> ResolvedQuote | None:
        price_range = self._validator.range_for(symbol)
        if price_range is None:
            logger.debug("No price range for %s, skipping snippet extraction", symbol)
            return None

        query = SEARCH_QUERY_TEMPLATE.format(name=search_name(symbol))
        try:
            hits = await self._search.search(query, self._result_count)
        except Exception as e:
            logger.warning("Search failed for %s: %s", symbol, e)
            return None
        if not hits:
            logger.warning("Search returned no results for %s", symbol)
            return None

        extracted = self._extractor.extract(hits, price_range)
        if extracted.inconclusive:
            logger.info(
                "No price candidates for %s in %d snippets, using range midpoint %s",
                symbol,
                len(hits),
                extracted.price,
            )

        return ResolvedQuote(
            symbol=symbol,
            display_name=display_name(symbol),
            price=extracted.price,
            change_24h=extracted.change_percent,
            high_24h=extracted.high,
            low_24h=extracted.low,
            source=SourceTag.EXTRACTED,
            resolved_at=self._clock(),
        )

    async def _persist(self, quotes: Iterable[ResolvedQuote]) -> None:
        for quote in quotes:
            if quote.price <= 0:
                continue
            try:
                await self._store.upsert_price(quote.to_record())
            except StorageError as e:
                logger.error("Failed to persist price for %s: %s", quote.symbol, e)

    async def _cache_fallback(self, requested: list[str]) -> dict[str, ResolvedQuote]:
        try:
            records = await self._store.list_prices()
        except StorageError as e:
            logger.error("Failed to read cached prices: %s", e)
            return {}

        wanted = set(requested)
        records = [r for r in records if r.symbol in wanted and r.price > 0]
        if not records:
            logger.warning("Price cache is empty, using defaults")
            return {}

        cutoff = self._clock() - timedelta(minutes=self._config.freshness_window_minutes)
        fresh = [r for r in records if _as_utc(r.updated_at) >= cutoff]
        if not fresh:
            logger.warning(
                "Price cache is stale (older than %d minutes), using defaults",
                self._config.freshness_window_minutes,
            )
            return {}

        usable = records if self._config.cache_policy == CachePolicy.WHOLE_CACHE else fresh
        logger.warning("Serving %d cached prices", len(usable))
        return {r.symbol: ResolvedQuote.from_record(r, SourceTag.CACHED) for r in usable}

    def _default_quote(self, symbol: str) -> ResolvedQuote | None:
        price = self._defaults.get(symbol)
        if price is None:
            logger.warning("Missing price for %s and no default configured", symbol)
            return None
        return ResolvedQuote(
            symbol=symbol,
            display_name=display_name(symbol),
            price=price,
            source=SourceTag.DEFAULT,
            resolved_at=self._clock(),
        )

    # --- Helpers ---

    async def _load_prior(self) -> dict[str, MarketPriceRecord]:
        try:
            records = await self._store.list_prices()
        except StorageError as e:
            logger.error("Failed to load prior prices: %s", e)
            return {}
        return {r.symbol: r for r in records}

    @staticmethod
    def _canonicalize(symbols: Iterable[str]) -> list[str]:
        seen: dict[str, None] = {}
        for raw in symbols:
            symbol, _ = normalize(raw)
            seen.setdefault(symbol, None)
        return list(seen)

    @staticmethod
    def _batch_source(quotes: list[ResolvedQuote], requested: list[str]) -> BatchSource:
        if len(quotes) < len(requested):
            return BatchSource.DEGRADED
        tags = {q.source for q in quotes}
        if tags & {SourceTag.LIVE, SourceTag.EXTRACTED}:
            return BatchSource.LIVE
        if SourceTag.CACHED in tags:
            return BatchSource.CACHED
        return BatchSource.DEFAULT
