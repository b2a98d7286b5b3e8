"""FastAPI route definitions for the market-pulse API."""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Query

import market_pulse
from market_pulse.api.deps import (
    get_config,
    get_resolver,
    get_scheduler,
    get_search,
    get_store,
)
from market_pulse.api.schemas import (
    AnalysisItemResponse,
    AnalysisListResponse,
    HealthResponse,
    HistoryPointResponse,
    HistoryResponse,
    NewsItemResponse,
    NewsListResponse,
    PriceListResponse,
    PriceResponse,
    RefreshResponse,
)
from market_pulse.core.config import PulseConfig
from market_pulse.core.exceptions import StorageError
from market_pulse.core.models import AnalysisType, utcnow
from market_pulse.prices.provider import SearchSource
from market_pulse.prices.resolver import QuoteResolver
from market_pulse.prices.symbols import normalize
from market_pulse.refresh.scheduler import RefreshScheduler
from market_pulse.search.feeds import (
    search_crypto_news,
    search_crypto_predictions,
    search_market_analysis,
    to_news_records,
)
from market_pulse.search.sentiment import SentimentTagger
from market_pulse.storage.store import SqliteStore

logger = logging.getLogger(__name__)

router = APIRouter()

CACHED_ITEMS_LIMIT = 20


# -- Health --


@router.get("/health", response_model=HealthResponse)
async def health_check(
    store: SqliteStore = Depends(get_store),
    config: PulseConfig = Depends(get_config),
    scheduler: RefreshScheduler = Depends(get_scheduler),
):
    """System health, row counts and refresh timing."""
    storage_ok = await store.health_check()
    stats = await store.get_statistics() if storage_ok else {}
    return HealthResponse(
        status="ok" if storage_ok else "degraded",
        version=market_pulse.__version__,
        storage_backend=str(config.storage.backend.value),
        storage_ok=storage_ok,
        last_refresh=scheduler.last_run or await store.last_refresh(),
        scheduler_running=scheduler.running,
        next_refresh=scheduler.next_run,
        statistics=stats,
    )


# -- Market Prices --


@router.get("/market/prices", response_model=PriceListResponse)
async def list_prices(
    symbols: str | None = Query(None, description="Comma-separated symbols; default all"),
    resolver: QuoteResolver = Depends(get_resolver),
):
    """Current price for every configured (or requested) symbol."""
    requested = [s for s in symbols.split(",") if s.strip()] if symbols else None
    batch = await resolver.resolve_all(requested)
    return PriceListResponse(
        prices=[PriceResponse.from_quote(q) for q in batch.quotes],
        timestamp=batch.timestamp,
        source=batch.source.value,
        missing=batch.missing,
    )


@router.get("/market/prices/{ticker}", response_model=PriceResponse)
async def get_price(
    ticker: str,
    resolver: QuoteResolver = Depends(get_resolver),
):
    """Current price for one ticker, in any known spelling."""
    quote = await resolver.resolve_one(ticker)
    if quote is None:
        raise HTTPException(status_code=404, detail=f"No price found for '{ticker}'")
    return PriceResponse.from_quote(quote)


@router.get("/market/history/{symbol}", response_model=HistoryResponse)
async def get_history(
    symbol: str,
    interval: str | None = Query(None, description="Candle interval, e.g. 1h"),
    limit: int = Query(24, ge=1, le=1000),
    store: SqliteStore = Depends(get_store),
):
    """Stored price history, oldest first."""
    canonical, _ = normalize(symbol)
    points = await store.get_history(canonical, interval=interval, limit=limit)
    return HistoryResponse(
        symbol=canonical,
        interval=interval,
        points=[HistoryPointResponse.from_point(p) for p in points],
    )


# -- Crypto News & Analysis --


@router.get("/crypto/news", response_model=NewsListResponse)
async def list_news(
    search: SearchSource = Depends(get_search),
    store: SqliteStore = Depends(get_store),
    config: PulseConfig = Depends(get_config),
):
    """Fresh crypto news; stored news when live search yields nothing."""
    results = await search_crypto_news(search, config.refresh.news_count)
    if not results:
        logger.warning("News search returned nothing, falling back to stored news")
        cached = await store.list_news(limit=CACHED_ITEMS_LIMIT)
        return NewsListResponse(
            news=[NewsItemResponse.from_record(r) for r in cached],
            timestamp=utcnow(),
            source="cached",
        )

    records = to_news_records(results)
    for record in records[: config.refresh.news_store_limit]:
        try:
            await store.upsert_news(record)
        except StorageError as e:
            logger.error("Failed to store news item %s: %s", record.url, e)

    return NewsListResponse(
        news=[NewsItemResponse.from_record(r) for r in records],
        timestamp=utcnow(),
        source="live",
    )


@router.get("/crypto/analysis", response_model=AnalysisListResponse)
async def list_analysis(
    search: SearchSource = Depends(get_search),
    store: SqliteStore = Depends(get_store),
    config: PulseConfig = Depends(get_config),
):
    """Sentiment-tagged predictions and analysis; stored items as fallback."""
    count = config.refresh.analysis_count
    predictions, analysis = await asyncio.gather(
        search_crypto_predictions(search, count),
        search_market_analysis(search, count),
    )
    tagger = SentimentTagger()
    items = tagger.tag_all(predictions, AnalysisType.PREDICTION)
    items += tagger.tag_all(analysis, AnalysisType.ANALYSIS)

    if not items:
        logger.warning("Analysis search returned nothing, falling back to stored analysis")
        cached = await store.list_analysis(limit=CACHED_ITEMS_LIMIT)
        return AnalysisListResponse(
            analysis=[AnalysisItemResponse.from_record(r) for r in cached],
            timestamp=utcnow(),
            source="cached",
        )

    for item in items[:count]:
        try:
            await store.create_analysis(item)
        except StorageError as e:
            logger.error("Failed to store analysis item %r: %s", item.title, e)

    return AnalysisListResponse(
        analysis=[AnalysisItemResponse.from_record(r) for r in items],
        timestamp=utcnow(),
        source="live",
    )


# -- Refresh --


@router.api_route("/refresh", methods=["GET", "POST"], response_model=RefreshResponse)
async def trigger_refresh(scheduler: RefreshScheduler = Depends(get_scheduler)):
    """Run a full refresh now and report per-stage outcomes."""
    result = await scheduler.trigger()
    return RefreshResponse.from_result(result)
