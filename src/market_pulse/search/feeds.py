"""Crypto news, prediction and market-analysis feeds built on web search."""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Iterable, Sequence

from market_pulse.core.models import NewsCategory, NewsRecord, SearchResult, utcnow
from market_pulse.prices.provider import SearchSource

logger = logging.getLogger(__name__)

NEWS_QUERIES = (
    "cryptocurrency news today",
    "bitcoin ethereum latest news",
    "crypto market analysis",
)
MARKET_ANALYSIS_QUERY = "cryptocurrency market analysis technical analysis"

# Items past this index are categorised as analysis rather than news
NEWS_CATEGORY_CUTOFF = 10


def prediction_queries(year: int | None = None) -> tuple[str, ...]:
    year = year or utcnow().year
    return (
        f"bitcoin price prediction {year}",
        "ethereum price forecast",
        "cryptocurrency analysis today",
    )


def dedupe_by_url(results: Iterable[SearchResult]) -> list[SearchResult]:
    """Keep the first occurrence of every URL, preserving order."""
    seen: set[str] = set()
    unique: list[SearchResult] = []
    for result in results:
        if result.url in seen:
            continue
        seen.add(result.url)
        unique.append(result)
    return unique


def newest_first(results: Iterable[SearchResult]) -> list[SearchResult]:
    """Sort by publication date descending; undated results go last."""
    return sorted(
        results,
        key=lambda r: (
            r.published_at is None,
            -r.published_at.timestamp() if r.published_at else 0.0,
        ),
    )


async def _fan_out(
    source: SearchSource, queries: Sequence[str], per_query: int
) -> list[SearchResult]:
    batches = await asyncio.gather(
        *(source.search(q, per_query) for q in queries), return_exceptions=True
    )
    merged: list[SearchResult] = []
    for query, batch in zip(queries, batches):
        if isinstance(batch, BaseException):
            logger.warning("Search query %r failed: %s", query, batch)
            continue
        merged.extend(batch)
    return merged


async def search_crypto_news(source: SearchSource, count: int = 15) -> list[SearchResult]:
    """Latest crypto headlines across several queries, newest first."""
    per_query = math.ceil(count / len(NEWS_QUERIES))
    merged = await _fan_out(source, NEWS_QUERIES, per_query)
    return newest_first(dedupe_by_url(merged))[:count]


async def search_crypto_predictions(source: SearchSource, count: int = 10) -> list[SearchResult]:
    """Price prediction and forecast pieces, in search order."""
    queries = prediction_queries()
    per_query = math.ceil(count / len(queries))
    merged = await _fan_out(source, queries, per_query)
    return dedupe_by_url(merged)[:count]


async def search_market_analysis(source: SearchSource, count: int = 10) -> list[SearchResult]:
    return await source.search(MARKET_ANALYSIS_QUERY, count)


def to_news_records(results: Iterable[SearchResult]) -> list[NewsRecord]:
    """Convert search hits to news records.

    The first ten are categorised ``news`` and the rest ``analysis``. Titles
    fall back to the start of the snippet, then to "Untitled"; undated hits
    are stamped with the current time.
    """
    records: list[NewsRecord] = []
    for index, result in enumerate(results):
        category = NewsCategory.NEWS if index < NEWS_CATEGORY_CUTOFF else NewsCategory.ANALYSIS
        records.append(
            NewsRecord(
                title=result.title or result.snippet[:100] or "Untitled",
                summary=result.snippet or None,
                source=result.source_host,
                url=result.url,
                category=category,
                published_at=result.published_at or utcnow(),
            )
        )
    return records
