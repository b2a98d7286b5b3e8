"""Async client for the web search service."""

from __future__ import annotations

import logging
from typing import Any

import httpx
from aiolimiter import AsyncLimiter
from pydantic import ValidationError

from market_pulse.core.config import SearchConfig
from market_pulse.core.exceptions import SearchError, UpstreamError
from market_pulse.core.http import rate_limited_request
from market_pulse.core.models import SearchResult, parse_datetime

logger = logging.getLogger(__name__)

_SEARCH_PATH = "/web_search"


class WebSearchClient:
    """Web search over HTTP.

    ``search`` never raises: service failures are logged and reported as
    an empty result list. Use via ``async with WebSearchClient(config) as s:``.
    """

    def __init__(
        self,
        config: SearchConfig,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self._limiter = AsyncLimiter(max_rate=config.rate_limit, time_period=1.0)
        headers = {"Authorization": f"Bearer {config.api_key}"} if config.api_key else {}
        self._client = client or httpx.AsyncClient(
            headers=headers,
            timeout=httpx.Timeout(config.request_timeout),
            follow_redirects=True,
        )

    async def __aenter__(self) -> WebSearchClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def search(self, query: str, result_count: int = 10) -> list[SearchResult]:
        """Up to ``result_count`` hits for ``query``; ``[]`` on any failure."""
        try:
            raw = await self._query(query, result_count)
        except SearchError as e:
            logger.warning("Web search failed for %r: %s", query, e)
            return []

        results: list[SearchResult] = []
        for item in raw[:result_count]:
            result = _to_result(item)
            if result is not None:
                results.append(result)
        logger.debug("Search %r returned %d results", query, len(results))
        return results

    async def _query(self, query: str, result_count: int) -> list[dict[str, Any]]:
        """Raw result items from the service.

        Raises:
            SearchError: Transport failure, non-2xx status or unexpected body.
        """
        url = f"{self._config.base_url}{_SEARCH_PATH}"
        context = {"query": query, "url": url}
        try:
            response = await rate_limited_request(
                self._client,
                self._limiter,
                "POST",
                url,
                json={"query": query, "num": result_count},
            )
            data = response.json()
        except UpstreamError as e:
            raise SearchError(str(e), context={**context, **e.context}) from e
        except ValueError as e:
            raise SearchError("Search service returned invalid JSON", context=context) from e

        if isinstance(data, dict):
            data = data.get("results", data.get("body", []))
        if not isinstance(data, list):
            raise SearchError(
                f"Unexpected search response type: {type(data).__name__}", context=context
            )
        return [item for item in data if isinstance(item, dict)]


def _to_result(item: dict[str, Any]) -> SearchResult | None:
    """Map a raw service item onto ``SearchResult``; items without a URL are dropped."""
    url = (item.get("url") or "").strip()
    if not url:
        return None
    try:
        return SearchResult(
            title=item.get("name") or item.get("title") or "",
            snippet=item.get("snippet") or "",
            source_host=item.get("host_name") or None,
            url=url,
            published_at=parse_datetime(item.get("date")),
            rank=item.get("rank"),
        )
    except ValidationError as e:
        logger.debug("Skipping malformed search result %s: %s", url, e)
        return None
