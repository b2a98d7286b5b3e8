"""Rate-limited async HTTP client for the finance quote gateway."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

import httpx
from aiolimiter import AsyncLimiter
from pydantic import ValidationError

from market_pulse.core.config import GatewayConfig
from market_pulse.core.exceptions import UpstreamError, UpstreamUnavailable
from market_pulse.core.http import rate_limited_request
from market_pulse.core.models import (
    NewsCategory,
    NewsRecord,
    PriceHistoryPoint,
    QuoteSnapshot,
    parse_datetime,
)
from market_pulse.prices.symbols import normalize, upstream_ticker

logger = logging.getLogger(__name__)

# Gateway endpoints (relative to base_url + api_prefix)
_SNAPSHOTS_PATH = "/v1/markets/stock/quotes"
_QUOTE_PATH = "/v1/markets/quote"
_HISTORY_PATH = "/v2/markets/stock/history"
_NEWS_PATH = "/v1/markets/news"


class FinanceGatewayClient:
    """Async client for the finance gateway's quote, history and news APIs.

    Every request carries the ``X-Z-AI-From`` source header. Use via
    ``async with FinanceGatewayClient(config) as gateway:``.
    """

    def __init__(
        self,
        config: GatewayConfig,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self._limiter = AsyncLimiter(max_rate=config.rate_limit, time_period=1.0)
        self._client = client or httpx.AsyncClient(
            headers={"X-Z-AI-From": config.source_header},
            timeout=httpx.Timeout(config.request_timeout),
            follow_redirects=True,
        )

    async def __aenter__(self) -> FinanceGatewayClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    # --- Quotes ---

    async def fetch_snapshots(self, tickers: list[str]) -> list[QuoteSnapshot]:
        """Batch snapshot quotes for upstream tickers.

        Raises:
            UpstreamUnavailable: The request failed, or the response was not
                a non-empty list containing at least one positive price.
        """
        context = {"tickers": list(tickers)}
        try:
            data = await self._get_json(_SNAPSHOTS_PATH, {"ticker": ",".join(tickers)})
        except UpstreamError as e:
            raise UpstreamUnavailable(str(e), context={**context, **e.context}) from e

        items = data.get("body") if isinstance(data, dict) else data
        if not isinstance(items, list) or not items:
            raise UpstreamUnavailable("Snapshot response is empty", context=context)

        snapshots = [s for s in (self._parse_snapshot(item) for item in items) if s is not None]
        if not any(s.price > 0 for s in snapshots):
            raise UpstreamUnavailable(
                "Snapshot response contains no positive prices", context=context
            )

        logger.debug("Gateway returned %d snapshots for %d tickers", len(snapshots), len(tickers))
        return snapshots

    async def get_quote(self, ticker: str, quote_type: str = "STOCKS") -> QuoteSnapshot | None:
        """Real-time quote for a single ticker; ``None`` when the gateway has no price."""
        data = await self._get_json(_QUOTE_PATH, {"ticker": ticker, "type": quote_type})
        if isinstance(data, dict) and isinstance(data.get("body"), dict):
            data = data["body"]
        snapshot = self._parse_snapshot(data) if isinstance(data, dict) else None
        if snapshot is None or snapshot.price <= 0:
            return None
        return snapshot

    # --- History ---

    async def get_history(
        self,
        symbol: str,
        interval: str = "1h",
        limit: int | None = None,
    ) -> list[PriceHistoryPoint]:
        """Price candles for a symbol, oldest first.

        ``symbol`` may be canonical or any known upstream spelling; the
        returned points carry the canonical symbol. Candle timestamps are
        Unix seconds.
        """
        canonical, _ = normalize(symbol)
        params: dict[str, Any] = {"symbol": upstream_ticker(canonical), "interval": interval}
        if limit:
            params["limit"] = limit

        data = await self._get_json(_HISTORY_PATH, params)
        body = data.get("body") if isinstance(data, dict) else None
        if isinstance(body, dict):
            candles = list(body.values())
        elif isinstance(body, list):
            candles = body
        else:
            candles = []

        points: list[PriceHistoryPoint] = []
        for candle in candles:
            if not isinstance(candle, dict):
                continue
            ts = candle.get("timestamp") or candle.get("date_utc")
            close = candle.get("close")
            if ts is None or close is None:
                continue
            try:
                points.append(
                    PriceHistoryPoint(
                        symbol=canonical,
                        price=float(close),
                        high=candle.get("high"),
                        low=candle.get("low"),
                        volume=candle.get("volume"),
                        timestamp=datetime.fromtimestamp(int(ts), tz=timezone.utc),
                        interval=interval,
                    )
                )
            except (TypeError, ValueError, ValidationError) as e:
                logger.debug("Skipping malformed candle for %s: %s", canonical, e)

        points.sort(key=lambda p: p.timestamp)
        if limit:
            points = points[-limit:]
        return points

    # --- News ---

    async def get_market_news(self, ticker: str | None = None) -> list[NewsRecord]:
        """Market headlines from the gateway. Items without a URL are skipped."""
        params = {"ticker": ticker} if ticker else None
        data = await self._get_json(_NEWS_PATH, params)
        items = data.get("body") if isinstance(data, dict) else data
        if not isinstance(items, list):
            return []

        records: list[NewsRecord] = []
        for item in items:
            if not isinstance(item, dict) or not item.get("url"):
                continue
            published = parse_datetime(item.get("publishedAt") or item.get("pubDate"))
            try:
                records.append(
                    NewsRecord(
                        title=item.get("title") or "Untitled",
                        summary=item.get("summary") or item.get("text"),
                        source=item.get("source"),
                        url=item["url"],
                        category=NewsCategory.NEWS,
                        **({"published_at": published} if published else {}),
                    )
                )
            except ValidationError as e:
                logger.debug("Skipping malformed news item: %s", e)
        return records

    # --- Internal ---

    @staticmethod
    def _parse_snapshot(item: Any) -> QuoteSnapshot | None:
        try:
            return QuoteSnapshot.model_validate(item)
        except ValidationError as e:
            logger.debug("Skipping malformed snapshot item: %s", e)
            return None

    def _url(self, path: str) -> str:
        return f"{self._config.base_url}{self._config.api_prefix}{path}"

    async def _get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        url = self._url(path)
        response = await rate_limited_request(
            self._client,
            self._limiter,
            "GET",
            url,
            params=params,
            headers={"X-Z-AI-From": self._config.source_header},
        )
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(
                f"Gateway returned invalid JSON: {url}",
                context={"url": url, "status_code": response.status_code},
            ) from e
