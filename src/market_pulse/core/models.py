"""Pydantic data models shared across the system."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# --- Type Aliases ---

Ticker = str
CanonicalSymbol = str

# --- Enumerations ---


class Symbol(StrEnum):
    """Canonical symbols tracked by the dashboard."""

    SP500 = "SP500"
    GOLD = "GOLD"
    SILVER = "SILVER"
    BTC = "BTC"
    ETH = "ETH"
    USDKZT = "USDKZT"


class SourceTag(StrEnum):
    """Which resolver stage produced a quote."""

    LIVE = "live"
    EXTRACTED = "extracted"
    CACHED = "cached"
    DEFAULT = "default"


class BatchSource(StrEnum):
    """Provenance of a whole price response."""

    LIVE = "live"
    CACHED = "cached"
    DEFAULT = "default"
    DEGRADED = "degraded"


class CachePolicy(StrEnum):
    """How the freshness window gates the cache fallback."""

    WHOLE_CACHE = "whole_cache"
    PER_RECORD = "per_record"


class StorageBackend(StrEnum):
    """Supported storage backends."""

    SQLITE = "sqlite"


class Sentiment(StrEnum):
    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"


class AnalysisType(StrEnum):
    PREDICTION = "prediction"
    ANALYSIS = "analysis"


class NewsCategory(StrEnum):
    NEWS = "news"
    ANALYSIS = "analysis"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_datetime(value: Any) -> datetime | None:
    """Lenient ISO-8601 / Unix-seconds parser; ``None`` when unparseable.

    Naive values are assumed to be UTC.
    """
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    else:
        try:
            parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


# --- Price Models ---


class PriceRange(BaseModel):
    """Expected numeric range for a symbol. Static configuration only."""

    model_config = ConfigDict(frozen=True)

    minimum: float
    maximum: float
    unit: str = "USD"

    @model_validator(mode="after")
    def bounds_ordered(self) -> PriceRange:
        if self.minimum <= 0:
            raise ValueError(f"minimum must be > 0, got {self.minimum}")
        if self.maximum <= self.minimum:
            raise ValueError(
                f"maximum ({self.maximum}) must be > minimum ({self.minimum})"
            )
        return self

    @property
    def midpoint(self) -> float:
        return (self.minimum + self.maximum) / 2

    def contains(self, value: float) -> bool:
        """Inclusive range check."""
        return self.minimum <= value <= self.maximum


# Upstream field aliases seen in gateway responses.
_SNAPSHOT_ALIASES: dict[str, tuple[str, ...]] = {
    "ticker": ("ticker", "symbol"),
    "price": ("price", "regularMarketPrice"),
    "change_percent": ("changePercent", "change_percent", "regularMarketChangePercent"),
    "high": ("high", "regularMarketDayHigh"),
    "low": ("low", "regularMarketDayLow"),
    "volume": ("volume", "regularMarketVolume"),
    "name": ("name", "shortName", "longName"),
}


class QuoteSnapshot(BaseModel):
    """One item from the quote gateway's snapshot endpoint.

    Upstream JSON is loosely typed; the validator accepts the alternative
    field names the gateway has been observed to return and treats missing
    or falsy numbers as absent.
    """

    model_config = ConfigDict(frozen=True)

    ticker: Ticker
    name: str | None = None
    price: float = 0.0
    change_percent: float | None = None
    high: float | None = None
    low: float | None = None
    volume: float | None = None

    @model_validator(mode="before")
    @classmethod
    def accept_upstream_aliases(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        out: dict[str, Any] = {}
        for field, aliases in _SNAPSHOT_ALIASES.items():
            for alias in aliases:
                value = data.get(alias)
                if value not in (None, ""):
                    out[field] = value
                    break
        if "price" in out:
            try:
                out["price"] = float(out["price"])
            except (TypeError, ValueError):
                out["price"] = 0.0
        return out


class MarketPriceRecord(BaseModel):
    """Persisted latest price for a canonical symbol (one row per symbol)."""

    model_config = ConfigDict(frozen=True)

    symbol: CanonicalSymbol
    display_name: str
    price: float
    change_24h: float | None = None
    high_24h: float | None = None
    low_24h: float | None = None
    volume: float | None = None
    updated_at: datetime = Field(default_factory=utcnow)


class ResolvedQuote(BaseModel):
    """A price produced by one of the resolver stages. Not persisted as such."""

    model_config = ConfigDict(frozen=True)

    symbol: CanonicalSymbol
    display_name: str
    price: float
    change_24h: float | None = None
    high_24h: float | None = None
    low_24h: float | None = None
    volume: float | None = None
    source: SourceTag
    resolved_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def fetched_price_positive(self) -> ResolvedQuote:
        if self.source in (SourceTag.LIVE, SourceTag.EXTRACTED) and self.price <= 0:
            raise ValueError(
                f"price must be > 0 for {self.source} quotes, got {self.price}"
            )
        return self

    def to_record(self) -> MarketPriceRecord:
        return MarketPriceRecord(
            symbol=self.symbol,
            display_name=self.display_name,
            price=self.price,
            change_24h=self.change_24h,
            high_24h=self.high_24h,
            low_24h=self.low_24h,
            volume=self.volume,
            updated_at=self.resolved_at,
        )

    @classmethod
    def from_record(
        cls, record: MarketPriceRecord, source: SourceTag = SourceTag.CACHED
    ) -> ResolvedQuote:
        return cls(
            symbol=record.symbol,
            display_name=record.display_name,
            price=record.price,
            change_24h=record.change_24h,
            high_24h=record.high_24h,
            low_24h=record.low_24h,
            volume=record.volume,
            source=source,
            resolved_at=record.updated_at,
        )


class PriceBatch(BaseModel):
    """Result of resolving a set of symbols."""

    quotes: list[ResolvedQuote]
    requested: list[CanonicalSymbol]
    source: BatchSource
    timestamp: datetime = Field(default_factory=utcnow)

    @property
    def missing(self) -> list[CanonicalSymbol]:
        present = {q.symbol for q in self.quotes}
        return [s for s in self.requested if s not in present]

    def get(self, symbol: str) -> ResolvedQuote | None:
        for quote in self.quotes:
            if quote.symbol == symbol:
                return quote
        return None


class PriceHistoryPoint(BaseModel):
    """One candle of gateway price history."""

    model_config = ConfigDict(frozen=True)

    symbol: CanonicalSymbol
    price: float
    high: float | None = None
    low: float | None = None
    volume: float | None = None
    timestamp: datetime
    interval: str = "1h"


# --- Search, News & Analysis Models ---


class SearchResult(BaseModel):
    """One web search hit."""

    model_config = ConfigDict(frozen=True)

    title: str = ""
    snippet: str = ""
    source_host: str | None = None
    url: str
    published_at: datetime | None = None
    rank: int | None = None

    @property
    def text(self) -> str:
        return f"{self.title} {self.snippet}"


class NewsRecord(BaseModel):
    """Stored news item, deduplicated by URL."""

    model_config = ConfigDict(frozen=True)

    title: str
    summary: str | None = None
    source: str | None = None
    url: str
    category: NewsCategory = NewsCategory.NEWS
    published_at: datetime = Field(default_factory=utcnow)

    @field_validator("url")
    @classmethod
    def url_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("url must not be empty")
        return v.strip()


class AnalysisRecord(BaseModel):
    """Sentiment-tagged analysis or prediction item."""

    model_config = ConfigDict(frozen=True)

    id: int | None = None
    symbol: str
    type: AnalysisType
    title: str
    content: str
    sentiment: Sentiment | None = None
    created_at: datetime = Field(default_factory=utcnow)


# --- Refresh Models ---


class RefreshResult(BaseModel):
    """Outcome of one refresh run. Each stage succeeds or fails independently."""

    prices: bool = False
    news: bool = False
    analysis: bool = False
    history: bool = False
    errors: dict[str, str] = Field(default_factory=dict)
    counts: dict[str, int] = Field(default_factory=dict)
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None

    @property
    def success(self) -> bool:
        return not self.errors
