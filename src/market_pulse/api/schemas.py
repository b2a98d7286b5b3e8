"""API-specific request/response schemas (Pydantic v2)."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from market_pulse.core.models import (
    AnalysisRecord,
    NewsRecord,
    PriceHistoryPoint,
    RefreshResult,
    ResolvedQuote,
)


# -- Error --


class ErrorResponse(BaseModel):
    """Standard error envelope."""

    error: str
    detail: str | None = None


# -- Health --


class HealthResponse(BaseModel):
    """System health, storage statistics and refresh timing."""

    status: str
    version: str
    storage_backend: str
    storage_ok: bool
    last_refresh: datetime | None = None
    scheduler_running: bool = False
    next_refresh: datetime | None = None
    statistics: dict[str, int | str | None] = Field(default_factory=dict)


# -- Prices --


class PriceResponse(BaseModel):
    """One market price as shown on the dashboard."""

    symbol: str
    name: str
    price: float
    change_24h: float | None = None
    high_24h: float | None = None
    low_24h: float | None = None
    volume: float | None = None
    source: str
    updated_at: datetime

    @classmethod
    def from_quote(cls, quote: ResolvedQuote) -> PriceResponse:
        return cls(
            symbol=quote.symbol,
            name=quote.display_name,
            price=quote.price,
            change_24h=quote.change_24h,
            high_24h=quote.high_24h,
            low_24h=quote.low_24h,
            volume=quote.volume,
            source=quote.source.value,
            updated_at=quote.resolved_at,
        )


class PriceListResponse(BaseModel):
    """All requested prices plus the batch-level provenance tag."""

    prices: list[PriceResponse]
    timestamp: datetime
    source: str
    missing: list[str] = Field(default_factory=list)


# -- History --


class HistoryPointResponse(BaseModel):
    price: float
    high: float | None = None
    low: float | None = None
    volume: float | None = None
    timestamp: datetime

    @classmethod
    def from_point(cls, point: PriceHistoryPoint) -> HistoryPointResponse:
        return cls(
            price=point.price,
            high=point.high,
            low=point.low,
            volume=point.volume,
            timestamp=point.timestamp,
        )


class HistoryResponse(BaseModel):
    symbol: str
    interval: str | None = None
    points: list[HistoryPointResponse]


# -- News & Analysis --


class NewsItemResponse(BaseModel):
    title: str
    summary: str | None = None
    source: str | None = None
    url: str
    category: str
    published_at: datetime

    @classmethod
    def from_record(cls, record: NewsRecord) -> NewsItemResponse:
        return cls(
            title=record.title,
            summary=record.summary,
            source=record.source,
            url=record.url,
            category=record.category.value,
            published_at=record.published_at,
        )


class NewsListResponse(BaseModel):
    """News items; ``source`` is "live" or "cached"."""

    news: list[NewsItemResponse]
    timestamp: datetime
    source: str


class AnalysisItemResponse(BaseModel):
    id: int | None = None
    symbol: str
    type: str
    title: str
    content: str
    sentiment: str | None = None
    created_at: datetime

    @classmethod
    def from_record(cls, record: AnalysisRecord) -> AnalysisItemResponse:
        return cls(
            id=record.id,
            symbol=record.symbol,
            type=record.type.value,
            title=record.title,
            content=record.content,
            sentiment=record.sentiment.value if record.sentiment else None,
            created_at=record.created_at,
        )


class AnalysisListResponse(BaseModel):
    """Analysis items; ``source`` is "live" or "cached"."""

    analysis: list[AnalysisItemResponse]
    timestamp: datetime
    source: str


# -- Refresh --


class RefreshStages(BaseModel):
    prices: bool
    news: bool
    analysis: bool
    history: bool


class RefreshResponse(BaseModel):
    """Outcome of a refresh run. ``success`` means every stage succeeded."""

    success: bool
    results: RefreshStages
    errors: dict[str, str]
    counts: dict[str, int]
    started_at: datetime
    completed_at: datetime | None = None

    @classmethod
    def from_result(cls, result: RefreshResult) -> RefreshResponse:
        return cls(
            success=result.success,
            results=RefreshStages(
                prices=result.prices,
                news=result.news,
                analysis=result.analysis,
                history=result.history,
            ),
            errors=result.errors,
            counts=result.counts,
            started_at=result.started_at,
            completed_at=result.completed_at,
        )
