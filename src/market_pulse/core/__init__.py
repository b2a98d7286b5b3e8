"""Foundation types, config, and exceptions."""

from market_pulse.core.config import (
    APIConfig,
    GatewayConfig,
    PulseConfig,
    RefreshConfig,
    ResolverConfig,
    SearchConfig,
    StorageConfig,
    load_config,
)
from market_pulse.core.exceptions import (
    ConfigError,
    ExtractionInconclusive,
    MarketPulseError,
    RateLimitError,
    RefreshError,
    SearchError,
    StorageError,
    UpstreamError,
    UpstreamUnavailable,
)
from market_pulse.core.models import (
    AnalysisRecord,
    AnalysisType,
    BatchSource,
    CachePolicy,
    CanonicalSymbol,
    MarketPriceRecord,
    NewsCategory,
    NewsRecord,
    PriceBatch,
    PriceHistoryPoint,
    PriceRange,
    QuoteSnapshot,
    RefreshResult,
    ResolvedQuote,
    SearchResult,
    Sentiment,
    SourceTag,
    StorageBackend,
    Symbol,
    Ticker,
)

__all__ = [
    # Type aliases
    "Ticker",
    "CanonicalSymbol",
    # Enums
    "Symbol",
    "SourceTag",
    "BatchSource",
    "CachePolicy",
    "StorageBackend",
    "Sentiment",
    "AnalysisType",
    "NewsCategory",
    # Price models
    "PriceRange",
    "QuoteSnapshot",
    "MarketPriceRecord",
    "ResolvedQuote",
    "PriceBatch",
    "PriceHistoryPoint",
    # Search models
    "SearchResult",
    "NewsRecord",
    "AnalysisRecord",
    "RefreshResult",
    # Config
    "PulseConfig",
    "GatewayConfig",
    "SearchConfig",
    "StorageConfig",
    "ResolverConfig",
    "RefreshConfig",
    "APIConfig",
    "load_config",
    # Exceptions
    "MarketPulseError",
    "ConfigError",
    "UpstreamError",
    "UpstreamUnavailable",
    "RateLimitError",
    "SearchError",
    "ExtractionInconclusive",
    "StorageError",
    "RefreshError",
]
