"""Price resolution: symbol table, plausibility checks, extraction, resolver.

Architecture
------------
Prices flow through a cascade of sources, each one only consulted when the
previous one could not answer:

    gateway snapshot → snippet extraction → stored cache → static default

Key pieces:

- ``normalize``: maps upstream ticker spellings to canonical symbols.
- ``PlausibilityValidator``: rejects prices off by an order of magnitude.
- ``SnippetPriceExtractor``: recovers a price from web search snippets.
- ``QuoteResolver``: runs the cascade and persists what it finds.
- ``FinanceGatewayClient``: the primary quote source over HTTP.
"""

from market_pulse.prices.extractor import ExtractedQuote, SnippetPriceExtractor, extract
from market_pulse.prices.gateway import FinanceGatewayClient
from market_pulse.prices.provider import PriceStore, QuoteSource, SearchSource
from market_pulse.prices.resolver import QuoteResolver
from market_pulse.prices.symbols import (
    DEFAULT_PRICES,
    DISPLAY_NAMES,
    PRICE_RANGES,
    display_name,
    normalize,
    upstream_ticker,
)
from market_pulse.prices.validator import PlausibilityValidator, is_plausible

__all__ = [
    # Symbols
    "normalize",
    "upstream_ticker",
    "display_name",
    "DISPLAY_NAMES",
    "PRICE_RANGES",
    "DEFAULT_PRICES",
    # Validation & extraction
    "PlausibilityValidator",
    "is_plausible",
    "SnippetPriceExtractor",
    "ExtractedQuote",
    "extract",
    # Protocols
    "QuoteSource",
    "SearchSource",
    "PriceStore",
    # Implementations
    "FinanceGatewayClient",
    "QuoteResolver",
]
