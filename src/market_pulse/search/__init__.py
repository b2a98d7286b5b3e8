"""Web search client, news feeds and sentiment tagging."""

from market_pulse.search.client import WebSearchClient
from market_pulse.search.feeds import (
    search_crypto_news,
    search_crypto_predictions,
    search_market_analysis,
    to_news_records,
)
from market_pulse.search.sentiment import KeywordRules, SentimentTagger

__all__ = [
    "WebSearchClient",
    "search_crypto_news",
    "search_crypto_predictions",
    "search_market_analysis",
    "to_news_records",
    "KeywordRules",
    "SentimentTagger",
]
