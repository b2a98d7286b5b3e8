"""Keyword sentiment and symbol tagging for analysis items."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass

from market_pulse.core.models import AnalysisRecord, AnalysisType, SearchResult, Sentiment, utcnow

logger = logging.getLogger(__name__)

DEFAULT_CONTENT = "Click to read more..."
FALLBACK_SYMBOL = "CRYPTO"


@dataclass(frozen=True)
class KeywordRules:
    """Ordered keyword lists; bullish is checked before bearish."""

    bullish: tuple[str, ...]
    bearish: tuple[str, ...]

    def classify(self, text: str) -> Sentiment:
        if any(word in text for word in self.bullish):
            return Sentiment.BULLISH
        if any(word in text for word in self.bearish):
            return Sentiment.BEARISH
        return Sentiment.NEUTRAL


PREDICTION_RULES = KeywordRules(
    bullish=("bullish", "surge", "rally", "increase"),
    bearish=("bearish", "drop", "crash", "decline"),
)
ANALYSIS_RULES = KeywordRules(
    bullish=("bullish", "positive", "growth"),
    bearish=("bearish", "negative", "risk"),
)

# Checked in order; short tickers must match as whole words.
_SYMBOL_PATTERNS: list[tuple[str, re.Pattern[str], bool]] = [
    ("BTC", re.compile(r"bitcoin|\bbtc\b"), False),
    ("ETH", re.compile(r"ethereum|\beth\b"), False),
    ("SOL", re.compile(r"solana|\bsol\b"), True),
]


class SentimentTagger:
    """Turns search hits into ``AnalysisRecord`` items.

    Sentiment is a first-match keyword rule over the lowercased title and
    snippet; predictions and analysis pieces use different keyword sets.
    """

    def __init__(
        self,
        prediction_rules: KeywordRules = PREDICTION_RULES,
        analysis_rules: KeywordRules = ANALYSIS_RULES,
    ) -> None:
        self._rules = {
            AnalysisType.PREDICTION: prediction_rules,
            AnalysisType.ANALYSIS: analysis_rules,
        }

    def sentiment(self, text: str, kind: AnalysisType) -> Sentiment:
        return self._rules[kind].classify(text.lower())

    @staticmethod
    def detect_symbol(text: str, kind: AnalysisType) -> str:
        """Asset a piece is about; ``CRYPTO`` when none is recognised.

        Solana is only recognised in predictions.
        """
        lowered = text.lower()
        for symbol, pattern, prediction_only in _SYMBOL_PATTERNS:
            if prediction_only and kind != AnalysisType.PREDICTION:
                continue
            if pattern.search(lowered):
                return symbol
        return FALLBACK_SYMBOL

    def tag(self, result: SearchResult, kind: AnalysisType) -> AnalysisRecord:
        text = result.text
        return AnalysisRecord(
            symbol=self.detect_symbol(text, kind),
            type=kind,
            title=result.title or result.snippet[:100] or "Untitled",
            content=result.snippet or DEFAULT_CONTENT,
            sentiment=self.sentiment(text, kind),
            created_at=result.published_at or utcnow(),
        )

    def tag_all(self, results: Iterable[SearchResult], kind: AnalysisType) -> list[AnalysisRecord]:
        records = [self.tag(r, kind) for r in results]
        logger.debug("Tagged %d %s items", len(records), kind.value)
        return records
