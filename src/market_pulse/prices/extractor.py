"""Heuristic price extraction from unstructured web search snippets.

Extraction is an ordered pipeline of small, independent rules. Each rule
scans the combined snippet text and returns an optional value; the
extractor composes them and fills every gap with a range-derived default,
so ``extract`` always produces a result and never raises.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from market_pulse.core.exceptions import ExtractionInconclusive
from market_pulse.core.models import PriceRange

# Optional leading "$", digit groups with optional thousands separators,
# up to two decimal digits.
_NUMBER_RE = re.compile(r"\$?(\d[\d,]*(?:\.\d{1,2})?)")
_HIGH_RE = re.compile(r"high[\s:]*\$?(\d[\d,]*(?:\.\d+)?)", re.IGNORECASE)
_LOW_RE = re.compile(r"low[\s:]*\$?(\d[\d,]*(?:\.\d+)?)", re.IGNORECASE)
_PERCENT_RE = re.compile(r"([+-]?\d+(?:\.\d+)?)%")

HIGH_FALLBACK_FACTOR = 1.01
LOW_FALLBACK_FACTOR = 0.99


@dataclass(frozen=True)
class ExtractedQuote:
    """Best-guess quote recovered from snippet text."""

    price: float
    high: float
    low: float
    change_percent: float
    inconclusive: bool = False


def _parse_number(raw: str) -> float | None:
    try:
        return float(raw.replace(",", "").replace("$", ""))
    except ValueError:
        return None


def combine_snippets(snippets: Iterable[Any]) -> str:
    """Concatenate titles and bodies of search results into one text blob.

    Accepts ``SearchResult`` objects or mappings with ``title`` and
    ``text``/``snippet`` keys.
    """
    parts: list[str] = []
    for item in snippets:
        if isinstance(item, Mapping):
            title = item.get("title") or item.get("name") or ""
            body = item.get("text") or item.get("snippet") or ""
        else:
            title = getattr(item, "title", "") or ""
            body = getattr(item, "snippet", "") or getattr(item, "text", "") or ""
        parts.append(f"{title} {body}")
    return " ".join(parts)


def _labeled_spans(text: str) -> list[tuple[int, int]]:
    """Character spans of numbers that belong to a high/low label."""
    spans: list[tuple[int, int]] = []
    for pattern in (_HIGH_RE, _LOW_RE):
        for match in pattern.finditer(text):
            spans.append(match.span(1))
    return spans


# --- Rules ---


def price_rule(text: str, price_range: PriceRange) -> float | None:
    """Candidate inside the range closest to its midpoint.

    Numbers attached to a high/low label or directly followed by ``%`` are
    not price candidates. Ties keep the earliest candidate.
    """
    labeled = _labeled_spans(text)
    midpoint = price_range.midpoint
    best: float | None = None

    for match in _NUMBER_RE.finditer(text):
        start, end = match.span(1)
        if end < len(text) and text[end] == "%":
            continue
        if any(lo <= start < hi for lo, hi in labeled):
            continue
        value = _parse_number(match.group(1))
        if value is None or not price_range.contains(value):
            continue
        if best is None or abs(value - midpoint) < abs(best - midpoint):
            best = value

    return best


def high_rule(text: str, price: float) -> float | None:
    """First number after a "high" label, accepted only above the price."""
    match = _HIGH_RE.search(text)
    if match is None:
        return None
    value = _parse_number(match.group(1))
    return value if value is not None and value > price else None


def low_rule(text: str, price: float) -> float | None:
    """First number after a "low" label, accepted only below the price."""
    match = _LOW_RE.search(text)
    if match is None:
        return None
    value = _parse_number(match.group(1))
    return value if value is not None and 0 < value < price else None


def change_rule(text: str) -> float | None:
    """First signed number immediately followed by a percent sign."""
    match = _PERCENT_RE.search(text)
    if match is None:
        return None
    return _parse_number(match.group(1))


class SnippetPriceExtractor:
    """Recovers price, high, low and percent change from search snippets."""

    def find_price(self, text: str, price_range: PriceRange) -> float:
        """Best price candidate in ``text``.

        Raises:
            ExtractionInconclusive: No in-range candidate was found.
        """
        price = price_rule(text, price_range)
        if price is None:
            raise ExtractionInconclusive(
                "No price candidates in snippet text",
                context={"range": (price_range.minimum, price_range.maximum)},
            )
        return price

    def extract(self, snippets: Iterable[Any], price_range: PriceRange) -> ExtractedQuote:
        text = combine_snippets(snippets)

        inconclusive = False
        try:
            price = self.find_price(text, price_range)
        except ExtractionInconclusive:
            inconclusive = True
            price = price_range.midpoint

        high = high_rule(text, price)
        low = low_rule(text, price)
        change = change_rule(text)

        return ExtractedQuote(
            price=price,
            high=high if high is not None else price * HIGH_FALLBACK_FACTOR,
            low=low if low is not None else price * LOW_FALLBACK_FACTOR,
            change_percent=change if change is not None else 0.0,
            inconclusive=inconclusive,
        )


def extract(snippets: Iterable[Any], price_range: PriceRange) -> ExtractedQuote:
    return SnippetPriceExtractor().extract(snippets, price_range)
