"""Plausibility checks for candidate prices.

Two windows share the same half/double tolerance:

- **range**: the symbol's static ``PriceRange``; a candidate is credible
  from half of the range minimum up to double the range maximum, so every
  price inside the range (bounds included) passes.
- **prior-value**: when a previously known price is supplied as
  ``reference``, a candidate from half of it up to double it also passes.
  A prior can widen what is accepted but never reject a price the range
  window accepts.

Symbols without a configured range accept any positive candidate unless a
reference is given, in which case only the prior-value window applies.
"""

from __future__ import annotations

from collections.abc import Mapping

from market_pulse.core.models import PriceRange
from market_pulse.prices.symbols import PRICE_RANGES

LOWER_FACTOR = 0.5
UPPER_FACTOR = 2.0


class PlausibilityValidator:
    """Decides whether a numeric price is credible for a symbol."""

    def __init__(self, ranges: Mapping[str, PriceRange] | None = None) -> None:
        self._ranges = dict(PRICE_RANGES if ranges is None else ranges)

    def range_for(self, symbol: str) -> PriceRange | None:
        return self._ranges.get(symbol)

    def is_plausible(
        self,
        symbol: str,
        candidate: float | None,
        reference: float | None = None,
    ) -> bool:
        if candidate is None or candidate <= 0:
            return False

        if reference is not None and reference > 0:
            if reference * LOWER_FACTOR <= candidate <= reference * UPPER_FACTOR:
                return True
            # A stale or wrong prior must not veto a price the range accepts
            price_range = self._ranges.get(symbol)
            return price_range is not None and self._within_range(candidate, price_range)

        price_range = self._ranges.get(symbol)
        if price_range is None:
            return True
        return self._within_range(candidate, price_range)

    @staticmethod
    def _within_range(candidate: float, price_range: PriceRange) -> bool:
        lower = price_range.minimum * LOWER_FACTOR
        upper = price_range.maximum * UPPER_FACTOR
        return lower <= candidate <= upper

    def reference_price(self, symbol: str, prior: float | None = None) -> float | None:
        """Value to substitute for an implausible price.

        The prior stored value wins; otherwise the range midpoint; ``None``
        when the symbol has neither.
        """
        if prior is not None and prior > 0:
            return prior
        price_range = self._ranges.get(symbol)
        return price_range.midpoint if price_range is not None else None


_default_validator = PlausibilityValidator()


def is_plausible(symbol: str, candidate: float | None, reference: float | None = None) -> bool:
    """Module-level convenience using the static range table."""
    return _default_validator.is_plausible(symbol, candidate, reference)
