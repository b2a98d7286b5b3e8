"""market-pulse: market price, crypto news and sentiment dashboard backend."""

__version__ = "0.1.0"
