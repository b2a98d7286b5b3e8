"""Symbol normalization and static per-symbol configuration.

Every upstream spelling of a tracked asset (index, futures, currency-pair
and exchange-pair tickers) maps to exactly one canonical ``Symbol``.
Tickers not in the table pass through unchanged.
"""

from __future__ import annotations

from market_pulse.core.models import PriceRange, Symbol

DISPLAY_NAMES: dict[str, str] = {
    Symbol.SP500: "S&P 500",
    Symbol.GOLD: "Gold",
    Symbol.SILVER: "Silver",
    Symbol.BTC: "Bitcoin",
    Symbol.ETH: "Ethereum",
    Symbol.USDKZT: "USD/KZT",
}

# Canonical symbol -> ticker understood by the quote gateway
UPSTREAM_TICKERS: dict[str, str] = {
    Symbol.SP500: "^GSPC",
    Symbol.GOLD: "GC=F",
    Symbol.SILVER: "SI=F",
    Symbol.BTC: "BTC-USD",
    Symbol.ETH: "ETH-USD",
    Symbol.USDKZT: "KZT=X",
}

# Phrase used to build web search queries for snippet extraction
SEARCH_NAMES: dict[str, str] = {
    Symbol.SP500: "S&P 500 index",
    Symbol.GOLD: "Gold price",
    Symbol.SILVER: "Silver price",
    Symbol.BTC: "Bitcoin BTC",
    Symbol.ETH: "Ethereum ETH",
    Symbol.USDKZT: "USD to KZT exchange rate",
}

PRICE_RANGES: dict[str, PriceRange] = {
    Symbol.BTC: PriceRange(minimum=50_000, maximum=150_000, unit="USD"),
    Symbol.ETH: PriceRange(minimum=1_000, maximum=5_000, unit="USD"),
    Symbol.SP500: PriceRange(minimum=4_000, maximum=7_000, unit="points"),
    Symbol.GOLD: PriceRange(minimum=1_500, maximum=3_500, unit="USD/oz"),
    Symbol.SILVER: PriceRange(minimum=15, maximum=50, unit="USD/oz"),
    Symbol.USDKZT: PriceRange(minimum=400, maximum=600, unit="KZT"),
}

# Terminal fallback values when neither upstream nor cache can answer
DEFAULT_PRICES: dict[str, float] = {
    Symbol.SP500: 5_900.0,
    Symbol.GOLD: 2_650.0,
    Symbol.SILVER: 31.0,
    Symbol.BTC: 97_000.0,
    Symbol.ETH: 3_400.0,
    Symbol.USDKZT: 510.0,
}

_ALIASES: dict[str, Symbol] = {
    # S&P 500
    "^GSPC": Symbol.SP500,
    "GSPC": Symbol.SP500,
    "^SPX": Symbol.SP500,
    "SPX": Symbol.SP500,
    "US500": Symbol.SP500,
    "S&P500": Symbol.SP500,
    "S&P 500": Symbol.SP500,
    # Gold
    "GC=F": Symbol.GOLD,
    "GC": Symbol.GOLD,
    "XAU": Symbol.GOLD,
    "XAUUSD": Symbol.GOLD,
    "XAU/USD": Symbol.GOLD,
    "XAUUSD=X": Symbol.GOLD,
    # Silver
    "SI=F": Symbol.SILVER,
    "SI": Symbol.SILVER,
    "XAG": Symbol.SILVER,
    "XAGUSD": Symbol.SILVER,
    "XAG/USD": Symbol.SILVER,
    "XAGUSD=X": Symbol.SILVER,
    # Bitcoin
    "BTC-USD": Symbol.BTC,
    "BTCUSD": Symbol.BTC,
    "BTC/USD": Symbol.BTC,
    "BTCUSDT": Symbol.BTC,
    "XBT": Symbol.BTC,
    "XBTUSD": Symbol.BTC,
    "BITCOIN": Symbol.BTC,
    # Ethereum
    "ETH-USD": Symbol.ETH,
    "ETHUSD": Symbol.ETH,
    "ETH/USD": Symbol.ETH,
    "ETHUSDT": Symbol.ETH,
    "ETHEREUM": Symbol.ETH,
    # USD/KZT
    "KZT=X": Symbol.USDKZT,
    "USDKZT=X": Symbol.USDKZT,
    "USD/KZT": Symbol.USDKZT,
    "USD-KZT": Symbol.USDKZT,
}
_ALIASES.update({s.value: s for s in Symbol})


def normalize(raw_ticker: str) -> tuple[str, str]:
    """Map any upstream ticker spelling to ``(canonical_symbol, display_name)``.

    Lookup is case-insensitive and ignores surrounding whitespace. Unknown
    tickers are returned unchanged as both symbol and name. Never raises.
    """
    symbol = _ALIASES.get(raw_ticker.strip().upper()) if raw_ticker else None
    if symbol is None:
        return raw_ticker, raw_ticker
    return symbol.value, DISPLAY_NAMES[symbol]


def upstream_ticker(symbol: str) -> str:
    """Gateway ticker for a canonical symbol; unknown symbols pass through."""
    return UPSTREAM_TICKERS.get(symbol, symbol)


def display_name(symbol: str) -> str:
    return DISPLAY_NAMES.get(symbol, symbol)


def search_name(symbol: str) -> str:
    return SEARCH_NAMES.get(symbol, DISPLAY_NAMES.get(symbol, symbol))
