"""Tests for market_pulse.core.models."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from fakes import NOW
from market_pulse.core.models import (
    BatchSource,
    NewsRecord,
    PriceBatch,
    PriceRange,
    QuoteSnapshot,
    RefreshResult,
    ResolvedQuote,
    SearchResult,
    SourceTag,
    parse_datetime,
)


class TestPriceRange:
    def test_midpoint_and_contains(self):
        r = PriceRange(minimum=50_000, maximum=150_000)
        assert r.midpoint == 100_000
        assert r.contains(50_000)
        assert r.contains(150_000)
        assert not r.contains(150_000.01)

    def test_bounds_must_be_ordered(self):
        with pytest.raises(ValidationError, match="must be > minimum"):
            PriceRange(minimum=10, maximum=5)

    def test_minimum_positive(self):
        with pytest.raises(ValidationError, match="minimum must be > 0"):
            PriceRange(minimum=0, maximum=5)


class TestQuoteSnapshot:
    def test_accepts_aliases(self):
        s = QuoteSnapshot.model_validate(
            {
                "symbol": "GC=F",
                "regularMarketPrice": 2650,
                "regularMarketChangePercent": -0.4,
                "longName": "Gold Futures",
            }
        )
        assert s.ticker == "GC=F"
        assert s.price == 2650
        assert s.change_percent == -0.4
        assert s.name == "Gold Futures"

    def test_primary_names_win(self):
        s = QuoteSnapshot.model_validate({"ticker": "A", "symbol": "B", "price": 1, "regularMarketPrice": 2})
        assert (s.ticker, s.price) == ("A", 1)

    def test_bad_price_becomes_zero(self):
        assert QuoteSnapshot.model_validate({"ticker": "A", "price": "n/a"}).price == 0.0

    def test_missing_price_is_zero(self):
        assert QuoteSnapshot.model_validate({"ticker": "A"}).price == 0.0

    def test_ticker_required(self):
        with pytest.raises(ValidationError):
            QuoteSnapshot.model_validate({"price": 1})


class TestResolvedQuote:
    @pytest.mark.parametrize("source", [SourceTag.LIVE, SourceTag.EXTRACTED])
    def test_fetched_quotes_need_positive_price(self, source):
        with pytest.raises(ValidationError, match="price must be > 0"):
            ResolvedQuote(symbol="BTC", display_name="Bitcoin", price=0, source=source)

    def test_record_round_trip(self):
        quote = ResolvedQuote(
            symbol="BTC",
            display_name="Bitcoin",
            price=96_000,
            high_24h=97_000,
            source=SourceTag.LIVE,
            resolved_at=NOW,
        )
        record = quote.to_record()
        assert record.updated_at == NOW
        cached = ResolvedQuote.from_record(record)
        assert cached.source == SourceTag.CACHED
        assert cached.price == 96_000
        assert cached.high_24h == 97_000


class TestPriceBatch:
    def test_missing_and_get(self):
        quote = ResolvedQuote(symbol="BTC", display_name="Bitcoin", price=1, source=SourceTag.DEFAULT)
        batch = PriceBatch(quotes=[quote], requested=["BTC", "ETH"], source=BatchSource.DEGRADED)
        assert batch.missing == ["ETH"]
        assert batch.get("BTC") is quote
        assert batch.get("ETH") is None


class TestParseDatetime:
    def test_iso_with_z(self):
        assert parse_datetime("2025-01-15T12:00:00Z") == NOW

    def test_naive_assumed_utc(self):
        assert parse_datetime("2025-01-15T12:00:00") == NOW

    def test_offset_preserved(self):
        parsed = parse_datetime("2025-01-15T14:00:00+02:00")
        assert parsed == NOW
        assert parsed.utcoffset() == timedelta(hours=2)

    def test_unix_seconds(self):
        assert parse_datetime(1736942400) == NOW

    def test_datetime_passthrough(self):
        naive = datetime(2025, 1, 15, 12, 0)
        assert parse_datetime(naive) == NOW
        assert parse_datetime(NOW) is NOW

    @pytest.mark.parametrize("value", [None, "", "yesterday", 1e20])
    def test_unparseable(self, value):
        assert parse_datetime(value) is None


class TestNewsRecord:
    def test_url_stripped(self):
        assert NewsRecord(title="t", url="  https://a  ").url == "https://a"

    def test_blank_url_rejected(self):
        with pytest.raises(ValidationError, match="url must not be empty"):
            NewsRecord(title="t", url="   ")


def test_search_result_text():
    assert SearchResult(title="T", snippet="S", url="u").text == "T S"


def test_refresh_result_success():
    result = RefreshResult(prices=True, news=True, analysis=True, history=True)
    assert result.success
    result.errors["news"] = "boom"
    assert not result.success
    assert result.started_at.tzinfo == timezone.utc
