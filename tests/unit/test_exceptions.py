"""Tests for market_pulse.core.exceptions."""

import pytest

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


class TestExceptionHierarchy:
    """Verify the exception class hierarchy."""

    @pytest.mark.parametrize(
        "exc",
        [ConfigError, UpstreamError, ExtractionInconclusive, StorageError, RefreshError],
    )
    def test_direct_subclasses(self, exc):
        assert issubclass(exc, MarketPulseError)

    @pytest.mark.parametrize("exc", [UpstreamUnavailable, RateLimitError, SearchError])
    def test_upstream_family(self, exc):
        assert issubclass(exc, UpstreamError)
        assert issubclass(exc, MarketPulseError)

    def test_storage_is_not_upstream(self):
        assert not issubclass(StorageError, UpstreamError)


class TestContext:
    def test_message_and_context(self):
        err = UpstreamUnavailable("gateway down", context={"tickers": ["BTC-USD"]})
        assert str(err) == "gateway down"
        assert err.context == {"tickers": ["BTC-USD"]}

    def test_context_defaults_to_empty_dict(self):
        assert StorageError("boom").context == {}

    def test_catchable_as_base(self):
        with pytest.raises(MarketPulseError):
            raise RateLimitError("slow down", context={"retry_after": 5})
