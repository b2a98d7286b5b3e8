"""Custom exception hierarchy for market-pulse."""

from typing import Any


class MarketPulseError(Exception):
    """Base exception for all market-pulse errors.

    All exceptions carry an optional `context` dict for structured error
    metadata that can be logged or serialized without parsing the message.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.context = context or {}


class ConfigError(MarketPulseError):
    """Invalid or missing configuration.

    Raised by load_config() during startup. Should be treated as fatal.

    Context keys:
        field (str): the config field that failed validation
        value (Any): the invalid value (redacted for secrets)
    """


class UpstreamError(MarketPulseError):
    """An upstream collaborator (quote gateway or search service) failed.

    Context keys:
        url (str): the URL that was being fetched
        status_code (int | None): HTTP status code if applicable
    """


class UpstreamUnavailable(UpstreamError):
    """Primary quote source failed, timed out, or returned no usable data.

    Policy: never surfaced. The resolver falls back to snippet extraction
    for every symbol in the batch.

    Context keys:
        tickers (list[str]): the batch that was requested
    """


class RateLimitError(UpstreamError):
    """Upstream rate limit exceeded (HTTP 429) after retries.

    Context keys:
        retry_after (int | None): seconds to wait
    """


class SearchError(UpstreamError):
    """Web search service returned an error.

    Policy: log and treat as an empty result set.

    Context keys:
        query (str): the search query
    """


class ExtractionInconclusive(MarketPulseError):
    """No numeric price candidates were found in search snippets.

    Policy: never surfaced. The extractor substitutes range-midpoint
    defaults; the exception exists for logging context only.

    Context keys:
        symbol (str): the symbol being extracted
    """


class StorageError(MarketPulseError):
    """Database operation failed.

    Policy: in the resolver's persist stage, log and continue with the
    batch. Everywhere else, raise.

    Context keys:
        operation (str): "insert", "query", "migrate", etc.
        table (str): the table involved
    """


class RefreshError(MarketPulseError):
    """A refresh stage failed.

    Policy: record in the RefreshResult and continue with the other stages.

    Context keys:
        stage (str): "prices", "news", "analysis" or "history"
    """
