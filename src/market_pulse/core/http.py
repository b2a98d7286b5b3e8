"""Shared rate-limited request loop for upstream HTTP clients."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx
from aiolimiter import AsyncLimiter

from market_pulse.core.exceptions import RateLimitError, UpstreamError

logger = logging.getLogger(__name__)

# Retry configuration
MAX_RETRIES_429 = 3
DEFAULT_RETRY_AFTER = 5
MAX_RETRIES_SERVER = 2
MAX_RETRIES_CONNECTION = 2
CONNECTION_RETRY_DELAY = 1.0

_RETRYABLE_STATUS = (500, 502, 503)


async def rate_limited_request(
    client: httpx.AsyncClient,
    limiter: AsyncLimiter,
    method: str,
    url: str,
    **kwargs: Any,
) -> httpx.Response:
    """Execute an HTTP request with rate limiting and retry logic.

    Rate limiting:
        ``limiter`` is a token bucket; each attempt acquires one token.

    Retry policy:
        - HTTP 429: wait for Retry-After (or 5s), up to 3 retries.
        - HTTP 500/502/503: exponential backoff, up to 2 retries.
        - Connection errors: up to 2 retries with 1s delay.
        - Any other non-2xx status or transport error: raise immediately.

    Returns:
        httpx.Response with a 2xx status.

    Raises:
        RateLimitError: Retries exhausted on 429 responses.
        UpstreamError: Any other failure.
    """
    for attempt in range(MAX_RETRIES_429 + 1):
        try:
            async with limiter:
                response = await client.request(method, url, **kwargs)

            if response.is_success:
                return response

            if response.status_code == 429:
                retry_after = _retry_after(response)
                if attempt < MAX_RETRIES_429:
                    logger.warning(
                        "Rate limited (429) on %s, waiting %ds (attempt %d/%d)",
                        url, retry_after, attempt + 1, MAX_RETRIES_429,
                    )
                    await asyncio.sleep(retry_after)
                    continue
                raise RateLimitError(
                    f"Rate limit exceeded after {MAX_RETRIES_429} retries: {url}",
                    context={"url": url, "retry_after": retry_after, "status_code": 429},
                )

            if response.status_code in _RETRYABLE_STATUS:
                if attempt < MAX_RETRIES_SERVER:
                    delay = 2**attempt
                    logger.warning(
                        "Server error %d on %s, retrying in %ds (attempt %d/%d)",
                        response.status_code, url, delay,
                        attempt + 1, MAX_RETRIES_SERVER,
                    )
                    await asyncio.sleep(delay)
                    continue
                raise UpstreamError(
                    f"Server error {response.status_code} after retries: {url}",
                    context={"url": url, "status_code": response.status_code},
                )

            # Non-retryable HTTP error
            raise UpstreamError(
                f"HTTP {response.status_code} from {url}",
                context={"url": url, "status_code": response.status_code},
            )

        except httpx.ConnectError as e:
            if attempt < MAX_RETRIES_CONNECTION:
                logger.warning(
                    "Connection error on %s, retrying in %.0fs (attempt %d/%d)",
                    url, CONNECTION_RETRY_DELAY,
                    attempt + 1, MAX_RETRIES_CONNECTION,
                )
                await asyncio.sleep(CONNECTION_RETRY_DELAY)
                continue
            raise UpstreamError(
                f"Connection failed after retries: {url}",
                context={"url": url, "error": str(e)},
            ) from e
        except httpx.HTTPError as e:
            raise UpstreamError(
                f"Request to {url} failed: {e}",
                context={"url": url, "error": str(e)},
            ) from e

    raise UpstreamError(
        f"Request failed after all retries: {url}",
        context={"url": url},
    )


def _retry_after(response: httpx.Response) -> int:
    try:
        return int(response.headers.get("Retry-After", DEFAULT_RETRY_AFTER))
    except ValueError:
        return DEFAULT_RETRY_AFTER
