"""FastAPI application factory."""

from __future__ import annotations

from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from market_pulse.api.deps import AppState, api_key_middleware
from market_pulse.api.routes import router
from market_pulse.core.config import PulseConfig, load_config
from market_pulse.core.exceptions import (
    ConfigError,
    MarketPulseError,
    RateLimitError,
    StorageError,
    UpstreamError,
)
from market_pulse.prices.gateway import FinanceGatewayClient
from market_pulse.prices.resolver import QuoteResolver
from market_pulse.refresh.scheduler import RefreshScheduler
from market_pulse.refresh.service import RefreshService
from market_pulse.search.client import WebSearchClient
from market_pulse.storage.store import create_store


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup/shutdown lifecycle."""
    config = app.state._pending_config or load_config()
    sources: dict[str, Any] = app.state._pending_sources

    async with AsyncExitStack() as stack:
        store = await create_store(config.storage)
        stack.push_async_callback(store.close)

        gateway = sources.get("quote_source")
        if gateway is None:
            gateway = await stack.enter_async_context(FinanceGatewayClient(config.gateway))
        search = sources.get("search_source")
        if search is None:
            search = await stack.enter_async_context(WebSearchClient(config.search))
        history = sources.get("history_source") or gateway

        resolver = QuoteResolver(
            gateway,
            search,
            store,
            config.resolver,
            search_result_count=config.search.result_count,
        )
        service = RefreshService(resolver, search, history, store, config.refresh)
        scheduler = RefreshScheduler(service, config.refresh)
        if config.refresh.enabled:
            scheduler.start()
        stack.push_async_callback(scheduler.stop)

        app.state.app_state = AppState(
            config=config,
            store=store,
            resolver=resolver,
            search=search,
            scheduler=scheduler,
        )

        yield


def create_app(
    config: PulseConfig | None = None,
    *,
    quote_source: Any = None,
    search_source: Any = None,
    history_source: Any = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    The upstream collaborators default to the HTTP clients built from
    ``config``; pass explicit sources to run against other implementations.
    """
    import market_pulse

    app = FastAPI(
        title="Market Pulse API",
        description="Market prices, crypto news and sentiment-tagged analysis",
        version=market_pulse.__version__,
        lifespan=lifespan,
    )

    # Stash config and sources so lifespan can retrieve them
    app.state._pending_config = config
    app.state._pending_sources = {
        "quote_source": quote_source,
        "search_source": search_source,
        "history_source": history_source,
    }

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Optional API key middleware
    if config and config.api.api_key:
        app.middleware("http")(api_key_middleware)

    app.include_router(router, prefix="/api")

    # Exception handlers
    @app.exception_handler(MarketPulseError)
    async def pulse_exception_handler(request: Request, exc: MarketPulseError):
        status_map = {
            ConfigError: 400,
            StorageError: 500,
            RateLimitError: 503,
        }
        status = status_map.get(type(exc))
        if status is None:
            status = 502 if isinstance(exc, UpstreamError) else 500
        return JSONResponse(
            status_code=status,
            content={"error": type(exc).__name__, "detail": str(exc)},
        )

    return app
