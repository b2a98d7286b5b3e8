"""Dependency injection for FastAPI routes."""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request
from fastapi.responses import JSONResponse

from market_pulse.core.config import PulseConfig
from market_pulse.prices.provider import SearchSource
from market_pulse.prices.resolver import QuoteResolver
from market_pulse.refresh.scheduler import RefreshScheduler
from market_pulse.storage.store import SqliteStore


@dataclass
class AppState:
    """Shared application state, attached to app.state during lifespan."""

    config: PulseConfig
    store: SqliteStore
    resolver: QuoteResolver
    search: SearchSource
    scheduler: RefreshScheduler


def get_config(request: Request) -> PulseConfig:
    return request.app.state.app_state.config


def get_store(request: Request) -> SqliteStore:
    return request.app.state.app_state.store


def get_resolver(request: Request) -> QuoteResolver:
    return request.app.state.app_state.resolver


def get_search(request: Request) -> SearchSource:
    return request.app.state.app_state.search


def get_scheduler(request: Request) -> RefreshScheduler:
    return request.app.state.app_state.scheduler


EXEMPT_PATHS = {"/api/health"}


async def api_key_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Middleware: validate X-API-Key header when authentication is enabled."""
    if request.url.path in EXEMPT_PATHS:
        return await call_next(request)

    config = request.app.state.app_state.config
    if config.api.api_key:
        api_key = request.headers.get("X-API-Key")
        if api_key != config.api.api_key:
            return JSONResponse(
                status_code=401,
                content={"error": "Unauthorized", "detail": "Invalid or missing API key"},
            )
    return await call_next(request)
