"""Persistence for prices, news, analysis, history and settings."""

from market_pulse.storage.store import (
    LAST_REFRESH_KEY,
    SqliteStore,
    StorageProtocol,
    create_store,
)

__all__ = [
    "LAST_REFRESH_KEY",
    "SqliteStore",
    "StorageProtocol",
    "create_store",
]
