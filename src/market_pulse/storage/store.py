"""Storage backend: Protocol definition, SQLite implementation, factory."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, ClassVar, Protocol, runtime_checkable

import aiosqlite

from market_pulse.core.config import StorageConfig
from market_pulse.core.exceptions import StorageError
from market_pulse.core.models import (
    AnalysisRecord,
    AnalysisType,
    MarketPriceRecord,
    NewsCategory,
    NewsRecord,
    PriceHistoryPoint,
    Sentiment,
    StorageBackend as StorageBackendEnum,
    parse_datetime,
    utcnow,
)

logger = logging.getLogger(__name__)

LAST_REFRESH_KEY = "lastRefresh"


@runtime_checkable
class StorageProtocol(Protocol):
    """Abstract storage interface for market-pulse data."""

    async def upsert_price(self, record: MarketPriceRecord) -> None: ...
    async def list_prices(self) -> list[MarketPriceRecord]: ...
    async def get_price(self, symbol: str) -> MarketPriceRecord | None: ...
    async def upsert_news(self, record: NewsRecord) -> None: ...
    async def list_news(
        self, limit: int = 20, category: NewsCategory | None = None
    ) -> list[NewsRecord]: ...
    async def create_analysis(self, record: AnalysisRecord) -> AnalysisRecord: ...
    async def list_analysis(
        self, limit: int = 20, symbol: str | None = None
    ) -> list[AnalysisRecord]: ...
    async def save_history_points(self, points: list[PriceHistoryPoint]) -> int: ...
    async def get_history(
        self, symbol: str, interval: str | None = None, limit: int | None = None
    ) -> list[PriceHistoryPoint]: ...
    async def set_setting(self, key: str, value: str) -> None: ...
    async def get_setting(self, key: str) -> str | None: ...
    async def mark_refreshed(self, at: datetime | None = None) -> None: ...
    async def last_refresh(self) -> datetime | None: ...
    async def get_statistics(self) -> dict[str, Any]: ...
    async def initialize(self) -> None: ...
    async def close(self) -> None: ...
    async def health_check(self) -> bool: ...


def _iso(value: datetime) -> str:
    """UTC ISO-8601 text so stored timestamps sort lexicographically."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


class SqliteStore:
    """SQLite implementation of the storage protocol.

    Uses aiosqlite for async access, WAL mode for concurrent reads,
    and a version-tracked migration system. Price upserts for the same
    symbol are serialized by a per-symbol lock.
    """

    _MIGRATIONS: ClassVar[dict[int, tuple[str, list[str]]]] = {
        1: (
            "Initial schema",
            [
                """CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY,
                    applied_at TEXT DEFAULT (datetime('now'))
                )""",
                """CREATE TABLE IF NOT EXISTS market_prices (
                    symbol TEXT PRIMARY KEY,
                    display_name TEXT NOT NULL,
                    price REAL NOT NULL,
                    change_24h REAL,
                    high_24h REAL,
                    low_24h REAL,
                    volume REAL,
                    updated_at TEXT NOT NULL
                )""",
                """CREATE TABLE IF NOT EXISTS crypto_news (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    url TEXT NOT NULL UNIQUE,
                    title TEXT NOT NULL,
                    summary TEXT,
                    source TEXT,
                    category TEXT NOT NULL DEFAULT 'news',
                    published_at TEXT NOT NULL,
                    created_at TEXT DEFAULT (datetime('now'))
                )""",
                """CREATE TABLE IF NOT EXISTS analysis (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    symbol TEXT NOT NULL,
                    type TEXT NOT NULL,
                    title TEXT NOT NULL,
                    content TEXT NOT NULL,
                    sentiment TEXT,
                    created_at TEXT NOT NULL
                )""",
                """CREATE TABLE IF NOT EXISTS price_history (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    symbol TEXT NOT NULL,
                    price REAL NOT NULL,
                    high REAL,
                    low REAL,
                    volume REAL,
                    timestamp TEXT NOT NULL,
                    interval TEXT NOT NULL DEFAULT '1h',
                    UNIQUE(symbol, timestamp, interval)
                )""",
                """CREATE TABLE IF NOT EXISTS app_settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )""",
                # Indexes
                "CREATE INDEX IF NOT EXISTS idx_news_published ON crypto_news(published_at)",
                "CREATE INDEX IF NOT EXISTS idx_analysis_created ON analysis(created_at)",
                "CREATE INDEX IF NOT EXISTS idx_analysis_symbol ON analysis(symbol)",
                "CREATE INDEX IF NOT EXISTS idx_history_symbol_ts ON price_history(symbol, timestamp)",
            ],
        ),
    }

    def __init__(self, config: StorageConfig) -> None:
        self._path = config.sqlite_path
        self._db: aiosqlite.Connection | None = None
        self._symbol_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def initialize(self) -> None:
        """Open connection, enable WAL, run migrations."""
        try:
            if self._path != ":memory:":
                Path(self._path).parent.mkdir(parents=True, exist_ok=True)
            self._db = await aiosqlite.connect(self._path)
            self._db.row_factory = aiosqlite.Row
            await self._db.execute("PRAGMA journal_mode=WAL")
            current = await self._get_schema_version()
            await self._apply_migrations(current)
            await self._db.commit()
        except Exception as e:
            raise StorageError(
                f"Failed to initialize SQLite store: {e}",
                context={"operation": "initialize", "path": self._path},
            ) from e

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def health_check(self) -> bool:
        if self._db is None:
            return False
        try:
            async with self._db.execute("SELECT 1") as cursor:
                row = await cursor.fetchone()
            return row is not None
        except aiosqlite.Error as e:
            logger.warning("Store health check failed: %s", e)
            return False

    # --- Schema Migration ---

    async def _get_schema_version(self) -> int:
        try:
            async with self._db.execute(
                "SELECT MAX(version) FROM schema_version"
            ) as cursor:
                row = await cursor.fetchone()
            return row[0] if row[0] is not None else 0
        except aiosqlite.OperationalError:
            return 0

    async def _apply_migrations(self, current_version: int) -> None:
        for version in sorted(self._MIGRATIONS.keys()):
            if version <= current_version:
                continue
            desc, statements = self._MIGRATIONS[version]
            logger.info("Applying migration %d: %s", version, desc)
            for sql in statements:
                await self._db.execute(sql)
            await self._db.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )

    # --- Market Prices ---

    async def upsert_price(self, record: MarketPriceRecord) -> None:
        """Insert or fully overwrite the row for ``record.symbol``."""
        async with self._symbol_locks[record.symbol]:
            try:
                await self._db.execute(
                    """INSERT OR REPLACE INTO market_prices
                       (symbol, display_name, price, change_24h, high_24h,
                        low_24h, volume, updated_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        record.symbol,
                        record.display_name,
                        record.price,
                        record.change_24h,
                        record.high_24h,
                        record.low_24h,
                        record.volume,
                        _iso(record.updated_at),
                    ),
                )
                await self._db.commit()
            except Exception as e:
                raise StorageError(
                    f"Failed to upsert price: {e}",
                    context={
                        "operation": "upsert",
                        "table": "market_prices",
                        "symbol": record.symbol,
                    },
                ) from e

    async def list_prices(self) -> list[MarketPriceRecord]:
        try:
            async with self._db.execute(
                "SELECT * FROM market_prices ORDER BY symbol"
            ) as cursor:
                rows = await cursor.fetchall()
            return [self._row_to_price(r) for r in rows]
        except Exception as e:
            raise StorageError(
                f"Failed to list prices: {e}",
                context={"operation": "query", "table": "market_prices"},
            ) from e

    async def get_price(self, symbol: str) -> MarketPriceRecord | None:
        try:
            async with self._db.execute(
                "SELECT * FROM market_prices WHERE symbol = ?", (symbol,)
            ) as cursor:
                row = await cursor.fetchone()
            return self._row_to_price(row) if row is not None else None
        except Exception as e:
            raise StorageError(
                f"Failed to get price: {e}",
                context={"operation": "query", "table": "market_prices", "symbol": symbol},
            ) from e

    # --- News ---

    async def upsert_news(self, record: NewsRecord) -> None:
        """Insert a news item, or refresh the existing row with the same URL."""
        try:
            await self._db.execute(
                """INSERT INTO crypto_news
                   (url, title, summary, source, category, published_at)
                   VALUES (?, ?, ?, ?, ?, ?)
                   ON CONFLICT(url) DO UPDATE SET
                       title = excluded.title,
                       summary = excluded.summary,
                       source = excluded.source,
                       category = excluded.category,
                       published_at = excluded.published_at""",
                (
                    record.url,
                    record.title,
                    record.summary,
                    record.source,
                    str(record.category),
                    _iso(record.published_at),
                ),
            )
            await self._db.commit()
        except Exception as e:
            raise StorageError(
                f"Failed to upsert news: {e}",
                context={"operation": "upsert", "table": "crypto_news", "url": record.url},
            ) from e

    async def list_news(
        self,
        limit: int = 20,
        category: NewsCategory | None = None,
    ) -> list[NewsRecord]:
        try:
            query = "SELECT * FROM crypto_news WHERE 1=1"
            params: list = []
            if category is not None:
                query += " AND category = ?"
                params.append(str(category))
            query += " ORDER BY published_at DESC LIMIT ?"
            params.append(limit)
            async with self._db.execute(query, params) as cursor:
                rows = await cursor.fetchall()
            return [self._row_to_news(r) for r in rows]
        except Exception as e:
            raise StorageError(
                f"Failed to list news: {e}",
                context={"operation": "query", "table": "crypto_news"},
            ) from e

    # --- Analysis ---

    async def create_analysis(self, record: AnalysisRecord) -> AnalysisRecord:
        """Append an analysis item; returns it with its assigned id."""
        try:
            cursor = await self._db.execute(
                """INSERT INTO analysis
                   (symbol, type, title, content, sentiment, created_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    record.symbol,
                    str(record.type),
                    record.title,
                    record.content,
                    str(record.sentiment) if record.sentiment else None,
                    _iso(record.created_at),
                ),
            )
            await self._db.commit()
            return record.model_copy(update={"id": cursor.lastrowid})
        except Exception as e:
            raise StorageError(
                f"Failed to create analysis: {e}",
                context={"operation": "insert", "table": "analysis"},
            ) from e

    async def list_analysis(
        self,
        limit: int = 20,
        symbol: str | None = None,
    ) -> list[AnalysisRecord]:
        try:
            query = "SELECT * FROM analysis WHERE 1=1"
            params: list = []
            if symbol is not None:
                query += " AND symbol = ?"
                params.append(symbol)
            query += " ORDER BY created_at DESC, id DESC LIMIT ?"
            params.append(limit)
            async with self._db.execute(query, params) as cursor:
                rows = await cursor.fetchall()
            return [self._row_to_analysis(r) for r in rows]
        except Exception as e:
            raise StorageError(
                f"Failed to list analysis: {e}",
                context={"operation": "query", "table": "analysis"},
            ) from e

    # --- Price History ---

    async def save_history_points(self, points: list[PriceHistoryPoint]) -> int:
        """Insert candles, skipping (symbol, timestamp, interval) duplicates.

        Returns the number of new rows.
        """
        if not points:
            return 0
        try:
            before = self._db.total_changes
            await self._db.executemany(
                """INSERT OR IGNORE INTO price_history
                   (symbol, price, high, low, volume, timestamp, interval)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                [
                    (
                        p.symbol,
                        p.price,
                        p.high,
                        p.low,
                        p.volume,
                        _iso(p.timestamp),
                        p.interval,
                    )
                    for p in points
                ],
            )
            await self._db.commit()
            return self._db.total_changes - before
        except Exception as e:
            raise StorageError(
                f"Failed to save price history: {e}",
                context={"operation": "insert", "table": "price_history"},
            ) from e

    async def get_history(
        self,
        symbol: str,
        interval: str | None = None,
        limit: int | None = None,
    ) -> list[PriceHistoryPoint]:
        """Most recent ``limit`` candles for a symbol, oldest first."""
        try:
            query = "SELECT * FROM price_history WHERE symbol = ?"
            params: list = [symbol]
            if interval is not None:
                query += " AND interval = ?"
                params.append(interval)
            query += " ORDER BY timestamp DESC"
            if limit is not None:
                query += " LIMIT ?"
                params.append(limit)
            async with self._db.execute(query, params) as cursor:
                rows = await cursor.fetchall()
            return [self._row_to_history(r) for r in reversed(rows)]
        except Exception as e:
            raise StorageError(
                f"Failed to get price history: {e}",
                context={"operation": "query", "table": "price_history", "symbol": symbol},
            ) from e

    # --- Settings ---

    async def set_setting(self, key: str, value: str) -> None:
        try:
            await self._db.execute(
                """INSERT OR REPLACE INTO app_settings (key, value, updated_at)
                   VALUES (?, ?, ?)""",
                (key, value, _iso(utcnow())),
            )
            await self._db.commit()
        except Exception as e:
            raise StorageError(
                f"Failed to save setting: {e}",
                context={"operation": "upsert", "table": "app_settings", "key": key},
            ) from e

    async def get_setting(self, key: str) -> str | None:
        try:
            async with self._db.execute(
                "SELECT value FROM app_settings WHERE key = ?", (key,)
            ) as cursor:
                row = await cursor.fetchone()
            return row["value"] if row is not None else None
        except Exception as e:
            raise StorageError(
                f"Failed to read setting: {e}",
                context={"operation": "query", "table": "app_settings", "key": key},
            ) from e

    async def mark_refreshed(self, at: datetime | None = None) -> None:
        await self.set_setting(LAST_REFRESH_KEY, _iso(at or utcnow()))

    async def last_refresh(self) -> datetime | None:
        return parse_datetime(await self.get_setting(LAST_REFRESH_KEY))

    # --- Statistics ---

    async def get_statistics(self) -> dict[str, Any]:
        """Row counts per table plus the last refresh time."""
        tables = ("market_prices", "crypto_news", "analysis", "price_history")
        try:
            counts: dict[str, int] = {}
            for table in tables:
                async with self._db.execute(f"SELECT COUNT(*) FROM {table}") as cursor:
                    row = await cursor.fetchone()
                counts[table] = row[0]
        except Exception as e:
            raise StorageError(
                f"Failed to compute statistics: {e}",
                context={"operation": "query"},
            ) from e
        last = await self.last_refresh()
        return {
            "prices": counts["market_prices"],
            "news": counts["crypto_news"],
            "analysis": counts["analysis"],
            "history_points": counts["price_history"],
            "last_refresh": last.isoformat() if last else None,
        }

    # --- Row Mappers ---

    @staticmethod
    def _row_to_price(row: aiosqlite.Row) -> MarketPriceRecord:
        return MarketPriceRecord(
            symbol=row["symbol"],
            display_name=row["display_name"],
            price=row["price"],
            change_24h=row["change_24h"],
            high_24h=row["high_24h"],
            low_24h=row["low_24h"],
            volume=row["volume"],
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    @staticmethod
    def _row_to_news(row: aiosqlite.Row) -> NewsRecord:
        return NewsRecord(
            title=row["title"],
            summary=row["summary"],
            source=row["source"],
            url=row["url"],
            category=NewsCategory(row["category"]),
            published_at=datetime.fromisoformat(row["published_at"]),
        )

    @staticmethod
    def _row_to_analysis(row: aiosqlite.Row) -> AnalysisRecord:
        return AnalysisRecord(
            id=row["id"],
            symbol=row["symbol"],
            type=AnalysisType(row["type"]),
            title=row["title"],
            content=row["content"],
            sentiment=Sentiment(row["sentiment"]) if row["sentiment"] else None,
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    @staticmethod
    def _row_to_history(row: aiosqlite.Row) -> PriceHistoryPoint:
        return PriceHistoryPoint(
            symbol=row["symbol"],
            price=row["price"],
            high=row["high"],
            low=row["low"],
            volume=row["volume"],
            timestamp=datetime.fromisoformat(row["timestamp"]),
            interval=row["interval"],
        )


async def create_store(config: StorageConfig) -> SqliteStore:
    """Create and initialize a storage backend based on configuration."""
    if config.backend == StorageBackendEnum.SQLITE:
        store = SqliteStore(config)
        await store.initialize()
        return store
    raise StorageError(
        f"Unsupported storage backend: {config.backend}",
        context={"operation": "create_store", "backend": str(config.backend)},
    )
