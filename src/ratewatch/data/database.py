"""Async SQLite database manager for the history store.

Uses aiosqlite for non-blocking database operations with WAL mode
so dashboard reads never wait on the scheduler's writes.
"""

from pathlib import Path
from typing import Self

import aiosqlite

from ratewatch.logging import get_logger

logger = get_logger(__name__)

SCHEMA_VERSION = 1

_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS rate_history (
    date TEXT NOT NULL,
    currency TEXT NOT NULL,
    value TEXT NOT NULL,
    updated_at_ms INTEGER NOT NULL,
    PRIMARY KEY (date, currency)
);

CREATE TABLE IF NOT EXISTS rate_snapshots (
    captured_at_ms INTEGER PRIMARY KEY,
    official_rate TEXT NOT NULL,
    official_confidence TEXT NOT NULL,
    spread_pct TEXT NOT NULL,
    marketplace_rates TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS p2p_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    captured_at_ms INTEGER NOT NULL,
    platform TEXT NOT NULL,
    side TEXT NOT NULL,
    price TEXT NOT NULL,
    advertiser TEXT,
    currency TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS news_feed (
    url TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    source TEXT NOT NULL,
    published_at_ms INTEGER NOT NULL,
    summary TEXT
);

CREATE TABLE IF NOT EXISTS market_reports (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    report_type TEXT NOT NULL,
    content TEXT NOT NULL,
    sentiment_label TEXT,
    created_at_ms INTEGER NOT NULL
);
"""

_CREATE_INDEXES_SQL = """
CREATE INDEX IF NOT EXISTS idx_p2p_history_ts
    ON p2p_history(captured_at_ms);

CREATE INDEX IF NOT EXISTS idx_news_published
    ON news_feed(published_at_ms);

CREATE INDEX IF NOT EXISTS idx_reports_type_ts
    ON market_reports(report_type, created_at_ms);
"""


class HistoryDatabase:
    """Owns the single aiosqlite connection shared by the store.

    The schema is created on connect. A file written by a newer release
    (higher ``schema_version``) is refused rather than silently downgraded.

        async with HistoryDatabase("data/ratewatch.db") as database:
            store = HistoryStore(database)
    """

    def __init__(self, db_path: str = "data/ratewatch.db") -> None:
        self._db_path = db_path
        self._connection: aiosqlite.Connection | None = None

    @property
    def db(self) -> aiosqlite.Connection:
        """The open connection. Raises RuntimeError before connect()."""
        if self._connection is None:
            raise RuntimeError("History database is not connected. Call connect() first.")
        return self._connection

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    async def connect(self) -> None:
        if self._connection is not None:
            return
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)

        connection = await aiosqlite.connect(self._db_path)
        try:
            await connection.execute("PRAGMA journal_mode=WAL")
            await connection.execute("PRAGMA synchronous=NORMAL")
            await self._migrate(connection)
        except BaseException:
            await connection.close()
            raise

        self._connection = connection
        logger.info("history_db_connected", db_path=self._db_path, schema_version=SCHEMA_VERSION)

    async def close(self) -> None:
        if self._connection is None:
            return
        await self._connection.close()
        self._connection = None
        logger.info("history_db_closed", db_path=self._db_path)

    async def _migrate(self, connection: aiosqlite.Connection) -> None:
        await connection.executescript(_CREATE_TABLES_SQL + _CREATE_INDEXES_SQL)
        async with connection.execute("SELECT MAX(version) FROM schema_version") as cursor:
            row = await cursor.fetchone()
        stored = row[0] if row else None

        if stored is None:
            await connection.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,)
            )
            logger.info("schema_version_set", version=SCHEMA_VERSION)
        elif stored > SCHEMA_VERSION:
            raise RuntimeError(
                f"{self._db_path} has schema version {stored}, "
                f"this release supports up to {SCHEMA_VERSION}"
            )
        await connection.commit()

    async def __aenter__(self) -> Self:
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        await self.close()
