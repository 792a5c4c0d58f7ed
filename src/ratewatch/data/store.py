"""Typed SQLite read/write abstraction for the history store.

Provides HistoryStore with typed methods for the daily official-rate
history, hourly aggregated snapshots, logged P2P order-book slices, the
news corpus and narrative reports. All SQL is isolated behind this
interface.

Rate values are stored as TEXT in SQLite and restored as Decimal on read.
Writes are serialized through one lock: the connection is shared, and a
commit from one coroutine must never flush another's half-written
transaction.
"""

import asyncio
import json
import time
from datetime import date
from decimal import Decimal

from ratewatch.data.database import HistoryDatabase
from ratewatch.logging import get_logger
from ratewatch.models import (
    AggregatedSnapshot,
    Confidence,
    HistoryPoint,
    MarketplaceQuote,
    MarketReport,
    NewsArticle,
    OrderBookEntry,
    ResolvedRate,
    TradeSide,
)

logger = get_logger(__name__)

_UPSERT_HISTORY_SQL = (
    "INSERT INTO rate_history (date, currency, value, updated_at_ms) "
    "VALUES (?, ?, ?, ?) "
    "ON CONFLICT(date, currency) DO UPDATE SET "
    "value = excluded.value, updated_at_ms = excluded.updated_at_ms"
)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _quotes_to_json(quotes: dict[str, MarketplaceQuote]) -> str:
    return json.dumps(
        {
            name: {
                "buy": str(q.buy_rate.value),
                "buy_confidence": q.buy_rate.confidence.value,
                "sell": str(q.sell_rate.value),
                "sell_confidence": q.sell_rate.confidence.value,
            }
            for name, q in quotes.items()
        }
    )


def _quotes_from_json(raw: str) -> dict[str, MarketplaceQuote]:
    quotes = {}
    for name, q in json.loads(raw).items():
        quotes[name] = MarketplaceQuote(
            marketplace=name,
            buy_rate=ResolvedRate(Decimal(q["buy"]), Confidence(q["buy_confidence"])),
            sell_rate=ResolvedRate(Decimal(q["sell"]), Confidence(q["sell_confidence"])),
        )
    return quotes


class HistoryStore:
    """Async SQLite store for rate history, snapshots, news and reports.

    Usage:
        async with HistoryDatabase("data/ratewatch.db") as database:
            store = HistoryStore(database)
            await store.upsert_history_point(point)
    """

    def __init__(self, database: HistoryDatabase) -> None:
        self._database = database
        self._write_lock = asyncio.Lock()

    # ──────────────────────────────────────────────
    # Write methods
    # ──────────────────────────────────────────────

    async def upsert_history_point(self, point: HistoryPoint) -> int:
        """Merge a day's official rates into the history.

        Each currency in ``point.values`` overwrites the stored value for the
        same date; currencies not present keep their stored value.
        Returns the number of currency values written.
        """
        async with self._write_lock:
            written = await self._upsert_history(point)
            await self._database.db.commit()
        logger.debug("history_point_upserted", date=point.date.isoformat(), values=written)
        return written

    async def write_snapshot(
        self,
        point: HistoryPoint,
        snapshot: AggregatedSnapshot,
        offers: list[tuple[str, TradeSide, OrderBookEntry]],
        currency: str,
    ) -> None:
        """Persist one scheduler run atomically.

        Upserts the day's history point, appends the aggregated snapshot and
        the order-book slice in a single transaction. On any error the
        transaction is rolled back and nothing is written.
        """
        captured_at_ms = int(snapshot.captured_at * 1000)
        db = self._database.db
        async with self._write_lock:
            try:
                await self._upsert_history(point)
                await db.execute(
                    "INSERT OR REPLACE INTO rate_snapshots "
                    "(captured_at_ms, official_rate, official_confidence, spread_pct, marketplace_rates) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (
                        captured_at_ms,
                        str(snapshot.official_rate.value),
                        snapshot.official_rate.confidence.value,
                        str(snapshot.spread_pct),
                        _quotes_to_json(snapshot.marketplace_rates),
                    ),
                )
                if offers:
                    await db.executemany(
                        "INSERT INTO p2p_history "
                        "(captured_at_ms, platform, side, price, advertiser, currency) "
                        "VALUES (?, ?, ?, ?, ?, ?)",
                        [
                            (captured_at_ms, platform, side.value, str(entry.price), entry.advertiser, currency)
                            for platform, side, entry in offers
                        ],
                    )
                await db.commit()
            except BaseException:
                await db.rollback()
                raise
        logger.info(
            "snapshot_written",
            date=point.date.isoformat(),
            captured_at_ms=captured_at_ms,
            offers=len(offers),
        )

    async def upsert_news(self, articles: list[NewsArticle]) -> int:
        """Insert articles, ignoring URLs already stored. Returns inserted count."""
        if not articles:
            return 0
        async with self._write_lock:
            cursor = await self._database.db.executemany(
                "INSERT OR IGNORE INTO news_feed "
                "(url, title, source, published_at_ms, summary) VALUES (?, ?, ?, ?, ?)",
                [
                    (a.url, a.title, a.source, int(a.published_at * 1000), a.summary)
                    for a in articles
                ],
            )
            await self._database.db.commit()
        inserted = cursor.rowcount
        logger.debug("news_upserted", total=len(articles), inserted=inserted)
        return inserted

    async def insert_report(self, report: MarketReport) -> int:
        """Append a narrative report. Returns its row id."""
        async with self._write_lock:
            cursor = await self._database.db.execute(
                "INSERT INTO market_reports "
                "(report_type, content, sentiment_label, created_at_ms) VALUES (?, ?, ?, ?)",
                (
                    report.report_type,
                    report.content,
                    report.sentiment_label,
                    int(report.created_at * 1000),
                ),
            )
            await self._database.db.commit()
        report.id = cursor.lastrowid
        return cursor.lastrowid

    async def _upsert_history(self, point: HistoryPoint) -> int:
        now_ms = _now_ms()
        rows = [
            (point.date.isoformat(), currency.upper(), str(value), now_ms)
            for currency, value in point.values.items()
            if value is not None and value > 0
        ]
        if rows:
            await self._database.db.executemany(_UPSERT_HISTORY_SQL, rows)
        return len(rows)

    # ──────────────────────────────────────────────
    # Read methods
    # ──────────────────────────────────────────────

    async def get_history(self, since: date | None = None) -> list[HistoryPoint]:
        """Return history points ordered by date ascending."""
        query = "SELECT date, currency, value FROM rate_history"
        params: list = []
        if since is not None:
            query += " WHERE date >= ?"
            params.append(since.isoformat())
        query += " ORDER BY date ASC, currency ASC"

        cursor = await self._database.db.execute(query, params)
        rows = await cursor.fetchall()

        points: dict[str, HistoryPoint] = {}
        for day, currency, value in rows:
            point = points.get(day)
            if point is None:
                point = points[day] = HistoryPoint(date=date.fromisoformat(day))
            point.values[currency] = Decimal(value)
        return list(points.values())

    async def get_latest_history_point(self) -> HistoryPoint | None:
        """Return the most recent day's history point, or None if empty."""
        cursor = await self._database.db.execute(
            "SELECT date, currency, value FROM rate_history "
            "WHERE date = (SELECT MAX(date) FROM rate_history)"
        )
        rows = await cursor.fetchall()
        if not rows:
            return None
        return HistoryPoint(
            date=date.fromisoformat(rows[0][0]),
            values={currency: Decimal(value) for _, currency, value in rows},
        )

    async def count_history_rows(self, day: date) -> int:
        cursor = await self._database.db.execute(
            "SELECT COUNT(*) FROM rate_history WHERE date = ?", (day.isoformat(),)
        )
        return (await cursor.fetchone())[0]

    async def get_latest_snapshot(self) -> AggregatedSnapshot | None:
        cursor = await self._database.db.execute(
            "SELECT captured_at_ms, official_rate, official_confidence, spread_pct, marketplace_rates "
            "FROM rate_snapshots ORDER BY captured_at_ms DESC LIMIT 1"
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return AggregatedSnapshot(
            official_rate=ResolvedRate(Decimal(row[1]), Confidence(row[2])),
            marketplace_rates=_quotes_from_json(row[4]),
            spread_pct=Decimal(row[3]),
            captured_at=row[0] / 1000,
        )

    async def count_snapshots(self) -> int:
        cursor = await self._database.db.execute("SELECT COUNT(*) FROM rate_snapshots")
        return (await cursor.fetchone())[0]

    async def get_p2p_history(self, since_ms: int) -> list[dict]:
        """Return logged order-book slices since ``since_ms``, oldest first."""
        cursor = await self._database.db.execute(
            "SELECT captured_at_ms, platform, side, price, advertiser, currency "
            "FROM p2p_history WHERE captured_at_ms >= ? ORDER BY captured_at_ms ASC, id ASC",
            (since_ms,),
        )
        rows = await cursor.fetchall()
        return [
            {
                "captured_at_ms": row[0],
                "platform": row[1],
                "side": row[2],
                "price": Decimal(row[3]),
                "advertiser": row[4],
                "currency": row[5],
            }
            for row in rows
        ]

    async def get_news(
        self,
        limit: int = 50,
        since_ms: int | None = None,
        source_like: str | None = None,
    ) -> list[NewsArticle]:
        """Return news ordered by publication time, newest first."""
        conditions = []
        params: list = []
        if since_ms is not None:
            conditions.append("published_at_ms >= ?")
            params.append(since_ms)
        if source_like:
            conditions.append("LOWER(source) LIKE ?")
            params.append(f"%{source_like.lower()}%")

        where = f"WHERE {' AND '.join(conditions)} " if conditions else ""
        cursor = await self._database.db.execute(
            f"SELECT url, title, source, published_at_ms, summary FROM news_feed "
            f"{where}ORDER BY published_at_ms DESC LIMIT ?",
            [*params, limit],
        )
        rows = await cursor.fetchall()
        return [
            NewsArticle(
                url=row[0],
                title=row[1],
                source=row[2],
                published_at=row[3] / 1000,
                summary=row[4] or "",
            )
            for row in rows
        ]

    async def get_reports(
        self, report_type: str | None = None, limit: int = 10
    ) -> list[MarketReport]:
        """Return narrative reports, newest first, optionally by type."""
        query = (
            "SELECT id, report_type, content, sentiment_label, created_at_ms FROM market_reports"
        )
        params: list = []
        if report_type:
            query += " WHERE report_type = ?"
            params.append(report_type)
        query += " ORDER BY created_at_ms DESC, id DESC LIMIT ?"
        params.append(limit)

        cursor = await self._database.db.execute(query, params)
        rows = await cursor.fetchall()
        return [
            MarketReport(
                id=row[0],
                report_type=row[1],
                content=row[2],
                sentiment_label=row[3] or "",
                created_at=row[4] / 1000,
            )
            for row in rows
        ]
