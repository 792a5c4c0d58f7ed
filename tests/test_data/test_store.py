"""Tests for HistoryStore and HistoryService on a real temporary SQLite file."""

import json
import time
from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock

import aiosqlite
import pytest

from ratewatch.data.database import SCHEMA_VERSION, HistoryDatabase
from ratewatch.data.history import HistoryService, load_bundled_history
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


def _snapshot(captured_at: float = 1_700_000_000.0) -> AggregatedSnapshot:
    live = Confidence.LIVE
    return AggregatedSnapshot(
        official_rate=ResolvedRate(Decimal("240.50"), live),
        marketplace_rates={
            "binance": MarketplaceQuote(
                "binance",
                ResolvedRate(Decimal("270.00"), live),
                ResolvedRate(Decimal("268.00"), live),
            ),
        },
        spread_pct=Decimal("12.27"),
        captured_at=captured_at,
    )


def _offer(price: str) -> OrderBookEntry:
    return OrderBookEntry(
        advertiser_id="1",
        advertiser="trader",
        price=Decimal(price),
        min_amount=Decimal("0"),
        max_amount=Decimal("0"),
        available_amount=Decimal("0"),
    )


class TestHistoryUpsert:
    """Tests for the daily history merge."""

    @pytest.mark.asyncio
    async def test_same_day_upsert_keeps_one_record(self, store) -> None:
        point = HistoryPoint(date(2025, 3, 14), {"USD": Decimal("240.50"), "EUR": Decimal("260.00")})

        await store.upsert_history_point(point)
        await store.upsert_history_point(point)

        history = await store.get_history()
        assert len(history) == 1
        assert history[0].values == {"EUR": Decimal("260.00"), "USD": Decimal("240.50")}
        assert await store.count_history_rows(date(2025, 3, 14)) == 2

    @pytest.mark.asyncio
    async def test_same_day_writes_merge_per_currency(self, store) -> None:
        day = date(2025, 3, 14)
        await store.upsert_history_point(HistoryPoint(day, {"USD": Decimal("240.50"), "EUR": Decimal("260.00")}))
        await store.upsert_history_point(HistoryPoint(day, {"USD": Decimal("241.00")}))

        latest = await store.get_latest_history_point()
        assert latest.date == day
        assert latest.values == {"USD": Decimal("241.00"), "EUR": Decimal("260.00")}

    @pytest.mark.asyncio
    async def test_zero_values_are_not_stored(self, store) -> None:
        written = await store.upsert_history_point(
            HistoryPoint(date(2025, 3, 14), {"USD": Decimal("0"), "EUR": Decimal("260")})
        )
        assert written == 1

    @pytest.mark.asyncio
    async def test_history_is_ascending(self, store) -> None:
        for day in (date(2025, 3, 14), date(2025, 3, 12), date(2025, 3, 13)):
            await store.upsert_history_point(HistoryPoint(day, {"USD": Decimal("240")}))

        history = await store.get_history()
        assert [p.date for p in history] == [date(2025, 3, 12), date(2025, 3, 13), date(2025, 3, 14)]

        recent = await store.get_history(since=date(2025, 3, 13))
        assert len(recent) == 2

    @pytest.mark.asyncio
    async def test_empty_store(self, store) -> None:
        assert await store.get_history() == []
        assert await store.get_latest_history_point() is None
        assert await store.get_latest_snapshot() is None


class TestWriteSnapshot:
    """Tests for the atomic snapshot write."""

    @pytest.mark.asyncio
    async def test_snapshot_round_trip(self, store) -> None:
        point = HistoryPoint(date(2025, 3, 14), {"USD": Decimal("240.50")})
        offers = [
            ("binance", TradeSide.BUY, _offer("270.00")),
            ("binance", TradeSide.SELL, _offer("268.00")),
        ]

        await store.write_snapshot(point, _snapshot(), offers, "VES")

        snapshot = await store.get_latest_snapshot()
        assert snapshot.official_rate == ResolvedRate(Decimal("240.50"), Confidence.LIVE)
        assert snapshot.marketplace_rates["binance"].sell_rate.value == Decimal("268.00")
        assert snapshot.spread_pct == Decimal("12.27")
        assert snapshot.captured_at == 1_700_000_000.0

        rows = await store.get_p2p_history(0)
        assert [(r["side"], r["price"]) for r in rows] == [
            ("buy", Decimal("270.00")),
            ("sell", Decimal("268.00")),
        ]
        assert rows[0]["currency"] == "VES"

    @pytest.mark.asyncio
    async def test_failed_write_leaves_nothing(self, store, database) -> None:
        point = HistoryPoint(date(2025, 3, 14), {"USD": Decimal("240.50")})
        await database.db.execute("DROP TABLE p2p_history")

        with pytest.raises(aiosqlite.Error):
            await store.write_snapshot(
                point, _snapshot(), [("binance", TradeSide.BUY, _offer("270"))], "VES"
            )

        assert await store.get_history() == []
        assert await store.count_snapshots() == 0

    @pytest.mark.asyncio
    async def test_latest_snapshot_is_newest(self, store) -> None:
        point = HistoryPoint(date(2025, 3, 14), {"USD": Decimal("240.50")})
        await store.write_snapshot(point, _snapshot(1000.0), [], "VES")
        await store.write_snapshot(point, _snapshot(2000.0), [], "VES")

        assert (await store.get_latest_snapshot()).captured_at == 2000.0
        assert await store.count_snapshots() == 2


class TestNewsAndReports:
    """Tests for the news corpus and narrative reports."""

    @pytest.mark.asyncio
    async def test_news_upsert_ignores_known_urls(self, store) -> None:
        now = time.time()
        articles = [
            NewsArticle("https://a/1", "BTC up", "Cointelegraph", now - 60),
            NewsArticle("https://a/2", "BCV rate", "Banca y Negocios", now - 30),
        ]
        assert await store.upsert_news(articles) == 2
        assert await store.upsert_news(articles) == 0

        news = await store.get_news()
        assert [a.url for a in news] == ["https://a/2", "https://a/1"]

        local = await store.get_news(source_like="banca")
        assert [a.source for a in local] == ["Banca y Negocios"]

        recent = await store.get_news(since_ms=int((now - 45) * 1000))
        assert len(recent) == 1

    @pytest.mark.asyncio
    async def test_reports_by_type(self, store) -> None:
        await store.insert_report(MarketReport("daily_brief", json.dumps({"sentiment": "Bullish"}), "bullish", 1.0))
        report = MarketReport("local_analysis", "Spread narrowing.", "neutral", 2.0)
        report_id = await store.insert_report(report)

        assert report.id == report_id
        latest = await store.get_reports(limit=1)
        assert latest[0].report_type == "local_analysis"
        briefs = await store.get_reports(report_type="daily_brief")
        assert len(briefs) == 1
        assert briefs[0].sentiment_label == "bullish"


class TestHistoryService:
    """Tests for the bundled-dataset fallback."""

    def test_bundled_dataset_is_ascending_usd(self) -> None:
        points = load_bundled_history()
        assert points
        assert [p.date for p in points] == sorted(p.date for p in points)
        assert all(p.value_for("USD") for p in points)

    @pytest.mark.asyncio
    async def test_empty_store_serves_bundled(self, store) -> None:
        service = HistoryService(store)
        points, source = await service.get_history()
        assert source == "bundled"
        assert points == load_bundled_history()

    @pytest.mark.asyncio
    async def test_store_data_preferred(self, store) -> None:
        await store.upsert_history_point(HistoryPoint(date(2025, 3, 14), {"USD": Decimal("240.50")}))
        service = HistoryService(store)

        points, source = await service.get_history()
        assert source == "store"
        assert len(points) == 1
        assert (await service.latest_point()).value_for("USD") == Decimal("240.50")

    @pytest.mark.asyncio
    async def test_broken_store_degrades(self) -> None:
        broken = AsyncMock()
        broken.get_history = AsyncMock(side_effect=RuntimeError("Database not connected"))
        broken.get_latest_history_point = AsyncMock(side_effect=aiosqlite.OperationalError("locked"))
        broken.get_latest_snapshot = AsyncMock(side_effect=RuntimeError("Database not connected"))
        service = HistoryService(broken)

        _, source = await service.get_history()
        assert source == "bundled"
        assert (await service.latest_point()).date == load_bundled_history()[-1].date
        assert await service.latest_snapshot() is None


class TestHistoryDatabase:
    """Tests for connection lifecycle and the schema version guard."""

    @pytest.mark.asyncio
    async def test_reconnect_keeps_version(self, tmp_path) -> None:
        path = str(tmp_path / "nested" / "history.db")
        async with HistoryDatabase(path) as database:
            assert database.is_connected
        async with HistoryDatabase(path) as database:
            async with database.db.execute("SELECT version FROM schema_version") as cursor:
                rows = await cursor.fetchall()
        assert rows == [(SCHEMA_VERSION,)]
        assert not database.is_connected

    @pytest.mark.asyncio
    async def test_newer_schema_is_refused(self, tmp_path) -> None:
        path = str(tmp_path / "history.db")
        async with HistoryDatabase(path) as database:
            await database.db.execute("UPDATE schema_version SET version = ?", (SCHEMA_VERSION + 1,))
            await database.db.commit()

        database = HistoryDatabase(path)
        with pytest.raises(RuntimeError, match="schema version"):
            await database.connect()
        assert not database.is_connected

    def test_db_before_connect_raises(self) -> None:
        with pytest.raises(RuntimeError, match="not connected"):
            HistoryDatabase(":memory:").db
