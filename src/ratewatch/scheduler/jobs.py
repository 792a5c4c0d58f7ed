"""Scheduled jobs: the hourly rate snapshot and the narrative reports.

Jobs are plain objects whose ``run_*`` coroutines never raise: failures are
logged and the run ends without writing anything. The timer loop and the
manual trigger endpoints call the same coroutines.
"""

import asyncio
import json
import re
import time

import structlog

from ratewatch.config import NewsSettings, P2PSettings
from ratewatch.data.store import HistoryStore
from ratewatch.exceptions import NarrativeUnavailableError, SchedulerRunFailure, UpstreamError
from ratewatch.logging import get_logger
from ratewatch.market_data.reconciler import RateReconciler, snapshot_from_view
from ratewatch.models import (
    HistoryPoint,
    MarketReport,
    NewsArticle,
    OrderBookEntry,
    TradeSide,
)
from ratewatch.sources.llm import NarrativeGenerator
from ratewatch.sources.news import NewsFeedReader

logger = get_logger(__name__)

REPORT_DAILY_BRIEF = "daily_brief"
REPORT_LOCAL_ANALYSIS = "local_analysis"

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)


class SnapshotJob:
    """Samples the official rate and both marketplaces and persists one snapshot.

    Strict: if any source fails the run aborts before writing. Overlapping
    runs are skipped, so two triggers close together write once.
    """

    def __init__(
        self,
        reconciler: RateReconciler,
        store: HistoryStore,
        settings: P2PSettings,
    ) -> None:
        self._reconciler = reconciler
        self._store = store
        self._settings = settings
        self._lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._lock.locked()

    async def run(self) -> bool:
        """Run once. Returns True if a snapshot was written."""
        if self._lock.locked():
            logger.info("snapshot_run_skipped", reason="already_running")
            return False

        async with self._lock:
            with structlog.contextvars.bound_contextvars(job="snapshot"):
                started = time.monotonic()
                try:
                    await self._snapshot()
                except SchedulerRunFailure as e:
                    logger.error("snapshot_run_failed", error=str(e))
                    return False
                except Exception as e:
                    logger.error("snapshot_run_failed", error=str(e), exc_info=True)
                    return False
                logger.info(
                    "snapshot_run_completed",
                    duration_seconds=round(time.monotonic() - started, 3),
                )
                return True

    async def _snapshot(self) -> None:
        readings = await self._reconciler.gather_sources()
        if not readings.complete:
            raise SchedulerRunFailure(
                f"sources unavailable: {', '.join(sorted(readings.errors))}"
            )

        official = readings.official
        if official.usd is None:
            raise SchedulerRunFailure("official USD rate absent")
        point = HistoryPoint(
            date=official.valid_date,
            values={
                currency: value
                for currency, value in (("USD", official.usd), ("EUR", official.eur))
                if value is not None
            },
        )
        # All sources are live here, so no historical fallback is involved
        view = self._reconciler.reconcile(readings, point, None)
        snapshot = snapshot_from_view(view)

        limit = self._settings.dashboard_top_n
        offers: list[tuple[str, TradeSide, OrderBookEntry]] = []
        for name, book in readings.books.items():
            offers.extend((name, TradeSide.BUY, entry) for entry in book.buy[:limit])
            offers.extend((name, TradeSide.SELL, entry) for entry in book.sell[:limit])

        await self._store.write_snapshot(point, snapshot, offers, self._settings.fiat)


def parse_brief(text: str) -> dict:
    """Extract the JSON object of a daily brief answer.

    Raises:
        NarrativeUnavailableError: The answer is not a JSON object.
    """
    cleaned = _FENCE_RE.sub("", text).strip()
    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise NarrativeUnavailableError(f"brief is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise NarrativeUnavailableError("brief is not a JSON object")
    return payload


def _headlines(articles: list[NewsArticle], with_source: bool = True) -> str:
    if with_source:
        return "\n".join(f"- {a.title} ({a.source})" for a in articles)
    return "\n".join(f"- {a.title}" for a in articles)


def _context_lines(context: dict[str, str]) -> str:
    return "\n".join(f"{key}: {value}" for key, value in context.items())


class NarrativeJob:
    """News scrape plus the daily brief and local analysis reports.

    Reports are appended to ``market_reports`` under their own type. A
    provider failure writes nothing.
    """

    def __init__(
        self,
        news_reader: NewsFeedReader,
        store: HistoryStore,
        generator: NarrativeGenerator,
        reconciler: RateReconciler,
        settings: NewsSettings,
    ) -> None:
        self._news_reader = news_reader
        self._store = store
        self._generator = generator
        self._reconciler = reconciler
        self._settings = settings

    def _since_ms(self, now: float | None = None) -> int:
        now = now if now is not None else time.time()
        return int((now - self._settings.lookback_hours * 3600) * 1000)

    async def scrape_news(self) -> int:
        """Read the feeds and store new articles. Returns inserted count."""
        articles = await self._news_reader.fetch_recent()
        return await self._store.upsert_news(articles)

    async def generate_daily_brief(self) -> MarketReport | None:
        """Summarize the last day's headlines. None when there is no news."""
        news = await self._store.get_news(
            limit=self._settings.max_headlines, since_ms=self._since_ms()
        )
        if not news:
            logger.info("daily_brief_skipped", reason="no_recent_news")
            return None

        context = await self._reconciler.market_context()
        prompt = (
            "You are a senior crypto financial analyst.\n"
            "Analyze these headlines from the last 24 hours:\n"
            f"{_headlines(news)}\n\n"
            "Current VES exchange rates:\n"
            f"{_context_lines(context)}\n\n"
            "Output strictly valid JSON only with no markdown formatting:\n"
            '{"sentiment": "Bullish/Bearish/Neutral", '
            '"summary": "One concise paragraph summary.", '
            '"highlights": ["Event 1", "Event 2", "Event 3"], '
            '"outlook": "One sentence outlook."}'
        )
        payload = parse_brief(await self._generator.generate(prompt))
        report = MarketReport(
            report_type=REPORT_DAILY_BRIEF,
            content=json.dumps(payload, ensure_ascii=False),
            sentiment_label=str(payload.get("sentiment") or "neutral").lower(),
        )
        await self._store.insert_report(report)
        logger.info("daily_brief_generated", report_id=report.id, sentiment=report.sentiment_label)
        return report

    async def generate_local_analysis(self) -> MarketReport:
        """Comment on the official vs parallel spread using local headlines."""
        since_ms = self._since_ms()
        news = await self._store.get_news(
            limit=self._settings.max_headlines,
            since_ms=since_ms,
            source_like=self._settings.local_source_hint,
        )
        if not news:
            news = await self._store.get_news(limit=self._settings.max_headlines, since_ms=since_ms)
        headlines = _headlines(news, with_source=False) if news else "No recent headlines."

        context = await self._reconciler.market_context()
        prompt = (
            "Act as a Venezuelan financial expert.\n\n"
            "Current exchange rates (official vs P2P):\n"
            f"{_context_lines(context)}\n\n"
            "Recent local headlines:\n"
            f"{headlines}\n\n"
            "Based on the rates and headlines:\n"
            "1. Explain the current spread (official vs parallel) trend.\n"
            "2. Give specific advice for holding USDT vs VES right now.\n"
            "Keep it concise (3-4 sentences)."
        )
        text = await self._generator.generate(prompt)
        report = MarketReport(
            report_type=REPORT_LOCAL_ANALYSIS,
            content=text,
            sentiment_label="neutral",
        )
        await self._store.insert_report(report)
        logger.info("local_analysis_generated", report_id=report.id)
        return report

    # ──────────────────────────────────────────────
    # Scheduler entry points (never raise)
    # ──────────────────────────────────────────────

    async def _guarded(self, job: str, coro_fn) -> bool:  # type: ignore[no-untyped-def]
        with structlog.contextvars.bound_contextvars(job=job):
            try:
                await coro_fn()
            except (NarrativeUnavailableError, UpstreamError) as e:
                logger.warning("narrative_job_failed", error=str(e))
                return False
            except Exception as e:
                logger.error("narrative_job_failed", error=str(e), exc_info=True)
                return False
        return True

    async def run_news_scrape(self) -> bool:
        return await self._guarded("news_scrape", self.scrape_news)

    async def run_daily_brief(self) -> bool:
        return await self._guarded(REPORT_DAILY_BRIEF, self.generate_daily_brief)

    async def run_local_analysis(self) -> bool:
        return await self._guarded(REPORT_LOCAL_ANALYSIS, self.generate_local_analysis)

    async def run_refresh(self) -> bool:
        """Manual refresh: scrape news, then regenerate the daily brief."""
        scraped = await self.run_news_scrape()
        briefed = await self.run_daily_brief()
        return scraped and briefed
