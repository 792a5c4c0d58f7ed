"""Entry point for the VES rate aggregation service.

Wires all components together and serves the FastAPI dashboard API with
uvicorn. The scheduler runs as background tasks on the same event loop,
started and stopped by FastAPI's lifespan context manager.

Component wiring order (in _build_components):
1. HttpClient (shared aiohttp session)
2. HistoryDatabase, HistoryStore, HistoryService
3. Source adapters (BCV, Binance P2P, Bybit P2P, spot, CoinGecko, news, LLM)
4. RateReconciler and P2PRanger
5. TopCoinsService (expiring cache) and MarketAdvisor
6. SnapshotJob, NarrativeJob and the Scheduler
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import FastAPI

from ratewatch.config import AppSettings
from ratewatch.data.database import HistoryDatabase
from ratewatch.data.history import HistoryService
from ratewatch.data.store import HistoryStore
from ratewatch.logging import get_logger, setup_logging
from ratewatch.market_data.advisor import MarketAdvisor
from ratewatch.market_data.ranger import P2PRanger
from ratewatch.market_data.reconciler import RateReconciler
from ratewatch.market_data.top_coins import TopCoinsService
from ratewatch.scheduler.jobs import NarrativeJob, SnapshotJob
from ratewatch.scheduler.runner import Scheduler
from ratewatch.sources import (
    BcvRateSource,
    BinanceP2P,
    BybitP2P,
    CoinGeckoClient,
    HttpClient,
    NarrativeGenerator,
    NewsFeedReader,
    SpotPriceSource,
)


def _build_components(settings: AppSettings) -> dict[str, Any]:
    """Build all service components from settings.

    Does NOT open connections: the HTTP session and the database are
    opened in the lifespan.
    """
    http = HttpClient(settings.http)
    database = HistoryDatabase(settings.storage.db_path)
    store = HistoryStore(database)
    history_service = HistoryService(store)

    official = BcvRateSource(http, settings.bcv)
    marketplaces = [BinanceP2P(http, settings.p2p), BybitP2P(http, settings.p2p)]
    timeout = settings.http.timeout_seconds

    reconciler = RateReconciler(official, marketplaces, history_service, timeout=timeout)
    ranger = P2PRanger(marketplaces, settings.p2p, timeout=timeout)

    coingecko = CoinGeckoClient(http, settings.market)
    top_coins = TopCoinsService(coingecko, settings.market.top_coins_ttl_seconds)
    spot_source = SpotPriceSource(settings.market, timeout=timeout)

    news_reader = NewsFeedReader(http, settings.news)
    generator = NarrativeGenerator.from_settings(http, settings.ai)
    advisor = MarketAdvisor(reconciler, generator, spot_source)

    snapshot_job = SnapshotJob(reconciler, store, settings.p2p)
    narrative_job = NarrativeJob(news_reader, store, generator, reconciler, settings.news)
    scheduler = Scheduler(snapshot_job, narrative_job, settings.scheduler)

    return {
        "http": http,
        "database": database,
        "store": store,
        "history_service": history_service,
        "reconciler": reconciler,
        "ranger": ranger,
        "coingecko": coingecko,
        "top_coins": top_coins,
        "spot_source": spot_source,
        "advisor": advisor,
        "scheduler": scheduler,
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open connections and start the scheduler; undo both on shutdown."""
    logger = get_logger("ratewatch.main")
    settings: AppSettings = app.state.settings
    components = app.state.components

    for name in (
        "store",
        "history_service",
        "reconciler",
        "ranger",
        "coingecko",
        "top_coins",
        "spot_source",
        "advisor",
        "scheduler",
    ):
        setattr(app.state, name, components[name])

    await components["http"].connect()
    await components["database"].connect()

    if settings.scheduler.enabled:
        await components["scheduler"].start()

    logger.info("lifespan_started", scheduler_enabled=settings.scheduler.enabled)

    yield

    await components["scheduler"].stop()
    await components["spot_source"].close()
    await components["database"].close()
    await components["http"].close()

    logger.info("ratewatch_stopped")


async def run() -> None:
    """Run the API server and the background scheduler on one event loop."""
    settings = AppSettings()

    setup_logging(settings.log_level, settings.log_format)
    logger = get_logger("ratewatch.main")

    components = _build_components(settings)

    from ratewatch.dashboard.app import create_app

    app = create_app(lifespan=lifespan)
    app.state.settings = settings
    app.state.components = components

    logger.info(
        "starting_ratewatch",
        host=settings.dashboard.host,
        port=settings.dashboard.port,
        db_path=settings.storage.db_path,
    )

    config = uvicorn.Config(
        app,
        host=settings.dashboard.host,
        port=settings.dashboard.port,
        log_level="warning",  # Suppress uvicorn access logs
    )
    server = uvicorn.Server(config)
    await server.serve()


def main() -> None:
    """Synchronous entry point."""
    asyncio.run(run())


if __name__ == "__main__":
    main()
