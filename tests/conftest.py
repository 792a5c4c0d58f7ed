"""Shared test fixtures for the rate aggregation service."""

import pytest
import pytest_asyncio

from ratewatch.config import AppSettings, P2PSettings, SchedulerSettings
from ratewatch.data.database import HistoryDatabase
from ratewatch.data.store import HistoryStore


@pytest.fixture
def mock_settings() -> AppSettings:
    """Return AppSettings with test defaults (scheduler off, no AI keys)."""
    return AppSettings(
        log_level="DEBUG",
        scheduler=SchedulerSettings(enabled=False, run_on_startup=False),
        p2p=P2PSettings(),
    )


@pytest_asyncio.fixture
async def database(tmp_path):
    """Connected HistoryDatabase on a temporary file."""
    db = HistoryDatabase(str(tmp_path / "test.db"))
    await db.connect()
    yield db
    await db.close()


@pytest_asyncio.fixture
async def store(database) -> HistoryStore:
    return HistoryStore(database)
