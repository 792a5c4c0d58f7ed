"""Read side of the official-rate history with a bundled fallback dataset.

The store is the primary source. When it is empty or cannot be read, the
history shipped with the package (``bcv_history.json``, newest first, USD
only) is served instead so the dashboard chart and the reconciler's
historical fallback keep working on a fresh install.
"""

import json
from datetime import date
from decimal import Decimal
from pathlib import Path

import aiosqlite

from ratewatch.data.store import HistoryStore
from ratewatch.logging import get_logger
from ratewatch.models import AggregatedSnapshot, HistoryPoint

logger = get_logger(__name__)

BUNDLED_HISTORY_PATH = Path(__file__).parent / "bcv_history.json"

SOURCE_STORE = "store"
SOURCE_BUNDLED = "bundled"


def load_bundled_history(path: Path = BUNDLED_HISTORY_PATH) -> list[HistoryPoint]:
    """Load the bundled dataset as ascending history points."""
    with open(path, encoding="utf-8") as fh:
        rows = json.load(fh)
    points = [
        HistoryPoint(
            date=date.fromisoformat(row["date"]),
            values={"USD": Decimal(str(row["rate"]))},
        )
        for row in rows
        if row.get("rate")
    ]
    points.sort(key=lambda p: p.date)
    return points


class HistoryService:
    """History reads for the reconciler and the ``/history`` endpoint.

    Never raises on store failures: a broken store degrades to the bundled
    dataset, which is logged.
    """

    def __init__(self, store: HistoryStore, bundled_path: Path = BUNDLED_HISTORY_PATH) -> None:
        self._store = store
        self._bundled_path = bundled_path
        self._bundled: list[HistoryPoint] | None = None

    def _bundled_points(self) -> list[HistoryPoint]:
        if self._bundled is None:
            self._bundled = load_bundled_history(self._bundled_path)
        return self._bundled

    async def get_history(self) -> tuple[list[HistoryPoint], str]:
        """Return ``(points ascending by date, source)``."""
        try:
            points = await self._store.get_history()
        except (aiosqlite.Error, RuntimeError) as exc:
            logger.warning("history_store_unavailable", error=str(exc))
            points = []
        if points:
            return points, SOURCE_STORE
        logger.info("history_bundled_fallback")
        return self._bundled_points(), SOURCE_BUNDLED

    async def latest_point(self) -> HistoryPoint | None:
        """Most recent history point, from the store or the bundled dataset."""
        try:
            point = await self._store.get_latest_history_point()
        except (aiosqlite.Error, RuntimeError) as exc:
            logger.warning("history_store_unavailable", error=str(exc))
            point = None
        if point is not None:
            return point
        bundled = self._bundled_points()
        return bundled[-1] if bundled else None

    async def latest_snapshot(self) -> AggregatedSnapshot | None:
        """Last persisted snapshot, the historical source for marketplace rates."""
        try:
            return await self._store.get_latest_snapshot()
        except (aiosqlite.Error, RuntimeError) as exc:
            logger.warning("snapshot_store_unavailable", error=str(exc))
            return None
