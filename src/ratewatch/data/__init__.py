"""Rate history persistence layer.

Provides the SQLite database manager, the typed read/write store and the
history read service with its bundled fallback dataset.
"""

from ratewatch.data.database import HistoryDatabase
from ratewatch.data.history import HistoryService, load_bundled_history
from ratewatch.data.store import HistoryStore

__all__ = [
    "HistoryDatabase",
    "HistoryService",
    "HistoryStore",
    "load_bundled_history",
]
