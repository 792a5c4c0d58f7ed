"""In-memory expiring cache for slow-moving market data.

Stores the latest value and its storage time per key. Expiry is decided by
the caller (``entry.is_expired(ttl)``) so that an expired entry can still be
served when the refetch fails.

No lock: every access is a single dict operation on the event loop thread.
Concurrent misses both refetch and the last writer wins.
"""

import time
from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass
class CacheEntry(Generic[T]):
    """A cached value and the unix time it was stored."""

    value: T
    stored_at: float

    def age(self, now: float | None = None) -> float:
        now = now if now is not None else time.time()
        return now - self.stored_at

    def is_expired(self, ttl_seconds: float, now: float | None = None) -> bool:
        return self.age(now) >= ttl_seconds


class ExpiringCache(Generic[T]):
    """Key to CacheEntry map with explicit, caller-checked expiry."""

    def __init__(self) -> None:
        self._entries: dict[str, CacheEntry[T]] = {}

    def get(self, key: str) -> CacheEntry[T] | None:
        """Return the entry for ``key`` (expired or not), or None."""
        return self._entries.get(key)

    def set(self, key: str, value: T, now: float | None = None) -> CacheEntry[T]:
        entry = CacheEntry(value, now if now is not None else time.time())
        self._entries[key] = entry
        return entry

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)
