"""Time-to-live cache used by the price calculator."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta
import logging
import time
from typing import Generic, TypeVar

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """A cached value and the monotonic time it was stored."""

    key: str
    value: T
    created_at: float


class TTLCache(Generic[T]):
    """Keyed store whose entries expire after a fixed time-to-live.

    Entries are only ever evicted by age. Lookups treat expired entries as
    misses even before ``sweep`` has removed them.
    """

    def __init__(
        self,
        ttl: timedelta,
        *,
        name: str = "cache",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the cache."""
        self._ttl = ttl.total_seconds()
        self._name = name
        self._clock = clock
        self._entries: dict[str, CacheEntry[T]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def _is_fresh(self, entry: CacheEntry[T], now: float) -> bool:
        return now - entry.created_at < self._ttl

    def get(self, key: str) -> T | None:
        """Return the cached value for ``key``, or None on a miss."""
        entry = self._entries.get(key)
        if entry is None or not self._is_fresh(entry, self._clock()):
            return None
        return entry.value

    def put(self, key: str, value: T) -> None:
        """Store ``value`` under ``key`` with the current timestamp."""
        self._entries[key] = CacheEntry(key=key, value=value, created_at=self._clock())

    def sweep(self) -> int:
        """Remove every expired entry and return how many were dropped."""
        now = self._clock()
        expired = [
            key for key, entry in self._entries.items()
            if not self._is_fresh(entry, now)
        ]
        for key in expired:
            del self._entries[key]
        if expired:
            _LOGGER.debug(
                "Swept %d expired entries from %s, %d left",
                len(expired), self._name, len(self._entries),
            )
        return len(expired)

    def clear(self) -> None:
        """Drop all entries."""
        self._entries.clear()
