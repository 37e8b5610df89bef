"""Advisory per-resource lock that serializes full price recomputation.

The lock never blocks or queues. A caller that cannot acquire it is expected
to abort, because the protected operation is retried on the next scheduled
tick anyway. Locks held longer than the timeout are considered abandoned and
can be reclaimed by the next caller.

All methods are synchronous and are called from the event loop only, so the
lock table needs no mutex of its own.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta
import logging
import time
from typing import Any

from .const import DEFAULT_LOCK_TIMEOUT
from .exceptions import LockContention

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Lock:
    """A held lock."""

    resource_id: str
    operation_id: str
    acquired_at: float


class LockManager:
    """Track at most one live lock per resource."""

    def __init__(
        self,
        lock_timeout: timedelta = DEFAULT_LOCK_TIMEOUT,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the lock manager."""
        self._lock_timeout = lock_timeout.total_seconds()
        self._clock = clock
        self._locks: dict[str, Lock] = {}

    def acquire(self, resource_id: str, operation_id: str) -> bool:
        """Try to take the lock for ``resource_id``.

        Returns:
            True if the lock is now held by ``operation_id``, False if another
            operation holds a lock that has not timed out yet.
        """
        now = self._clock()
        existing = self._locks.get(resource_id)

        if existing is not None:
            held_for = now - existing.acquired_at
            if held_for < self._lock_timeout:
                if existing.operation_id == operation_id:
                    return True
                _LOGGER.debug(
                    "Lock for %s already held by %s (%.1fs), refusing %s",
                    resource_id, existing.operation_id, held_for, operation_id,
                )
                return False

            _LOGGER.warning(
                "Reclaiming stale lock for %s held by %s for %.1fs (timeout %.0fs)",
                resource_id, existing.operation_id, held_for, self._lock_timeout,
            )

        self._locks[resource_id] = Lock(
            resource_id=resource_id,
            operation_id=operation_id,
            acquired_at=now,
        )
        _LOGGER.debug("Lock for %s acquired by %s", resource_id, operation_id)
        return True

    def release(self, resource_id: str, operation_id: str) -> bool:
        """Release the lock if ``operation_id`` owns it.

        Releasing a missing lock or someone else's lock is a no-op that
        returns False.
        """
        existing = self._locks.get(resource_id)
        if existing is None:
            _LOGGER.warning(
                "%s tried to release lock for %s but none is held",
                operation_id, resource_id,
            )
            return False

        if existing.operation_id != operation_id:
            _LOGGER.warning(
                "%s tried to release lock for %s owned by %s",
                operation_id, resource_id, existing.operation_id,
            )
            return False

        del self._locks[resource_id]
        _LOGGER.debug("Lock for %s released by %s", resource_id, operation_id)
        return True

    @contextmanager
    def hold(self, resource_id: str, operation_id: str) -> Iterator[Lock]:
        """Hold the lock for the duration of a ``with`` block.

        Raises:
            LockContention: If the lock is held by another operation.
        """
        if not self.acquire(resource_id, operation_id):
            raise LockContention(resource_id, operation_id)
        try:
            yield self._locks[resource_id]
        finally:
            self.release(resource_id, operation_id)

    def get_lock_info(self, resource_id: str) -> dict[str, Any] | None:
        """Return owner and age of the lock for ``resource_id``, if any."""
        lock = self._locks.get(resource_id)
        if lock is None:
            return None
        return {
            "operation_id": lock.operation_id,
            "acquired_at": lock.acquired_at,
            "age": self._clock() - lock.acquired_at,
        }

    def clear_all_locks(self) -> None:
        """Drop every lock."""
        count = len(self._locks)
        self._locks.clear()
        _LOGGER.debug("Cleared %d locks", count)
