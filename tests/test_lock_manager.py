"""Tests for the recompute lock manager."""

from __future__ import annotations

from datetime import timedelta

import pytest

from custom_components.cz_spot_prices.exceptions import LockContention
from custom_components.cz_spot_prices.lock_manager import LockManager

DEVICE = "entry_1"


@pytest.fixture
def manager(clock) -> LockManager:
    """Return a lock manager with a 30 second timeout on the fake clock."""
    return LockManager(timedelta(seconds=30), clock=clock)


class TestAcquireRelease:
    """Tests for acquire and release."""

    def test_acquire_free_lock(self, manager):
        assert manager.acquire(DEVICE, "op1") is True
        assert manager.get_lock_info(DEVICE)["operation_id"] == "op1"

    def test_second_operation_is_refused(self, manager):
        """Only one live lock per resource."""
        assert manager.acquire(DEVICE, "op1") is True
        assert manager.acquire(DEVICE, "op2") is False
        assert manager.get_lock_info(DEVICE)["operation_id"] == "op1"

    def test_same_operation_reacquires(self, manager, clock):
        """Re-acquiring by the owner succeeds without resetting the age."""
        manager.acquire(DEVICE, "op1")
        clock.advance(10)
        assert manager.acquire(DEVICE, "op1") is True
        assert manager.get_lock_info(DEVICE)["age"] == pytest.approx(10)

    def test_other_resources_are_independent(self, manager):
        assert manager.acquire("entry_1", "op1") is True
        assert manager.acquire("entry_2", "op2") is True

    def test_release_by_owner(self, manager):
        manager.acquire(DEVICE, "op1")
        assert manager.release(DEVICE, "op1") is True
        assert manager.get_lock_info(DEVICE) is None
        assert manager.acquire(DEVICE, "op2") is True

    def test_release_by_non_owner_is_ignored(self, manager):
        manager.acquire(DEVICE, "op1")
        assert manager.release(DEVICE, "op2") is False
        assert manager.get_lock_info(DEVICE)["operation_id"] == "op1"

    def test_release_missing_lock(self, manager):
        assert manager.release(DEVICE, "op1") is False

    def test_clear_all_locks(self, manager):
        manager.acquire("entry_1", "op1")
        manager.acquire("entry_2", "op2")
        manager.clear_all_locks()
        assert manager.get_lock_info("entry_1") is None
        assert manager.get_lock_info("entry_2") is None


class TestStaleLocks:
    """Tests for reclaiming locks held past the timeout."""

    def test_lock_still_live_just_before_timeout(self, manager, clock):
        manager.acquire(DEVICE, "op1")
        clock.advance(29.9)
        assert manager.acquire(DEVICE, "op2") is False

    def test_stale_lock_is_reclaimed(self, manager, clock, caplog):
        manager.acquire(DEVICE, "op1")
        clock.advance(30)
        assert manager.acquire(DEVICE, "op2") is True

        info = manager.get_lock_info(DEVICE)
        assert info["operation_id"] == "op2"
        assert info["age"] == 0
        assert "Reclaiming stale lock" in caplog.text

    def test_stale_owner_release_after_reclaim_is_ignored(self, manager, clock):
        """The abandoned operation cannot release its successor's lock."""
        manager.acquire(DEVICE, "op1")
        clock.advance(31)
        manager.acquire(DEVICE, "op2")
        assert manager.release(DEVICE, "op1") is False
        assert manager.get_lock_info(DEVICE)["operation_id"] == "op2"


class TestHold:
    """Tests for the hold context manager."""

    def test_hold_releases_on_exit(self, manager):
        with manager.hold(DEVICE, "op1") as lock:
            assert lock.operation_id == "op1"
            assert manager.acquire(DEVICE, "op2") is False
        assert manager.get_lock_info(DEVICE) is None

    def test_hold_releases_on_error(self, manager):
        with pytest.raises(RuntimeError):
            with manager.hold(DEVICE, "op1"):
                raise RuntimeError("boom")
        assert manager.get_lock_info(DEVICE) is None

    def test_hold_raises_on_contention(self, manager):
        manager.acquire(DEVICE, "op1")
        with pytest.raises(LockContention) as exc_info:
            with manager.hold(DEVICE, "op2"):
                pytest.fail("body must not run")
        assert exc_info.value.resource_id == DEVICE
        assert exc_info.value.operation_id == "op2"
        # The holder keeps its lock
        assert manager.get_lock_info(DEVICE)["operation_id"] == "op1"
