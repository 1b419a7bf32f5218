"""Unit tests for the one-shot request deadline."""

from __future__ import annotations

import pytest

from geoclue2source.source.deadline import RequestDeadline


@pytest.fixture
def expirations() -> list[int]:
    """Expiry counter"""
    return []


@pytest.fixture
def deadline(scheduler, expirations) -> RequestDeadline:
    """Deadline on the manual scheduler"""
    return RequestDeadline(scheduler, lambda: expirations.append(1))


class TestRequestDeadline:
    """Tests for arm/cancel/expiry."""

    def test_zero_selects_cold_start_default(self, deadline, scheduler) -> None:
        """0 becomes 120 s."""
        deadline.arm(0)
        assert scheduler.armed_timeouts() == [120000]
        assert deadline.timeout_ms == 120000

    def test_explicit_timeout_is_used(self, deadline, scheduler) -> None:
        """Non-zero values are used as-is."""
        deadline.arm(5000)
        assert scheduler.armed_timeouts() == [5000]
        assert deadline.isArmed() is True

    def test_rearm_while_armed_raises(self, deadline) -> None:
        """Only one countdown may run."""
        deadline.arm(5000)
        with pytest.raises(RuntimeError, match="already armed"):
            deadline.arm(5000)

    def test_cancel_is_idempotent(self, deadline, scheduler) -> None:
        """Repeated cancels remove the source once."""
        deadline.arm(5000)
        deadline.cancel()
        deadline.cancel()

        assert deadline.isArmed() is False
        assert scheduler.timers == {}
        assert len(scheduler.removed) == 1

    def test_cancel_unarmed_does_nothing(self, deadline, scheduler) -> None:
        """Cancelling an idle deadline touches no source."""
        deadline.cancel()
        assert scheduler.removed == []

    def test_expiry_fires_once_and_disarms(self, deadline, scheduler, expirations) -> None:
        """Expiry runs the callback and leaves the deadline re-armable."""
        deadline.arm(5000)
        scheduler.timer_fire()

        assert expirations == [1]
        assert deadline.isArmed() is False

        deadline.arm(1000)
        assert scheduler.armed_timeouts() == [1000]

    def test_cancel_after_expiry_removes_nothing(self, deadline, scheduler) -> None:
        """The fired source is not removed a second time."""
        deadline.arm(5000)
        scheduler.timer_fire()
        deadline.cancel()
        assert scheduler.removed == []

    def test_callback_sees_disarmed_deadline(self, scheduler) -> None:
        """The expiry callback runs with the deadline already disarmed."""
        seen: list[bool] = []
        deadline = RequestDeadline(scheduler, lambda: seen.append(deadline.isArmed()))
        deadline.arm(5000)
        scheduler.timer_fire()
        assert seen == [False]
