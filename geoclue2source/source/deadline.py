"""Single-shot request deadline"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from geoclue2source.bus.contracts import SchedulerProtocol
from geoclue2source.common.settings import settings

__all__ = ["RequestDeadline"]

logger = logging.getLogger(__name__)


class RequestDeadline:
    """
    One countdown bounding a one-shot position request.

    Expiry runs on the scheduler's main context, never concurrently with
    other transitions, and fires at most once per arm().
    """

    def __init__(self, scheduler: SchedulerProtocol, on_expired: Callable[[], None]) -> None:
        """
        Initialize deadline.

        Args:
            scheduler: Main-context scheduler
            on_expired: Called once when an armed deadline elapses
        """
        self._scheduler: SchedulerProtocol = scheduler
        self._on_expired: Callable[[], None] = on_expired
        self._source_id: Optional[int] = None
        self._timeout_ms: int = 0

    @staticmethod
    def timeout_resolve(timeout_ms: int) -> int:
        """
        Substitute the cold-start default for a zero timeout.

        Args:
            timeout_ms: Caller-supplied timeout

        Returns:
            Effective timeout in milliseconds
        """
        return timeout_ms if timeout_ms else settings.UPDATE_TIMEOUT_COLD_START_MS

    def isArmed(self) -> bool:
        """Check if a countdown is running"""
        return self._source_id is not None

    @property
    def timeout_ms(self) -> int:
        """Timeout of the current (or most recent) arm"""
        return self._timeout_ms

    def arm(self, timeout_ms: int) -> None:
        """
        Start the countdown.

        Args:
            timeout_ms: Timeout; 0 selects the cold-start default

        Raises:
            RuntimeError: If already armed
        """
        if self.isArmed():
            raise RuntimeError("Request deadline is already armed")
        self._timeout_ms = RequestDeadline.timeout_resolve(timeout_ms)
        self._source_id = self._scheduler.timeout_schedule(self._timeout_ms, self._expired_handle)
        logger.debug("[REQUEST] Deadline armed for %d ms", self._timeout_ms)

    def cancel(self) -> None:
        """Stop the countdown; no-op when not armed"""
        if self._source_id is None:
            return
        self._scheduler.source_remove(self._source_id)
        self._source_id = None
        logger.debug("[REQUEST] Deadline cancelled")

    def _expired_handle(self) -> None:
        """Scheduler callback for an elapsed countdown."""
        if self._source_id is None:
            return
        self._source_id = None
        logger.debug("[REQUEST] Deadline of %d ms elapsed", self._timeout_ms)
        self._on_expired()
