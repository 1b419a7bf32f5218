"""
Main-context scheduling.

Every state transition, remote-call completion and timer expiry runs on the
GLib main context. GLibScheduler implements SchedulerProtocol on top of the
default GLib main context.
"""

from __future__ import annotations

from typing import Callable

from gi.repository import GLib

__all__ = ["GLibScheduler"]


class GLibScheduler:
    """Scheduler backed by the default GLib main context."""

    def idle_schedule(self, callback: Callable[[], None]) -> None:
        """
        Queue callback for the next main-loop iteration.

        Args:
            callback: Zero-argument callable
        """

        def _dispatch() -> bool:
            callback()
            return GLib.SOURCE_REMOVE

        GLib.idle_add(_dispatch)

    def timeout_schedule(self, timeout_ms: int, callback: Callable[[], None]) -> int:
        """
        Arm a single-shot GLib timeout.

        Args:
            timeout_ms: Delay in milliseconds
            callback: Zero-argument callable

        Returns:
            GLib source id
        """

        def _dispatch() -> bool:
            callback()
            return GLib.SOURCE_REMOVE

        return GLib.timeout_add(timeout_ms, _dispatch)

    def source_remove(self, source_id: int) -> None:
        """
        Remove a GLib source.

        Args:
            source_id: Id returned by timeout_schedule()
        """
        GLib.source_remove(source_id)
