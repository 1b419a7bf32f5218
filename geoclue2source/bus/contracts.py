"""Contracts between the position source and its bus/main-loop backends."""

from __future__ import annotations

from typing import Callable, Optional, Protocol

from geoclue2source.common.types import SessionConfig, SessionHandle

__all__ = [
    "CompletionCallback",
    "LocationUpdatedHandler",
    "RemoteCallError",
    "RemoteSessionProtocol",
    "SchedulerProtocol",
]

CompletionCallback = Callable[[object, Optional["RemoteCallError"]], None]
LocationUpdatedHandler = Callable[[str, str], None]


class RemoteCallError(Exception):
    """Bus-level or service-level rejection of a remote call."""

    def __init__(self, name: str, message: str) -> None:
        """
        Initialize error.

        Args:
            name: D-Bus error name
            message: Human-readable error message
        """
        super().__init__(f"{name}: {message}")
        self.name: str = name
        self.message: str = message


class RemoteSessionProtocol(Protocol):
    """Remote Manager/Client/Location operations used by the session controller."""

    def session_create(self, callback: CompletionCallback) -> None:
        """Obtain a new Client object; result is its object path."""
        ...

    def session_configure(
        self, handle: SessionHandle, config: SessionConfig, callback: CompletionCallback
    ) -> None:
        """Write DesktopId, TimeThreshold and RequestedAccuracyLevel."""
        ...

    def session_start(self, handle: SessionHandle, callback: CompletionCallback) -> None:
        """Call Client.Start()."""
        ...

    def session_stop(self, handle: SessionHandle, callback: CompletionCallback) -> None:
        """Call Client.Stop()."""
        ...

    def session_destroy(self, handle: SessionHandle) -> None:
        """Drop local proxy and signal subscription for handle."""
        ...

    def currentLocationPath_get(self, handle: SessionHandle) -> str:
        """Return the Client's current Location path, or empty string."""
        ...

    def location_fetch(self, object_path: str, callback: CompletionCallback) -> None:
        """Read a Location object; result is RemoteLocationFields."""
        ...

    def locationUpdated_subscribe(
        self, handle: SessionHandle, handler: LocationUpdatedHandler
    ) -> None:
        """Subscribe handler(old_path, new_path) to LocationUpdated."""
        ...

    def availableAccuracyLevel_get(self) -> int:
        """Synchronously read Manager.AvailableAccuracyLevel."""
        ...


class SchedulerProtocol(Protocol):
    """Queued-callback and one-shot timer contract."""

    def idle_schedule(self, callback: Callable[[], None]) -> None:
        """Run callback once, later, on the main context."""
        ...

    def timeout_schedule(self, timeout_ms: int, callback: Callable[[], None]) -> int:
        """Run callback once after timeout_ms; return a source id."""
        ...

    def source_remove(self, source_id: int) -> None:
        """Cancel a pending timeout."""
        ...
