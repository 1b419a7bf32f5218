"""Pytest configuration and shared fixtures for geoclue2source tests

This module provides common fixtures and test doubles used across the unit
tests: a manual main-context scheduler and a scriptable GeoClue2 remote.
"""

import logging
from pathlib import Path
from typing import Callable, Generator, Optional

import pytest

from geoclue2source.bus.contracts import CompletionCallback, LocationUpdatedHandler, RemoteCallError
from geoclue2source.common.identity import DesktopIdResolver
from geoclue2source.common.settings import settings
from geoclue2source.common.types import RemoteLocationFields, SessionConfig, SessionHandle
from geoclue2source.storage.position_store import PersistedPositionStore

CLIENT_PATH_PREFIX = "/org/freedesktop/GeoClue2/Client/"
LOCATION_PATH_PREFIX = "/org/freedesktop/GeoClue2/Location/"


class ManualScheduler:
    """Scheduler double: idle callbacks and timers run only when told to."""

    def __init__(self) -> None:
        """Initialize empty queues."""
        self.idle_queue: list[Callable[[], None]] = []
        self.timers: dict[int, tuple[int, Callable[[], None]]] = {}
        self.removed: list[int] = []
        self._next_id: int = 1

    def idle_schedule(self, callback: Callable[[], None]) -> None:
        """Queue callback."""
        self.idle_queue.append(callback)

    def timeout_schedule(self, timeout_ms: int, callback: Callable[[], None]) -> int:
        """Record timer and return its id."""
        source_id = self._next_id
        self._next_id += 1
        self.timers[source_id] = (timeout_ms, callback)
        return source_id

    def source_remove(self, source_id: int) -> None:
        """Forget timer."""
        self.removed.append(source_id)
        del self.timers[source_id]

    def idle_run(self) -> None:
        """Run queued idle callbacks in order."""
        queue, self.idle_queue = self.idle_queue, []
        for callback in queue:
            callback()

    def timer_fire(self) -> None:
        """Fire the single pending timer."""
        assert len(self.timers) == 1, f"expected one pending timer, have {self.timers}"
        source_id, (_timeout_ms, callback) = next(iter(self.timers.items()))
        del self.timers[source_id]
        callback()

    def armed_timeouts(self) -> list[int]:
        """Timeout values of pending timers."""
        return [timeout_ms for timeout_ms, _callback in self.timers.values()]


class FakeRemoteSession:
    """
    Scriptable GeoClue2 remote.

    Calls are recorded in `calls`. Completions are queued per call kind and
    released with complete(kind), or delivered immediately with
    success when `auto_complete` is set.
    """

    def __init__(self, auto_complete: bool = False) -> None:
        """Initialize fake remote."""
        self.auto_complete: bool = auto_complete
        self.calls: list[tuple] = []
        self.pending: dict[str, list[Callable[..., None]]] = {
            "create": [],
            "configure": [],
            "start": [],
            "stop": [],
            "fetch": [],
        }
        self.handlers: dict[str, LocationUpdatedHandler] = {}
        self.location_path: str = ""
        self.location_fields: Optional[RemoteLocationFields] = location_fields_make()
        self.accuracy_level: int = 8
        self.accuracy_error: Optional[RemoteCallError] = None
        self._next_client: int = 1

    # ---------------------------------------------------------------- protocol

    def session_create(self, callback: CompletionCallback) -> None:
        self.calls.append(("create",))
        path = f"{CLIENT_PATH_PREFIX}{self._next_client}"
        self._next_client += 1
        self._pending_add("create", lambda error=None: callback(None if error else path, error))

    def session_configure(
        self, handle: SessionHandle, config: SessionConfig, callback: CompletionCallback
    ) -> None:
        self.calls.append(("configure", handle.object_path, config))
        self._pending_add("configure", lambda error=None: callback(None, error))

    def session_start(self, handle: SessionHandle, callback: CompletionCallback) -> None:
        self.calls.append(("start", handle.object_path))
        self._pending_add("start", lambda error=None: callback(None, error))

    def session_stop(self, handle: SessionHandle, callback: CompletionCallback) -> None:
        self.calls.append(("stop", handle.object_path))
        self._pending_add("stop", lambda error=None: callback(None, error))

    def session_destroy(self, handle: SessionHandle) -> None:
        self.calls.append(("destroy", handle.object_path))
        self.handlers.pop(handle.object_path, None)

    def currentLocationPath_get(self, handle: SessionHandle) -> str:
        return self.location_path

    def location_fetch(self, object_path: str, callback: CompletionCallback) -> None:
        self.calls.append(("fetch", object_path))
        self._pending_add(
            "fetch",
            lambda error=None: callback(None if error else self.location_fields, error),
        )

    def locationUpdated_subscribe(
        self, handle: SessionHandle, handler: LocationUpdatedHandler
    ) -> None:
        self.calls.append(("subscribe", handle.object_path))
        self.handlers[handle.object_path] = handler

    def availableAccuracyLevel_get(self) -> int:
        if self.accuracy_error is not None:
            raise self.accuracy_error
        return self.accuracy_level

    # ----------------------------------------------------------------- helpers

    def _pending_add(self, kind: str, completion: Callable[..., None]) -> None:
        if self.auto_complete:
            completion()
        else:
            self.pending[kind].append(completion)

    def complete(self, kind: str, error: Optional[RemoteCallError] = None) -> None:
        """Release the oldest pending completion of one kind."""
        assert self.pending[kind], f"no pending {kind} call"
        self.pending[kind].pop(0)(error)

    def locationUpdated_emit(self, client_path: str, new_index: int = 1, old_path: str = "/") -> None:
        """Fire LocationUpdated on a subscribed client."""
        self.handlers[client_path](old_path, f"{LOCATION_PATH_PREFIX}{new_index}")

    def call_kinds(self) -> list[str]:
        """Names of recorded calls, in order."""
        return [call[0] for call in self.calls]

    def count(self, kind: str) -> int:
        """Number of recorded calls of one kind."""
        return self.call_kinds().count(kind)


def location_fields_make(
    latitude: float = 52.5,
    longitude: float = 13.4,
    altitude: float = 34.0,
    accuracy: float = 25.0,
    speed: float = -1.0,
    heading: float = -1.0,
    timestamp_sec: int = 1700000000,
    timestamp_usec: int = 250000,
) -> RemoteLocationFields:
    """Build Location properties with sensible defaults."""
    return RemoteLocationFields(
        latitude=latitude,
        longitude=longitude,
        altitude=altitude,
        accuracy=accuracy,
        speed=speed,
        heading=heading,
        timestamp_sec=timestamp_sec,
        timestamp_usec=timestamp_usec,
    )


@pytest.fixture
def scheduler() -> ManualScheduler:
    """Manual main-context scheduler"""
    return ManualScheduler()


@pytest.fixture
def remote() -> FakeRemoteSession:
    """Scriptable remote with manually released completions"""
    return FakeRemoteSession()


@pytest.fixture
def resolver() -> DesktopIdResolver:
    """Resolver that always yields a fixed desktop id"""
    return DesktopIdResolver(application_name="org.example.Tests", environ={})


@pytest.fixture
def store(tmp_path: Path) -> PersistedPositionStore:
    """Position store backed by a temporary file"""
    return PersistedPositionStore(tmp_path / "qtposition-geoclue2")


@pytest.fixture
def reset_settings() -> Generator[None, None, None]:
    """Reset settings singleton between tests"""
    settings._config = None
    yield
    settings._config = None


@pytest.fixture(autouse=True)
def setup_logging(caplog):
    """Setup logging for tests"""
    caplog.set_level(logging.DEBUG)


@pytest.fixture
def make_location_fields() -> Callable[..., RemoteLocationFields]:
    """Factory for Location properties"""
    return location_fields_make


def pytest_configure(config) -> None:
    """Register custom pytest markers used by this test suite."""
    config.addinivalue_line(
        "markers",
        "requires_dbus: mark test as requiring a running GeoClue2 service on the system bus",
    )
