"""
GeoClue2 position source.

Caller-facing controller: tracks whether continuous updates are running and
whether a one-shot request is pending, maps method preferences onto GeoClue2
accuracy levels, keeps (and persists) the last known position, and reports
positions and errors through connected callbacks.

Usage:
    source = PositionSource(RemoteSessionProxy(), GLibScheduler(), resolver)
    source.positionUpdated_connect(lambda snapshot: print(snapshot))
    source.error_connect(lambda kind: print(kind))
    source.startUpdates()
    GLib.MainLoop().run()
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from geoclue2source.bus.contracts import RemoteCallError, RemoteSessionProtocol, SchedulerProtocol
from geoclue2source.common.accuracy import accuracyLevel_fromMethods, supportedMethods_fromAccuracyLevel
from geoclue2source.common.identity import DesktopIdResolver
from geoclue2source.common.settings import settings
from geoclue2source.common.types import (
    PositioningMethods,
    PositionSnapshot,
    SessionConfig,
    SourceError,
)
from geoclue2source.source.deadline import RequestDeadline
from geoclue2source.source.session_controller import ClientSessionController, SessionCallbacks
from geoclue2source.storage.position_store import PersistedPositionStore

__all__ = ["PositionSource", "PositionCallback", "ErrorCallback"]

logger = logging.getLogger(__name__)

PositionCallback = Callable[[PositionSnapshot], None]
ErrorCallback = Callable[[SourceError], None]


class PositionSource:
    """Position source backed by the GeoClue2 system service."""

    def __init__(
        self,
        remote: RemoteSessionProtocol,
        scheduler: SchedulerProtocol,
        desktop_id_resolver: DesktopIdResolver,
        store: Optional[PersistedPositionStore] = None,
    ) -> None:
        """
        Initialize source and restore the persisted last position.

        Args:
            remote: GeoClue2 remote-object wrapper
            scheduler: Main-context scheduler
            desktop_id_resolver: Resolves the application desktop id
            store: Last-position store (defaults to the per-user data file)
        """
        self._remote: RemoteSessionProtocol = remote
        self._scheduler: SchedulerProtocol = scheduler
        self._desktop_id_resolver: DesktopIdResolver = desktop_id_resolver
        self._store: PersistedPositionStore = store if store is not None else PersistedPositionStore()

        self._update_interval_ms: int = 0
        self._preferred_methods: PositioningMethods = PositioningMethods.ALL
        self._running: bool = False
        self._error: SourceError = SourceError.NO_ERROR
        self._position_callbacks: list[PositionCallback] = []
        self._error_callbacks: list[ErrorCallback] = []

        self._deadline: RequestDeadline = RequestDeadline(scheduler, self._requestDeadline_expired)
        self._controller: ClientSessionController = ClientSessionController(
            remote,
            self._deadline,
            SessionCallbacks(
                updatesWanted_check=self._updatesWanted_check,
                sessionConfig_build=self._sessionConfig_build,
                position_deliver=self._position_deliver,
                error_report=self._error_set,
                leg_end=self._leg_end,
            ),
        )

        restored: Optional[PositionSnapshot] = self._store.load()
        self._last_position: PositionSnapshot = restored if restored is not None else PositionSnapshot.invalid()

    # =========================================================================
    # Notification channels
    # =========================================================================

    def positionUpdated_connect(self, callback: PositionCallback) -> None:
        """Register a position-updated callback."""
        self._position_callbacks.append(callback)

    def error_connect(self, callback: ErrorCallback) -> None:
        """Register an error callback."""
        self._error_callbacks.append(callback)

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def controller(self) -> ClientSessionController:
        """Underlying Client session controller"""
        return self._controller

    @property
    def running(self) -> bool:
        """True while continuous updates are requested"""
        return self._running

    def updateInterval(self) -> int:
        """Requested update interval in milliseconds"""
        return self._update_interval_ms

    def setUpdateInterval(self, msec: int) -> None:
        """
        Set the update interval and push it onto an active Client.

        Values below the minimum interval are raised to it; 0 or negative
        means "no preference".

        Args:
            msec: Interval in milliseconds
        """
        self._update_interval_ms = 0 if msec <= 0 else max(msec, self.minimumUpdateInterval())
        self._controller.session_reconfigure()

    def preferredPositioningMethods(self) -> PositioningMethods:
        """Preferred positioning methods"""
        return self._preferred_methods

    def setPreferredPositioningMethods(self, methods: PositioningMethods) -> None:
        """
        Set the method preference and push it onto an active Client.

        Args:
            methods: Preferred positioning methods
        """
        self._preferred_methods = PositioningMethods(methods)
        self._controller.session_reconfigure()

    def minimumUpdateInterval(self) -> int:
        """Shortest supported update interval in milliseconds"""
        return settings.MINIMUM_UPDATE_INTERVAL_MS

    def error(self) -> SourceError:
        """Most recent error kind"""
        return self._error

    def lastKnownPosition(self, fromSatellitePositioningMethodsOnly: bool = False) -> PositionSnapshot:
        """
        Most recent position, valid or not.

        Args:
            fromSatellitePositioningMethodsOnly: Accepted for API parity; ignored

        Returns:
            Last delivered (or restored) snapshot
        """
        return self._last_position

    def supportedPositioningMethods(self) -> PositioningMethods:
        """
        Methods the service can currently satisfy.

        Returns:
            Mapped AvailableAccuracyLevel; NONE (plus ACCESS_ERROR) when the
            property cannot be read
        """
        try:
            level: int = self._remote.availableAccuracyLevel_get()
        except RemoteCallError as exc:
            logger.warning("Unable to read AvailableAccuracyLevel: %s %s", exc.name, exc.message)
            self._error_set(SourceError.ACCESS_ERROR)
            return PositioningMethods.NONE
        return supportedMethods_fromAccuracyLevel(level)

    # =========================================================================
    # Update control
    # =========================================================================

    def startUpdates(self) -> None:
        """Begin continuous updates; replays a cached position asynchronously."""
        if self._running:
            logger.debug("Already running")
            return

        logger.debug("Starting updates")
        self._error = SourceError.NO_ERROR
        self._running = True
        self._controller.session_ensureStarted()

        if self._last_position.isValid():
            cached: PositionSnapshot = self._last_position
            self._scheduler.idle_schedule(lambda: self._positionUpdated_emit(cached))

    def stopUpdates(self) -> None:
        """End continuous updates; a pending one-shot request keeps the Client alive."""
        if not self._running:
            logger.debug("Already stopped")
            return

        logger.debug("Stopping updates")
        self._running = False
        if not self._deadline.isArmed():
            self._controller.session_ensureStopped()

    def requestUpdate(self, timeout_ms: int = 0) -> None:
        """
        Request a single position within timeout_ms.

        Args:
            timeout_ms: Deadline in milliseconds; 0 selects the cold-start default
        """
        if self._deadline.isArmed():
            logger.debug("Request timer was active, ignoring requestUpdate")
            return

        self._error = SourceError.NO_ERROR

        if timeout_ms != 0 and timeout_ms < self.minimumUpdateInterval():
            logger.debug("Rejecting request timeout of %d ms", timeout_ms)
            self._error_set(SourceError.UNKNOWN_SOURCE_ERROR)
            return

        self._deadline.arm(timeout_ms)
        self._controller.session_ensureStarted()

    def close(self) -> None:
        """Stop everything, tear down the Client and persist the last position."""
        self._running = False
        self._deadline.cancel()
        self._controller.session_teardown()
        self._store.save(self._last_position)

    # =========================================================================
    # Session controller callbacks
    # =========================================================================

    def _updatesWanted_check(self) -> bool:
        """Continuous updates running or a one-shot request pending."""
        return self._running or self._deadline.isArmed()

    def _sessionConfig_build(self) -> SessionConfig:
        """Current Client configuration (raises ConfigurationError)."""
        return SessionConfig(
            desktop_id=self._desktop_id_resolver.desktopId_resolve(),
            time_threshold_sec=max(self._update_interval_ms, 0) // 1000,
            accuracy_level=accuracyLevel_fromMethods(self._preferred_methods),
        )

    def _position_deliver(self, snapshot: PositionSnapshot) -> None:
        """Record, persist and announce a new position."""
        self._last_position = snapshot
        self._store.save(snapshot)
        self._positionUpdated_emit(snapshot)

    def _leg_end(self) -> None:
        """Begin the next leg while continuous updates are running."""
        if self._running:
            self._controller.session_ensureStarted()

    def _requestDeadline_expired(self) -> None:
        """Deadline expiry, forwarded to the controller."""
        self._controller.deadlineExpiry_handle()

    # =========================================================================
    # Emission
    # =========================================================================

    def _error_set(self, kind: SourceError) -> None:
        """Store the latest error; notify unless it is NO_ERROR."""
        self._error = kind
        if kind is not SourceError.NO_ERROR:
            for callback in list(self._error_callbacks):
                callback(kind)

    def _positionUpdated_emit(self, snapshot: PositionSnapshot) -> None:
        """Notify position callbacks."""
        for callback in list(self._position_callbacks):
            callback(snapshot)
