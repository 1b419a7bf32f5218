"""
GeoClue2 Client session lifecycle.

This module owns the remote Client handle through its whole life:
create -> configure -> start -> running -> stop -> destroyed. Remote calls
are asynchronous; each completion is matched against the handle it was
issued for (generation + validity) so late replies for a retired session
are discarded. Any remote failure tears the handle down and returns the
machine to ABSENT; the next `session_ensureStarted()` builds a fresh one.
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from geoclue2source.bus.contracts import RemoteCallError, RemoteSessionProtocol
from geoclue2source.common.identity import ConfigurationError
from geoclue2source.common.types import (
    Coordinate,
    PositionSnapshot,
    RemoteLocationFields,
    SessionConfig,
    SessionHandle,
    SessionState,
    SourceError,
)
from geoclue2source.source.deadline import RequestDeadline

__all__ = [
    "ClientSessionController",
    "SessionCallbacks",
    "positionSnapshot_fromLocationFields",
]

logger = logging.getLogger(__name__)

_LOWEST_DOUBLE: float = -sys.float_info.max


@dataclass
class SessionCallbacks:
    """
    Callback bundle connecting the controller to its owner.

    Attributes:
        updatesWanted_check:
            True while continuous updates run or a one-shot request is pending.
        sessionConfig_build:
            Produce the Client configuration; raises ConfigurationError when
            the desktop id cannot be resolved.
        position_deliver:
            Receive a freshly normalized position.
        error_report:
            Receive a coarse error kind.
        leg_end:
            Called after a location fix or timeout has ended the active leg.
    """

    updatesWanted_check: Callable[[], bool]
    sessionConfig_build: Callable[[], SessionConfig]
    position_deliver: Callable[[PositionSnapshot], None]
    error_report: Callable[[SourceError], None]
    leg_end: Callable[[], None]


def positionSnapshot_fromLocationFields(
    fields: RemoteLocationFields,
    now: Optional[datetime] = None,
) -> PositionSnapshot:
    """
    Normalize raw Location properties into a position snapshot.

    Args:
        fields:
            Properties read from a Location object.
        now:
            Substitute for a missing or out-of-range service timestamp
            (defaults to current UTC time).

    Returns:
        Snapshot with altitude/speed/heading only where provided.
    """
    altitude: Optional[float] = fields.altitude if fields.altitude > _LOWEST_DOUBLE else None
    coordinate = Coordinate(latitude=fields.latitude, longitude=fields.longitude, altitude=altitude)

    timestamp: Optional[datetime] = None
    if fields.timestamp_sec != 0 or fields.timestamp_usec != 0:
        try:
            timestamp = datetime.fromtimestamp(fields.timestamp_sec, tz=timezone.utc) + timedelta(
                milliseconds=fields.timestamp_usec // 1000
            )
        except (ValueError, OverflowError, OSError) as exc:
            logger.warning(
                "Ignoring unrepresentable location timestamp (%d, %d): %s",
                fields.timestamp_sec,
                fields.timestamp_usec,
                exc,
            )
    if timestamp is None:
        timestamp = now if now is not None else datetime.now(timezone.utc)

    return PositionSnapshot(
        coordinate=coordinate,
        timestamp=timestamp,
        horizontal_accuracy=fields.accuracy,
        ground_speed=fields.speed if fields.speed >= 0.0 else None,
        direction=fields.heading if fields.heading >= 0.0 else None,
    )


class ClientSessionController:
    """State machine around one GeoClue2 Client object."""

    def __init__(
        self,
        remote: RemoteSessionProtocol,
        deadline: RequestDeadline,
        callbacks: SessionCallbacks,
    ) -> None:
        """
        Initialize controller in ABSENT state.

        Args:
            remote: GeoClue2 remote-object wrapper
            deadline: One-shot request deadline (cancelled on every fix)
            callbacks: Owner callback bundle
        """
        self._remote: RemoteSessionProtocol = remote
        self._deadline: RequestDeadline = deadline
        self._callbacks: SessionCallbacks = callbacks

        self._state: SessionState = SessionState.ABSENT
        self._handle: Optional[SessionHandle] = None
        self._generation: int = 0
        self._start_in_flight: bool = False
        self._fetch_in_flight: bool = False
        self._restart_pending: bool = False

    @property
    def state(self) -> SessionState:
        """Current lifecycle state"""
        return self._state

    @property
    def handle(self) -> Optional[SessionHandle]:
        """Current Client handle, if any"""
        return self._handle

    # =========================================================================
    # Transitions requested by the owner
    # =========================================================================

    def session_ensureStarted(self) -> None:
        """Make sure a started Client exists while updates are wanted."""
        if not self._callbacks.updatesWanted_check():
            logger.debug("[SESSION] Start skipped, no updates wanted")
            return

        if self._state in (SessionState.ABSENT, SessionState.ERROR):
            self._session_create()
        elif self._state is SessionState.ACTIVE_IDLE:
            if self._start_in_flight:
                logger.debug("[SESSION] Start already in flight")
                return
            assert self._handle is not None
            self._session_start(self._handle)
        elif self._state is SessionState.STOPPING:
            logger.debug("[SESSION] Restart queued behind pending stop")
            self._restart_pending = True
        else:
            logger.debug("[SESSION] Already %s", self._state.value)

    def session_ensureStopped(self) -> None:
        """Stop and destroy the Client, if one is active."""
        if self._state is SessionState.STOPPING:
            self._restart_pending = False
            return
        if self._state not in (SessionState.ACTIVE_IDLE, SessionState.ACTIVE_STARTED):
            logger.debug("[SESSION] Stop skipped in state %s", self._state.value)
            return

        handle = self._handle
        assert handle is not None
        self._state_set(SessionState.STOPPING)
        self._restart_pending = False
        self._remote.session_stop(
            handle, lambda _result, error: self._stopped_handle(handle, error)
        )

    def session_reconfigure(self) -> None:
        """Push fresh configuration onto an existing Client."""
        handle = self._handle
        if handle is None or self._state not in (SessionState.ACTIVE_IDLE, SessionState.ACTIVE_STARTED):
            return
        try:
            config: SessionConfig = self._callbacks.sessionConfig_build()
        except ConfigurationError as exc:
            logger.critical("Unable to configure the client: %s", exc)
            self._callbacks.error_report(SourceError.ACCESS_ERROR)
            return

        def _reconfigured(_result: object, error: Optional[RemoteCallError]) -> None:
            if error is not None:
                logger.warning(
                    "Unable to reconfigure the client %s: %s %s",
                    handle.object_path,
                    error.name,
                    error.message,
                )

        self._remote.session_configure(handle, config, _reconfigured)

    def session_teardown(self) -> None:
        """Retire everything immediately; used when the owner shuts down."""
        self._generation += 1
        self._restart_pending = False
        handle = self._handle
        if handle is not None and self._state in (SessionState.ACTIVE_IDLE, SessionState.ACTIVE_STARTED):
            self._remote.session_stop(handle, self._teardownStop_log)
        self._handle_destroy()
        self._state_set(SessionState.ABSENT)

    def deadlineExpiry_handle(self) -> None:
        """React to an elapsed one-shot request deadline."""
        logger.info("[REQUEST] Request update timeout occurred")
        self._callbacks.error_report(SourceError.UNKNOWN_SOURCE_ERROR)
        if not self._callbacks.updatesWanted_check():
            self.session_ensureStopped()
        self._callbacks.leg_end()

    # =========================================================================
    # Creation / configuration / start
    # =========================================================================

    def _session_create(self) -> None:
        """ABSENT -> CREATING."""
        try:
            self._callbacks.sessionConfig_build()
        except ConfigurationError as exc:
            logger.critical("Unable to configure the client: %s", exc)
            self._session_fail(None)
            return

        self._generation += 1
        generation: int = self._generation
        self._state_set(SessionState.CREATING)
        self._remote.session_create(
            lambda result, error: self._created_handle(generation, result, error)
        )

    def _created_handle(
        self, generation: int, object_path: object, error: Optional[RemoteCallError]
    ) -> None:
        """Completion of Manager.GetClient()."""
        if generation != self._generation or self._state is not SessionState.CREATING:
            logger.debug("[SESSION] Discarding stale client creation (generation %d)", generation)
            if error is None and object_path:
                self._remote.session_destroy(SessionHandle(str(object_path), generation, valid=False))
            return

        if error is not None:
            logger.warning("Unable to obtain the client: %s %s", error.name, error.message)
            self._session_fail(None)
            return

        handle = SessionHandle(object_path=str(object_path), generation=generation)
        self._handle = handle
        logger.info("[SESSION] Client created at %s", handle.object_path)
        self._remote.locationUpdated_subscribe(
            handle, lambda old_path, new_path: self._locationUpdated_handle(handle, old_path, new_path)
        )
        self._session_configure(handle)

    def _session_configure(self, handle: SessionHandle) -> None:
        """Apply configuration; success enters ACTIVE_IDLE."""
        try:
            config: SessionConfig = self._callbacks.sessionConfig_build()
        except ConfigurationError as exc:
            logger.critical("Unable to configure the client: %s", exc)
            self._session_fail(handle)
            return

        def _configured(_result: object, error: Optional[RemoteCallError]) -> None:
            if not self._handle_isCurrent(handle) or self._state is not SessionState.CREATING:
                logger.debug("[SESSION] Discarding configure reply for %s", handle.object_path)
                return
            if error is not None:
                logger.critical("Unable to configure the client: %s %s", error.name, error.message)
                self._session_fail(handle)
                return

            self._state_set(SessionState.ACTIVE_IDLE)
            if self._callbacks.updatesWanted_check():
                self._session_start(handle)
            else:
                self.session_ensureStopped()

        self._remote.session_configure(handle, config, _configured)

    def _session_start(self, handle: SessionHandle) -> None:
        """Issue Client.Start() from ACTIVE_IDLE."""
        self._start_in_flight = True
        self._remote.session_start(handle, lambda _result, error: self._started_handle(handle, error))

    def _started_handle(self, handle: SessionHandle, error: Optional[RemoteCallError]) -> None:
        """Completion of Client.Start()."""
        if not self._handle_isCurrent(handle) or self._state is not SessionState.ACTIVE_IDLE:
            logger.debug("[SESSION] Discarding start reply for %s", handle.object_path)
            return
        self._start_in_flight = False

        if error is not None:
            logger.critical("Unable to start the client: %s %s", error.name, error.message)
            self._session_fail(handle)
            return

        logger.debug("[SESSION] Client successfully started")
        self._state_set(SessionState.ACTIVE_STARTED)

        location_path: str = self._remote.currentLocationPath_get(handle)
        if not location_path or location_path == "/":
            return
        self._locationUpdated_handle(handle, "", location_path)

    # =========================================================================
    # Location updates
    # =========================================================================

    def _locationUpdated_handle(self, handle: SessionHandle, old_path: str, new_path: str) -> None:
        """LocationUpdated signal (or synthesized one after start)."""
        if not self._handle_isCurrent(handle) or self._state is not SessionState.ACTIVE_STARTED:
            logger.debug("[SESSION] Ignoring location update for inactive client %s", handle.object_path)
            return

        self._deadline.cancel()
        if self._fetch_in_flight:
            logger.debug("[SESSION] Location fetch already in flight, ignoring %s", new_path)
            return

        logger.debug("[SESSION] Old location object path: %s", old_path)
        logger.debug("[SESSION] New location object path: %s", new_path)

        self._fetch_in_flight = True
        self._remote.location_fetch(
            new_path, lambda result, error: self._locationFetched_handle(handle, result, error)
        )

    def _locationFetched_handle(
        self, handle: SessionHandle, fields: object, error: Optional[RemoteCallError]
    ) -> None:
        """Completion of a Location object read."""
        if not self._handle_isCurrent(handle):
            logger.debug("[SESSION] Discarding location for retired client %s", handle.object_path)
            return
        self._fetch_in_flight = False

        if error is not None:
            logger.error("Unable to create the location object: %s %s", error.name, error.message)
        else:
            assert isinstance(fields, RemoteLocationFields)
            snapshot: PositionSnapshot = positionSnapshot_fromLocationFields(fields)
            logger.debug("[SESSION] New position: %s", snapshot)
            self._callbacks.position_deliver(snapshot)

        self.session_ensureStopped()
        self._callbacks.leg_end()

    # =========================================================================
    # Stop / failure / destruction
    # =========================================================================

    def _stopped_handle(self, handle: SessionHandle, error: Optional[RemoteCallError]) -> None:
        """Completion of Client.Stop(); the handle goes away either way."""
        if handle is not self._handle or self._state is not SessionState.STOPPING:
            logger.debug("[SESSION] Discarding stop reply for %s", handle.object_path)
            return

        if error is None:
            logger.debug("[SESSION] Client successfully stopped")
        else:
            logger.critical("Unable to stop the client: %s %s", error.name, error.message)

        self._handle_destroy()
        self._state_set(SessionState.ABSENT)
        if error is not None:
            self._callbacks.error_report(SourceError.ACCESS_ERROR)

        if self._restart_pending:
            self._restart_pending = False
            self.session_ensureStarted()

    def _session_fail(self, handle: Optional[SessionHandle]) -> None:
        """Tear down after a failed remote step and report ACCESS_ERROR."""
        self._state_set(SessionState.ERROR)
        if handle is not None:
            self._handle_destroy()
        self._state_set(SessionState.ABSENT)
        self._callbacks.error_report(SourceError.ACCESS_ERROR)

    def _handle_destroy(self) -> None:
        """Invalidate and drop the current handle."""
        handle = self._handle
        self._handle = None
        self._start_in_flight = False
        self._fetch_in_flight = False
        if handle is None:
            return
        handle.invalidate()
        self._remote.session_destroy(handle)
        logger.debug("[SESSION] Client %s destroyed", handle.object_path)

    def _handle_isCurrent(self, handle: SessionHandle) -> bool:
        """Check that a completion still refers to the live handle."""
        return handle is self._handle and handle.valid

    def _state_set(self, state: SessionState) -> None:
        """Record a transition."""
        if state is self._state:
            return
        logger.debug("[STATE] %s -> %s", self._state.value.upper(), state.value.upper())
        self._state = state

    @staticmethod
    def _teardownStop_log(_result: object, error: Optional[RemoteCallError]) -> None:
        """Log the outcome of a Stop() issued during teardown."""
        if error is not None:
            logger.warning("Unable to stop the client during shutdown: %s %s", error.name, error.message)
