"""
GeoClue2 remote objects over D-Bus.

This module wraps the three GeoClue2 objects the position source talks to:
the Manager (hands out per-application Client objects), the Client
(configurable session that starts/stops tracking and emits
`LocationUpdated`) and the Location snapshot objects. Every call is issued
asynchronously on the system bus through `Gio.DBusProxy`; completions are
delivered on the GLib main context as `callback(result, error)`.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from gi.repository import Gio, GLib

from geoclue2source.bus.contracts import (
    CompletionCallback,
    LocationUpdatedHandler,
    RemoteCallError,
)
from geoclue2source.common.settings import settings
from geoclue2source.common.types import RemoteLocationFields, SessionConfig, SessionHandle

__all__ = ["RemoteSessionProxy", "remoteCallError_fromGLib"]

logger = logging.getLogger(__name__)

ManagerCallback = Callable[[Optional[Gio.DBusProxy], Optional[RemoteCallError]], None]


def remoteCallError_fromGLib(exc: GLib.Error) -> RemoteCallError:
    """
    Convert a GLib error raised by Gio into a RemoteCallError.

    Args:
        exc: Error raised by a Gio D-Bus call

    Returns:
        Equivalent RemoteCallError carrying the D-Bus error name
    """
    message: str = exc.message or ""
    name: Optional[str] = Gio.DBusError.get_remote_error(exc)
    if name:
        prefix: str = f"GDBus.Error:{name}: "
        if message.startswith(prefix):
            message = message[len(prefix):]
    else:
        name = f"{exc.domain}.{exc.code}"
    return RemoteCallError(name, message)


class RemoteSessionProxy:
    """Stateless-per-call wrapper around the GeoClue2 D-Bus objects."""

    _LOCATION_PROPERTIES: tuple[str, ...] = (
        "Latitude",
        "Longitude",
        "Altitude",
        "Accuracy",
        "Speed",
        "Heading",
        "Timestamp",
    )

    def __init__(self, bus_type: Gio.BusType = Gio.BusType.SYSTEM) -> None:
        """
        Initialize proxy wrapper.

        The Manager proxy is created lazily on first use so constructing a
        position source never touches the bus.

        Args:
            bus_type: Bus hosting GeoClue2 (system bus in production)
        """
        self._bus_type: Gio.BusType = bus_type
        self._manager: Optional[Gio.DBusProxy] = None
        self._clients: dict[str, Gio.DBusProxy] = {}
        self._manager_waiters: list[ManagerCallback] = []

    # -------------------------------------------------------------------------
    # Manager
    # -------------------------------------------------------------------------

    def _manager_request(self, callback: ManagerCallback) -> None:
        """
        Deliver the Manager proxy, building it asynchronously on first use.

        Requests arriving while the proxy is being built share that build.

        Args:
            callback: Receives (proxy, None) or (None, RemoteCallError)
        """
        if self._manager is not None:
            callback(self._manager, None)
            return

        self._manager_waiters.append(callback)
        if len(self._manager_waiters) > 1:
            return

        def _manager_ready(_source: object, result: Gio.AsyncResult, *_user_data: object) -> None:
            waiters, self._manager_waiters = self._manager_waiters, []
            try:
                manager = Gio.DBusProxy.new_for_bus_finish(result)
            except GLib.Error as exc:
                error = remoteCallError_fromGLib(exc)
                logger.warning("Unable to reach the GeoClue2 manager: %s %s", error.name, error.message)
                for waiter in waiters:
                    waiter(None, error)
                return
            if self._manager is None:
                self._manager = manager
            for waiter in waiters:
                waiter(self._manager, None)

        Gio.DBusProxy.new_for_bus(
            self._bus_type,
            Gio.DBusProxyFlags.DO_NOT_LOAD_PROPERTIES,
            None,
            settings.SERVICE_NAME,
            settings.MANAGER_PATH,
            settings.MANAGER_INTERFACE,
            None,
            _manager_ready,
            None,
        )

    def _manager_get(self) -> Gio.DBusProxy:
        """
        Return the Manager proxy, creating it synchronously on first use.

        Only the synchronous capability query goes through here.

        Raises:
            RemoteCallError: If the bus or service is unreachable
        """
        if self._manager is None:
            try:
                self._manager = Gio.DBusProxy.new_for_bus_sync(
                    self._bus_type,
                    Gio.DBusProxyFlags.DO_NOT_LOAD_PROPERTIES,
                    None,
                    settings.SERVICE_NAME,
                    settings.MANAGER_PATH,
                    settings.MANAGER_INTERFACE,
                    None,
                )
            except GLib.Error as exc:
                raise remoteCallError_fromGLib(exc) from exc
        return self._manager

    def availableAccuracyLevel_get(self) -> int:
        """
        Read the accuracy ceiling the service currently offers.

        Returns:
            Raw AvailableAccuracyLevel value

        Raises:
            RemoteCallError: If the property read fails
        """
        manager = self._manager_get()
        try:
            reply = manager.call_sync(
                f"{settings.PROPERTIES_INTERFACE}.Get",
                GLib.Variant("(ss)", (settings.MANAGER_INTERFACE, "AvailableAccuracyLevel")),
                Gio.DBusCallFlags.NONE,
                settings.DBUS_CALL_TIMEOUT_MS,
                None,
            )
        except GLib.Error as exc:
            raise remoteCallError_fromGLib(exc) from exc

        (value,) = reply.unpack()
        try:
            return int(value)
        except (TypeError, ValueError) as exc:
            raise RemoteCallError(
                "org.freedesktop.DBus.Error.InvalidSignature",
                f"AvailableAccuracyLevel is not an integer: {value!r}",
            ) from exc

    # -------------------------------------------------------------------------
    # Client lifecycle
    # -------------------------------------------------------------------------

    def session_create(self, callback: CompletionCallback) -> None:
        """
        Ask the Manager for a Client object and build a proxy for it.

        Args:
            callback: Receives (object_path, None) or (None, RemoteCallError)
        """

        def _client_ready(_source: object, result: Gio.AsyncResult, *_user_data: object) -> None:
            try:
                client = Gio.DBusProxy.new_finish(result)
            except GLib.Error as exc:
                callback(None, remoteCallError_fromGLib(exc))
                return
            object_path: str = client.get_object_path()
            self._clients[object_path] = client
            callback(object_path, None)

        def _get_client_done(proxy: Gio.DBusProxy, result: Gio.AsyncResult, *_user_data: object) -> None:
            try:
                (object_path,) = proxy.call_finish(result).unpack()
            except GLib.Error as exc:
                callback(None, remoteCallError_fromGLib(exc))
                return
            logger.debug("[SESSION] Client path is: %s", object_path)
            Gio.DBusProxy.new(
                proxy.get_connection(),
                Gio.DBusProxyFlags.NONE,
                None,
                settings.SERVICE_NAME,
                object_path,
                settings.CLIENT_INTERFACE,
                None,
                _client_ready,
                None,
            )

        def _manager_ready(manager: Optional[Gio.DBusProxy], error: Optional[RemoteCallError]) -> None:
            if manager is None:
                callback(None, error)
                return
            manager.call(
                "GetClient",
                None,
                Gio.DBusCallFlags.NONE,
                settings.DBUS_CALL_TIMEOUT_MS,
                None,
                _get_client_done,
                None,
            )

        self._manager_request(_manager_ready)

    def session_configure(
        self, handle: SessionHandle, config: SessionConfig, callback: CompletionCallback
    ) -> None:
        """
        Write Client properties; completes once all writes have answered.

        Args:
            handle: Target Client handle
            config: Settings to apply
            callback: Receives (None, first error or None)
        """
        client = self._client_get(handle, callback)
        if client is None:
            return

        writes: list[tuple[str, GLib.Variant]] = [
            ("DesktopId", GLib.Variant("s", config.desktop_id)),
            ("TimeThreshold", GLib.Variant("u", config.time_threshold_sec)),
            ("RequestedAccuracyLevel", GLib.Variant("u", int(config.accuracy_level))),
        ]
        outstanding: list[int] = [len(writes)]
        first_error: list[Optional[RemoteCallError]] = [None]

        def _write_done(proxy: Gio.DBusProxy, result: Gio.AsyncResult, *_user_data: object) -> None:
            try:
                proxy.call_finish(result)
            except GLib.Error as exc:
                if first_error[0] is None:
                    first_error[0] = remoteCallError_fromGLib(exc)
            outstanding[0] -= 1
            if outstanding[0] == 0:
                callback(None, first_error[0])

        for name, value in writes:
            client.call(
                f"{settings.PROPERTIES_INTERFACE}.Set",
                GLib.Variant("(ssv)", (settings.CLIENT_INTERFACE, name, value)),
                Gio.DBusCallFlags.NONE,
                settings.DBUS_CALL_TIMEOUT_MS,
                None,
                _write_done,
                None,
            )

    def session_start(self, handle: SessionHandle, callback: CompletionCallback) -> None:
        """
        Call Client.Start().

        Args:
            handle: Target Client handle
            callback: Receives (None, error or None)
        """
        self._client_invoke(handle, "Start", callback)

    def session_stop(self, handle: SessionHandle, callback: CompletionCallback) -> None:
        """
        Call Client.Stop().

        Args:
            handle: Target Client handle
            callback: Receives (None, error or None)
        """
        self._client_invoke(handle, "Stop", callback)

    def session_destroy(self, handle: SessionHandle) -> None:
        """
        Forget the local Client proxy and its signal subscription.

        Args:
            handle: Handle being retired
        """
        client = self._clients.pop(handle.object_path, None)
        if client is not None and handle.subscription_id is not None:
            client.disconnect(handle.subscription_id)
        handle.subscription_id = None

    def currentLocationPath_get(self, handle: SessionHandle) -> str:
        """
        Read the Client's cached Location property.

        Args:
            handle: Target Client handle

        Returns:
            Location object path, or "" when the property is unavailable
        """
        client = self._clients.get(handle.object_path)
        if client is None:
            return ""
        value = client.get_cached_property("Location")
        if value is None:
            return ""
        return str(value.unpack())

    def locationUpdated_subscribe(
        self, handle: SessionHandle, handler: LocationUpdatedHandler
    ) -> None:
        """
        Route the Client's LocationUpdated signal to handler.

        Args:
            handle: Target Client handle
            handler: Called as handler(old_path, new_path)
        """
        client = self._clients.get(handle.object_path)
        if client is None:
            return

        def _on_signal(
            _proxy: Gio.DBusProxy,
            _sender: Optional[str],
            signal_name: str,
            parameters: GLib.Variant,
        ) -> None:
            if signal_name != "LocationUpdated":
                return
            old_path, new_path = parameters.unpack()
            handler(str(old_path), str(new_path))

        handle.subscription_id = client.connect("g-signal", _on_signal)

    # -------------------------------------------------------------------------
    # Location
    # -------------------------------------------------------------------------

    def location_fetch(self, object_path: str, callback: CompletionCallback) -> None:
        """
        Read all properties of a Location object.

        Args:
            object_path: Location object path
            callback: Receives (RemoteLocationFields, None) or (None, RemoteCallError)
        """

        def _location_ready(_source: object, result: Gio.AsyncResult, *_user_data: object) -> None:
            try:
                location = Gio.DBusProxy.new_finish(result)
            except GLib.Error as exc:
                callback(None, remoteCallError_fromGLib(exc))
                return

            values: dict[str, object] = {}
            for name in self._LOCATION_PROPERTIES:
                variant = location.get_cached_property(name)
                if variant is None:
                    callback(
                        None,
                        RemoteCallError(
                            "org.freedesktop.DBus.Error.UnknownProperty",
                            f"Location {object_path} has no property {name}",
                        ),
                    )
                    return
                values[name] = variant.unpack()

            seconds, microseconds = values["Timestamp"]
            callback(
                RemoteLocationFields(
                    latitude=float(values["Latitude"]),
                    longitude=float(values["Longitude"]),
                    altitude=float(values["Altitude"]),
                    accuracy=float(values["Accuracy"]),
                    speed=float(values["Speed"]),
                    heading=float(values["Heading"]),
                    timestamp_sec=int(seconds),
                    timestamp_usec=int(microseconds),
                ),
                None,
            )

        def _manager_ready(manager: Optional[Gio.DBusProxy], error: Optional[RemoteCallError]) -> None:
            if manager is None:
                callback(None, error)
                return
            Gio.DBusProxy.new(
                manager.get_connection(),
                Gio.DBusProxyFlags.DO_NOT_CONNECT_SIGNALS,
                None,
                settings.SERVICE_NAME,
                object_path,
                settings.LOCATION_INTERFACE,
                None,
                _location_ready,
                None,
            )

        self._manager_request(_manager_ready)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _client_get(
        self, handle: SessionHandle, callback: CompletionCallback
    ) -> Optional[Gio.DBusProxy]:
        """Look up the Client proxy, failing the callback when it is gone."""
        client = self._clients.get(handle.object_path)
        if client is None:
            callback(
                None,
                RemoteCallError(
                    "org.freedesktop.DBus.Error.UnknownObject",
                    f"No client proxy for {handle.object_path}",
                ),
            )
        return client

    def _client_invoke(self, handle: SessionHandle, method: str, callback: CompletionCallback) -> None:
        """Issue a no-argument Client method call."""
        client = self._client_get(handle, callback)
        if client is None:
            return

        def _done(proxy: Gio.DBusProxy, result: Gio.AsyncResult, *_user_data: object) -> None:
            try:
                proxy.call_finish(result)
            except GLib.Error as exc:
                callback(None, remoteCallError_fromGLib(exc))
                return
            callback(None, None)

        client.call(
            method,
            None,
            Gio.DBusCallFlags.NONE,
            settings.DBUS_CALL_TIMEOUT_MS,
            None,
            _done,
            None,
        )
