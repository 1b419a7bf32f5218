"""Unit tests for the Gio-backed GeoClue2 remote wrapper."""

from __future__ import annotations

import pytest

gi = pytest.importorskip("gi")

from gi.repository import Gio, GLib  # noqa: E402

from geoclue2source.bus.contracts import RemoteCallError  # noqa: E402
from geoclue2source.bus.remote_session import (  # noqa: E402
    RemoteSessionProxy,
    remoteCallError_fromGLib,
)
from geoclue2source.common.types import AccuracyLevel, SessionConfig, SessionHandle  # noqa: E402

CLIENT_1 = "/org/freedesktop/GeoClue2/Client/1"


class TestRemoteCallErrorFromGLib:
    """Tests for GLib error conversion."""

    def test_remote_error_name_and_message(self) -> None:
        """D-Bus errors keep their name and lose the GDBus prefix."""
        error = Gio.DBusError.new_for_dbus_error(
            "org.freedesktop.DBus.Error.AccessDenied", "Not allowed"
        )

        converted = remoteCallError_fromGLib(error)

        assert isinstance(converted, RemoteCallError)
        assert converted.name == "org.freedesktop.DBus.Error.AccessDenied"
        assert converted.message == "Not allowed"

    def test_local_error_uses_domain_and_code(self) -> None:
        """Errors that did not come off the bus are named by domain and code."""
        error = GLib.Error("socket closed", "geoclue2source-test-error", 3)

        converted = remoteCallError_fromGLib(error)

        assert converted.name == "geoclue2source-test-error.3"
        assert converted.message == "socket closed"


class TestRemoteSessionProxyWithoutClient:
    """Calls against a Client proxy that does not exist never touch the bus."""

    @pytest.fixture
    def proxy(self) -> RemoteSessionProxy:
        """Proxy wrapper with no Manager connection yet"""
        return RemoteSessionProxy()

    @pytest.fixture
    def handle(self) -> SessionHandle:
        """Handle for an unknown Client"""
        return SessionHandle(object_path=CLIENT_1, generation=1)

    def test_start_fails_with_unknown_object(self, proxy, handle) -> None:
        """Start on a forgotten Client reports UnknownObject."""
        results: list[tuple] = []
        proxy.session_start(handle, lambda result, error: results.append((result, error)))

        assert len(results) == 1
        assert results[0][0] is None
        assert results[0][1].name == "org.freedesktop.DBus.Error.UnknownObject"

    def test_configure_fails_with_unknown_object(self, proxy, handle) -> None:
        """Property writes on a forgotten Client report UnknownObject."""
        errors: list[RemoteCallError] = []
        config = SessionConfig("org.example.Tests", 0, AccuracyLevel.EXACT)
        proxy.session_configure(handle, config, lambda _result, error: errors.append(error))

        assert [e.name for e in errors] == ["org.freedesktop.DBus.Error.UnknownObject"]

    def test_location_path_empty_without_client(self, proxy, handle) -> None:
        """No proxy means no known location."""
        assert proxy.currentLocationPath_get(handle) == ""

    def test_destroy_unknown_client_is_harmless(self, proxy, handle) -> None:
        """Destroying twice is a no-op."""
        handle.subscription_id = 42
        proxy.session_destroy(handle)
        proxy.session_destroy(handle)
        assert handle.subscription_id is None


class TestManagerProxyCreation:
    """The Manager proxy is built asynchronously for Client and Location requests."""

    @pytest.fixture
    def bus_calls(self, monkeypatch) -> dict[str, list]:
        """Replace Gio proxy construction with recorders"""
        calls: dict[str, list] = {"async": [], "sync": []}

        def _new_for_bus(*args) -> None:
            calls["async"].append(args)

        def _new_for_bus_sync(*args) -> None:
            calls["sync"].append(args)
            raise AssertionError("synchronous Manager creation on an async path")

        def _new_for_bus_finish(_result) -> None:
            raise GLib.Error("no bus", "geoclue2source-test-error", 1)

        monkeypatch.setattr(Gio.DBusProxy, "new_for_bus", _new_for_bus)
        monkeypatch.setattr(Gio.DBusProxy, "new_for_bus_sync", _new_for_bus_sync)
        monkeypatch.setattr(Gio.DBusProxy, "new_for_bus_finish", _new_for_bus_finish)
        return calls

    def test_concurrent_requests_share_one_build(self, bus_calls) -> None:
        """Pending requests wait on a single asynchronous Manager build."""
        proxy = RemoteSessionProxy()
        results: list[tuple] = []

        proxy.session_create(lambda result, error: results.append(("create", result, error)))
        proxy.session_create(lambda result, error: results.append(("create", result, error)))
        proxy.location_fetch(
            "/org/freedesktop/GeoClue2/Location/1",
            lambda result, error: results.append(("fetch", result, error)),
        )

        assert len(bus_calls["async"]) == 1
        assert bus_calls["sync"] == []
        assert results == []

        ready = bus_calls["async"][0][7]
        ready(None, object(), None)

        assert [r[0] for r in results] == ["create", "create", "fetch"]
        assert all(r[1] is None for r in results)
        assert {r[2].name for r in results} == {"geoclue2source-test-error.1"}

    def test_failed_build_is_retried(self, bus_calls) -> None:
        """A failed Manager build does not poison later requests."""
        proxy = RemoteSessionProxy()
        errors: list[RemoteCallError] = []

        proxy.session_create(lambda _result, error: errors.append(error))
        bus_calls["async"][0][7](None, object(), None)
        proxy.session_create(lambda _result, error: errors.append(error))

        assert len(bus_calls["async"]) == 2
        assert len(errors) == 1
