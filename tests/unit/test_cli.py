"""Unit tests for CLI argument handling and output."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

pytest.importorskip("gi")

from geoclue2source.bus.contracts import RemoteCallError  # noqa: E402
from geoclue2source.cli import (  # noqa: E402
    arguments_parse,
    configWithSettings_load,
    positionSource_create,
    position_format,
    supportedMethods_run,
)
from geoclue2source.common.config import ConfigLoader  # noqa: E402
from geoclue2source.common.settings import settings  # noqa: E402
from geoclue2source.common.types import Coordinate, PositioningMethods, PositionSnapshot  # noqa: E402
from geoclue2source.source.position_source import PositionSource  # noqa: E402
from geoclue2source.storage.position_store import PersistedPositionStore  # noqa: E402

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class TestArgumentsParse:
    """Tests for command-line parsing."""

    def test_defaults(self) -> None:
        """No flags leaves every override unset."""
        args = arguments_parse([])

        assert args.config is None
        assert args.desktop_id is None
        assert args.once is False
        assert args.timeout is None
        assert args.interval is None
        assert args.methods is None
        assert args.supported is False
        assert args.log_level is None

    def test_overrides(self) -> None:
        """Every flag is parsed into its namespace attribute."""
        args = arguments_parse(
            [
                "--desktop-id",
                "org.example.App",
                "--once",
                "--timeout",
                "5000",
                "--interval",
                "2000",
                "--methods",
                "satellite",
                "--log-level",
                "DEBUG",
            ]
        )

        assert args.desktop_id == "org.example.App"
        assert args.once is True
        assert args.timeout == 5000
        assert args.interval == 2000
        assert args.methods == "satellite"
        assert args.log_level == "DEBUG"

    def test_unknown_methods_rejected(self) -> None:
        """Method names are restricted to the known set."""
        with pytest.raises(SystemExit):
            arguments_parse(["--methods", "radar"])


class TestConfigWithSettingsLoad:
    """Tests for config loading from the CLI."""

    def test_cli_overrides_file(self, tmp_path, reset_settings) -> None:
        """Flags win over config file values and settings get initialized."""
        config_file = tmp_path / "config.yml"
        config_file.write_text("source:\n  update_interval_ms: 2000\n  desktop_id: org.example.File\n")
        args = arguments_parse(
            ["--config", str(config_file), "--interval", "7000", "--methods", "non_satellite"]
        )

        config = configWithSettings_load(args)

        assert config.source.update_interval_ms == 7000
        assert config.source.desktop_id == "org.example.File"
        assert config.source.preferred_methods == PositioningMethods.NON_SATELLITE
        assert settings.config is config


class TestPositionSourceCreate:
    """Tests for building the source from loaded settings."""

    def test_uses_initialized_settings(self, tmp_path, reset_settings) -> None:
        """Interval, methods and persist path come from settings.config."""
        persist_file = tmp_path / "last-position"
        stored = PositionSnapshot(coordinate=Coordinate(52.5, 13.4), timestamp=T0)
        PersistedPositionStore(persist_file).save(stored)
        settings.initialize(
            ConfigLoader.config_parse(
                {
                    "source": {
                        "update_interval_ms": 2000,
                        "preferred_methods": "satellite",
                        "persist_path": str(persist_file),
                    }
                }
            )
        )

        source = positionSource_create()

        assert source.updateInterval() == 2000
        assert source.preferredPositioningMethods() == PositioningMethods.SATELLITE
        assert source.lastKnownPosition() == stored

    def test_requires_initialized_settings(self, reset_settings) -> None:
        """Building without loaded settings is an error."""
        with pytest.raises(RuntimeError):
            positionSource_create()


class TestPositionFormat:
    """Tests for position rendering."""

    def test_minimal(self) -> None:
        """Coordinate and timestamp only."""
        text = position_format(PositionSnapshot(coordinate=Coordinate(52.5, 13.4), timestamp=T0))
        assert text == "52.500000, 13.400000 @ 2024-05-01T12:00:00+00:00"

    def test_all_fields(self) -> None:
        """Optional values are appended when present."""
        text = position_format(
            PositionSnapshot(
                coordinate=Coordinate(52.5, 13.4, 34.0),
                timestamp=T0,
                horizontal_accuracy=25.0,
                ground_speed=1.25,
                direction=270.0,
            )
        )
        assert text == "52.500000, 13.400000, 34.0 @ 2024-05-01T12:00:00+00:00 ±25m 1.2m/s 270°"


class TestSupportedMethodsRun:
    """Tests for --supported."""

    def test_prints_method_name(self, remote, scheduler, resolver, store, capsys) -> None:
        """Known method sets print by name."""
        remote.accuracy_level = 6
        source = PositionSource(remote, scheduler, resolver, store)

        assert supportedMethods_run(source) == 0
        assert capsys.readouterr().out.strip() == "non_satellite"

    def test_read_failure_exits_nonzero(self, remote, scheduler, resolver, store, capsys) -> None:
        """An unreachable service is an error."""
        remote.accuracy_error = RemoteCallError("org.freedesktop.DBus.Error.ServiceUnknown", "gone")
        source = PositionSource(remote, scheduler, resolver, store)

        assert supportedMethods_run(source) == 1
        assert "unable to query" in capsys.readouterr().err
