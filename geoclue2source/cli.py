"""geoclue2source command-line interface"""

import argparse
import logging
import signal
import sys
from pathlib import Path
from typing import NoReturn, Optional

from gi.repository import GLib

from geoclue2source import __version__
from geoclue2source.bus.remote_session import RemoteSessionProxy
from geoclue2source.bus.scheduler import GLibScheduler
from geoclue2source.common.config import METHOD_NAMES, Config, ConfigLoader
from geoclue2source.common.identity import DesktopIdResolver
from geoclue2source.common.logging_setup import logging_setup
from geoclue2source.common.settings import settings
from geoclue2source.common.types import PositioningMethods, PositionSnapshot, SourceError
from geoclue2source.source.position_source import PositionSource
from geoclue2source.storage.position_store import PersistedPositionStore

logger = logging.getLogger(__name__)

PROGRAM_NAME = "geoclue2source"


def arguments_parse(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """
    Parse command line arguments

    Args:
        argv: Argument list (defaults to sys.argv[1:])

    Returns:
        Parsed CLI arguments.
    """
    parser = argparse.ArgumentParser(
        prog=PROGRAM_NAME,
        description="Print positions reported by the GeoClue2 location service",
    )

    parser.add_argument("--version", action="version", version=f"{PROGRAM_NAME} {__version__}")

    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to config file (default: search standard locations)",
    )

    parser.add_argument(
        "--desktop-id",
        type=str,
        default=None,
        dest="desktop_id",
        help="Application desktop id presented to GeoClue2 (overrides config)",
    )

    parser.add_argument(
        "--once",
        action="store_true",
        help="Request a single position and exit",
    )

    parser.add_argument(
        "--timeout",
        type=int,
        default=None,
        metavar="MS",
        help="Timeout for --once in milliseconds (0 = cold-start default)",
    )

    parser.add_argument(
        "--interval",
        type=int,
        default=None,
        metavar="MS",
        help="Update interval in milliseconds (overrides config)",
    )

    parser.add_argument(
        "--methods",
        type=str,
        choices=sorted(METHOD_NAMES),
        default=None,
        help="Preferred positioning methods (overrides config)",
    )

    parser.add_argument(
        "--supported",
        action="store_true",
        help="Print the positioning methods the service supports and exit",
    )

    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        dest="log_level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level (overrides config)",
    )

    return parser.parse_args(argv)


def configWithSettings_load(args: argparse.Namespace) -> Config:
    """
    Load config with CLI overrides and initialize settings.

    Args:
        args: Parsed CLI args.

    Returns:
        Loaded config.
    """
    config_path: Path | None = Path(args.config) if args.config else None
    config: Config = ConfigLoader.configWithOverrides_load(
        file_path=config_path,
        desktop_id=args.desktop_id,
        update_interval_ms=args.interval,
        request_timeout_ms=args.timeout,
        preferred_methods=args.methods,
        log_level=args.log_level,
    )
    settings.initialize(config)
    return config


def positionSource_create() -> PositionSource:
    """
    Build a position source wired to the system bus from the loaded settings.

    Returns:
        Configured position source.
    """
    config: Config = settings.config
    persist_path: Path | None = (
        Path(config.source.persist_path).expanduser() if config.source.persist_path else None
    )
    source = PositionSource(
        remote=RemoteSessionProxy(),
        scheduler=GLibScheduler(),
        desktop_id_resolver=DesktopIdResolver(
            application_name=config.source.desktop_id or GLib.get_prgname() or PROGRAM_NAME
        ),
        store=PersistedPositionStore(persist_path),
    )
    source.setPreferredPositioningMethods(config.source.preferred_methods)
    source.setUpdateInterval(config.source.update_interval_ms)
    return source


def position_format(snapshot: PositionSnapshot) -> str:
    """
    Render one position as a single line.

    Args:
        snapshot: Valid position snapshot.

    Returns:
        "lat, lon[, alt] @ timestamp" with optional accuracy/speed/heading.
    """
    coordinate = snapshot.coordinate
    assert coordinate is not None and snapshot.timestamp is not None
    text = f"{coordinate.latitude:.6f}, {coordinate.longitude:.6f}"
    if coordinate.altitude is not None:
        text += f", {coordinate.altitude:.1f}"
    text += f" @ {snapshot.timestamp.isoformat()}"
    if snapshot.horizontal_accuracy is not None:
        text += f" ±{snapshot.horizontal_accuracy:.0f}m"
    if snapshot.ground_speed is not None:
        text += f" {snapshot.ground_speed:.1f}m/s"
    if snapshot.direction is not None:
        text += f" {snapshot.direction:.0f}°"
    return text


def supportedMethods_run(source: PositionSource) -> int:
    """
    Print supported positioning methods.

    Args:
        source: Position source.

    Returns:
        Process exit code.
    """
    methods: PositioningMethods = source.supportedPositioningMethods()
    if source.error() is not SourceError.NO_ERROR:
        print("Error: unable to query GeoClue2 accuracy level", file=sys.stderr)
        return 1
    names = [name for name, value in METHOD_NAMES.items() if value == methods]
    print(names[0] if names else hex(int(methods)))
    return 0


def mainLoop_run(source: PositionSource, once: bool) -> int:
    """
    Run the GLib main loop until interrupted (or one fix in --once mode).

    Args:
        source: Position source.
        once: Exit after the first position or error.

    Returns:
        Process exit code.
    """
    loop = GLib.MainLoop()
    exit_code: list[int] = [0]

    def _on_position(snapshot: PositionSnapshot) -> None:
        print(position_format(snapshot), flush=True)
        if once:
            loop.quit()

    def _on_error(kind: SourceError) -> None:
        logger.error("Position source error: %s", kind.value)
        if once:
            exit_code[0] = 1
            loop.quit()

    def _on_signal() -> bool:
        logger.info("Shutting down...")
        loop.quit()
        return GLib.SOURCE_REMOVE

    source.positionUpdated_connect(_on_position)
    source.error_connect(_on_error)
    GLib.unix_signal_add(GLib.PRIORITY_DEFAULT, signal.SIGINT, _on_signal)
    GLib.unix_signal_add(GLib.PRIORITY_DEFAULT, signal.SIGTERM, _on_signal)

    if once:
        source.requestUpdate(settings.config.source.request_timeout_ms)
    else:
        source.startUpdates()

    if source.error() is SourceError.NO_ERROR:
        loop.run()
    else:
        exit_code[0] = 1

    source.stopUpdates()
    source.close()
    return exit_code[0]


def main(argv: Optional[list[str]] = None) -> NoReturn:
    """
    Main entry point for the geoclue2source command

    Args:
        argv: Argument list (defaults to sys.argv[1:])
    """
    args = arguments_parse(argv)

    try:
        config: Config = configWithSettings_load(args)
    except Exception as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)

    logging_setup(config.logging.level, config.logging.format, config.logging.file)
    GLib.set_prgname(PROGRAM_NAME)

    source: PositionSource = positionSource_create()
    if args.supported:
        sys.exit(supportedMethods_run(source))
    sys.exit(mainLoop_run(source, once=args.once))


if __name__ == "__main__":
    main()
