"""Persisted last-known position"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from geoclue2source.common.settings import settings
from geoclue2source.common.types import Coordinate, PositionSnapshot

__all__ = ["PersistedPositionStore", "defaultPath_get"]

logger = logging.getLogger(__name__)

_FORMAT_VERSION: int = 1


def defaultPath_get() -> Path:
    """
    Location of the persisted position in the per-user data directory

    Returns:
        <user data dir>/qtposition-geoclue2
    """
    from gi.repository import GLib

    return Path(GLib.get_user_data_dir()) / settings.LAST_POSITION_FILE_NAME


class PersistedPositionStore:
    """
    Load/save a single position snapshot across restarts.

    Only coordinate and timestamp are stored; accuracy, speed and heading
    are transient.
    """

    def __init__(self, file_path: Optional[Path] = None) -> None:
        """
        Initialize store.

        Args:
            file_path: Storage file (defaults to defaultPath_get())
        """
        self._file_path: Path = file_path if file_path is not None else defaultPath_get()

    @property
    def file_path(self) -> Path:
        """Path of the backing file"""
        return self._file_path

    def load(self) -> Optional[PositionSnapshot]:
        """
        Read the stored snapshot.

        Returns:
            Restored snapshot, or None when the file is missing or unreadable
        """
        try:
            with open(self._file_path, "r", encoding="utf-8") as f:
                data = json.load(f)
            snapshot = PersistedPositionStore.snapshot_deserialize(data)
        except FileNotFoundError:
            logger.debug("No persisted position at %s", self._file_path)
            return None
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.warning("Ignoring unreadable persisted position %s: %s", self._file_path, exc)
            return None

        if not snapshot.isValid():
            logger.warning("Ignoring invalid persisted position in %s", self._file_path)
            return None
        return snapshot

    def save(self, snapshot: Optional[PositionSnapshot]) -> None:
        """
        Atomically write snapshot (write-to-temp, then rename).

        Args:
            snapshot: Snapshot to store; absent or invalid snapshots are ignored
        """
        if snapshot is None or not snapshot.isValid():
            return

        payload: str = json.dumps(PersistedPositionStore.snapshot_serialize(snapshot.persistable_get()))
        directory: Path = self._file_path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, temp_name = tempfile.mkstemp(
                prefix=f".{self._file_path.name}.", suffix=".tmp", dir=directory
            )
        except OSError as exc:
            logger.warning("Unable to persist position to %s: %s", self._file_path, exc)
            return

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_name, self._file_path)
        except OSError as exc:
            logger.warning("Unable to persist position to %s: %s", self._file_path, exc)
            try:
                os.unlink(temp_name)
            except OSError:
                pass
            return

        logger.debug("Persisted position to %s", self._file_path)

    @staticmethod
    def snapshot_serialize(snapshot: PositionSnapshot) -> Dict[str, Any]:
        """
        Serialize the persistable part of a snapshot

        Args:
            snapshot: Valid snapshot

        Returns:
            JSON-ready dictionary
        """
        assert snapshot.coordinate is not None and snapshot.timestamp is not None
        return {
            "version": _FORMAT_VERSION,
            "latitude": snapshot.coordinate.latitude,
            "longitude": snapshot.coordinate.longitude,
            "altitude": snapshot.coordinate.altitude,
            "timestamp": snapshot.timestamp.astimezone(timezone.utc).isoformat(),
        }

    @staticmethod
    def snapshot_deserialize(data: Dict[str, Any]) -> PositionSnapshot:
        """
        Rebuild a snapshot from its stored form

        Args:
            data: Dictionary produced by snapshot_serialize()

        Returns:
            Snapshot with coordinate and timestamp only

        Raises:
            ValueError: If the version or timestamp is not understood
            KeyError: If a required key is missing
        """
        if not isinstance(data, dict):
            raise ValueError("persisted position must be a JSON object")
        if data.get("version") != _FORMAT_VERSION:
            raise ValueError(f"unsupported format version {data.get('version')!r}")

        altitude = data.get("altitude")
        coordinate = Coordinate(
            latitude=float(data["latitude"]),
            longitude=float(data["longitude"]),
            altitude=float(altitude) if altitude is not None else None,
        )
        timestamp = datetime.fromisoformat(data["timestamp"])
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        return PositionSnapshot(coordinate=coordinate, timestamp=timestamp)
