"""Common types and data structures for geoclue2source"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum, IntEnum, IntFlag
from typing import Optional


class AccuracyLevel(IntEnum):
    """GeoClue2 accuracy levels (coarse to fine)"""
    NONE = 0
    COUNTRY = 1
    CITY = 4
    NEIGHBORHOOD = 5
    STREET = 6
    EXACT = 8


class PositioningMethods(IntFlag):
    """Positioning method preference / capability flags"""
    NONE = 0x00000000
    SATELLITE = 0x000000FF
    NON_SATELLITE = 0xFFFFFF00
    ALL = 0xFFFFFFFF


class SourceError(Enum):
    """Coarse error kinds reported to callers"""
    NO_ERROR = "no_error"
    ACCESS_ERROR = "access_error"
    CLOSED_ERROR = "closed_error"
    UNKNOWN_SOURCE_ERROR = "unknown_source_error"
    UPDATE_TIMEOUT_ERROR = "update_timeout_error"


class SessionState(Enum):
    """Lifecycle states of the remote Client session"""
    ABSENT = "absent"
    CREATING = "creating"
    ACTIVE_IDLE = "active_idle"      # created and configured, not started
    ACTIVE_STARTED = "active_started"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass(frozen=True)
class Coordinate:
    """Geographic coordinate in WGS84 degrees"""
    latitude: float
    longitude: float
    altitude: Optional[float] = None

    def isValid(self) -> bool:
        """Check if latitude/longitude are finite and within range"""
        if not (math.isfinite(self.latitude) and math.isfinite(self.longitude)):
            return False
        return -90.0 <= self.latitude <= 90.0 and -180.0 <= self.longitude <= 180.0


@dataclass(frozen=True)
class PositionSnapshot:
    """
    One immutable position fix.

    Attributes:
        coordinate:
            Latitude/longitude and optional altitude.
        timestamp:
            Timezone-aware UTC time of the fix.
        horizontal_accuracy:
            Horizontal accuracy radius in meters.
        ground_speed:
            Speed over ground in m/s.
        direction:
            Heading in degrees, 0-360.
    """
    coordinate: Optional[Coordinate] = None
    timestamp: Optional[datetime] = None
    horizontal_accuracy: Optional[float] = None
    ground_speed: Optional[float] = None
    direction: Optional[float] = None

    @staticmethod
    def invalid() -> "PositionSnapshot":
        """Empty snapshot used before the first fix"""
        return PositionSnapshot()

    def isValid(self) -> bool:
        """Check if snapshot holds a valid coordinate and a timestamp"""
        return (
            self.coordinate is not None
            and self.coordinate.isValid()
            and self.timestamp is not None
        )

    def persistable_get(self) -> "PositionSnapshot":
        """Copy with only coordinate and timestamp kept"""
        return replace(
            self,
            horizontal_accuracy=None,
            ground_speed=None,
            direction=None,
        )


@dataclass(frozen=True)
class SessionConfig:
    """Settings pushed onto a remote Client before it is started"""
    desktop_id: str
    time_threshold_sec: int
    accuracy_level: AccuracyLevel


@dataclass(frozen=True)
class RemoteLocationFields:
    """Raw properties of a remote Location object"""
    latitude: float
    longitude: float
    altitude: float
    accuracy: float
    speed: float
    heading: float
    timestamp_sec: int
    timestamp_usec: int


@dataclass
class SessionHandle:
    """
    Reference to one remote Client object.

    The generation tag lets late completions be matched against the
    handle they were issued for; `valid` drops to False once destroyed.
    """
    object_path: str
    generation: int
    valid: bool = True
    subscription_id: Optional[int] = field(default=None, compare=False)

    def invalidate(self) -> None:
        """Mark handle as destroyed"""
        self.valid = False
