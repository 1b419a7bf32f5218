"""Position source built on the GeoClue2 Client session state machine."""

from geoclue2source.source.deadline import RequestDeadline
from geoclue2source.source.position_source import PositionSource
from geoclue2source.source.session_controller import ClientSessionController, SessionCallbacks

__all__ = [
    "ClientSessionController",
    "PositionSource",
    "RequestDeadline",
    "SessionCallbacks",
]
