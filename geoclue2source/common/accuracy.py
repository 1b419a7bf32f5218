"""
Accuracy-level mapping.

Translates positioning-method preferences into GeoClue2 accuracy levels
for Client configuration, and advertised accuracy levels back into the
set of supported positioning methods.
"""

from __future__ import annotations

from geoclue2source.common.types import AccuracyLevel, PositioningMethods

__all__ = [
    "accuracyLevel_fromMethods",
    "supportedMethods_fromAccuracyLevel",
]

_NON_SATELLITE_LEVELS: frozenset[int] = frozenset(
    {
        AccuracyLevel.COUNTRY,
        AccuracyLevel.CITY,
        AccuracyLevel.NEIGHBORHOOD,
        AccuracyLevel.STREET,
    }
)


def accuracyLevel_fromMethods(methods: PositioningMethods | int) -> AccuracyLevel:
    """
    Map preferred positioning methods onto a requested accuracy level.

    Only the exact SATELLITE, NON_SATELLITE and ALL values are recognized;
    any other combination requests NONE.

    Args:
        methods:
            Preferred positioning methods.

    Returns:
        Accuracy level to request from the Client.
    """
    if methods == PositioningMethods.SATELLITE:
        return AccuracyLevel.EXACT
    if methods == PositioningMethods.NON_SATELLITE:
        return AccuracyLevel.STREET
    if methods == PositioningMethods.ALL:
        return AccuracyLevel.EXACT
    return AccuracyLevel.NONE


def supportedMethods_fromAccuracyLevel(level: int) -> PositioningMethods:
    """
    Map the Manager's advertised accuracy ceiling onto supported methods.

    Args:
        level:
            Raw `AvailableAccuracyLevel` value.

    Returns:
        Supported positioning methods; NONE for 0 or unrecognized values.
    """
    if level in _NON_SATELLITE_LEVELS:
        return PositioningMethods.NON_SATELLITE
    if level == AccuracyLevel.EXACT:
        return PositioningMethods.ALL
    return PositioningMethods.NONE
