"""Application desktop-id resolution"""

from __future__ import annotations

import os
from typing import Callable, Mapping, Optional

from geoclue2source.common.settings import settings

__all__ = ["ConfigurationError", "DesktopIdResolver"]


class ConfigurationError(Exception):
    """Raised when a required setting cannot be resolved"""


class DesktopIdResolver:
    """
    Resolve the desktop id GeoClue2 uses to authorize the application.

    The environment variable wins over the application name; both empty
    is a configuration error rather than a transient failure.
    """

    def __init__(
        self,
        application_name: Optional[str] | Callable[[], Optional[str]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        """
        Initialize resolver.

        Args:
            application_name: Fallback name, or a callable producing it
            environ: Environment mapping (defaults to os.environ)
        """
        self._application_name = application_name
        self._environ: Mapping[str, str] = environ if environ is not None else os.environ

    def desktopId_resolve(self) -> str:
        """
        Resolve desktop id.

        Returns:
            Non-empty desktop id

        Raises:
            ConfigurationError: If neither source yields a non-empty id
        """
        desktop_id = self._environ.get(settings.DESKTOP_ID_ENV_VAR, "")
        if desktop_id:
            return desktop_id

        name = self._application_name() if callable(self._application_name) else self._application_name
        if name:
            return name

        raise ConfigurationError(
            f"Application desktop id is not set via {settings.DESKTOP_ID_ENV_VAR} "
            "environment variable or application name"
        )
