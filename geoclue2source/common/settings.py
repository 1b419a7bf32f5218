"""Application settings singleton - single source of truth for configuration

This module provides a singleton Settings class that consolidates:
1. GeoClue2 D-Bus protocol constants (service, paths, interfaces)
2. Position source constants (update interval floor, request timeouts)
3. Runtime configuration from config.yml

Usage:
    from geoclue2source.common.settings import settings

    # Initialize once at startup with loaded config
    config = ConfigLoader.config_load()
    settings.initialize(config)

    # Use anywhere in the application
    if timeout_ms < settings.MINIMUM_UPDATE_INTERVAL_MS:
        ...
"""

from typing import Optional

from geoclue2source.common.config import Config


class Settings:
    """Singleton settings manager combining config.yml and protocol constants"""

    _instance: Optional["Settings"] = None

    def __new__(cls) -> "Settings":
        """Ensure only one Settings instance exists"""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        """Initialize settings singleton (only runs once)"""
        if hasattr(self, "_initialized"):
            return
        self._initialized = True
        self._config: Optional[Config] = None

    def initialize(self, config: Config) -> None:
        """
        Initialize with loaded configuration

        Args:
            config: Loaded application config
        """
        self._config = config

    # =========================================================================
    # GeoClue2 D-Bus Constants
    # =========================================================================

    SERVICE_NAME: str = "org.freedesktop.GeoClue2"
    MANAGER_PATH: str = "/org/freedesktop/GeoClue2/Manager"
    MANAGER_INTERFACE: str = "org.freedesktop.GeoClue2.Manager"
    CLIENT_INTERFACE: str = "org.freedesktop.GeoClue2.Client"
    LOCATION_INTERFACE: str = "org.freedesktop.GeoClue2.Location"
    PROPERTIES_INTERFACE: str = "org.freedesktop.DBus.Properties"

    DBUS_CALL_TIMEOUT_MS: int = -1
    """Per-call D-Bus timeout; -1 selects the bus default (25 s)"""

    # =========================================================================
    # Position Source Constants
    # =========================================================================

    MINIMUM_UPDATE_INTERVAL_MS: int = 1000
    """Shortest update interval / one-shot timeout accepted (milliseconds)"""

    UPDATE_TIMEOUT_COLD_START_MS: int = 120000
    """Default one-shot timeout when the caller passes 0 (milliseconds)"""

    DESKTOP_ID_ENV_VAR: str = "QT_GEOCLUE_APP_DESKTOP_ID"
    """Environment variable that overrides the application desktop id"""

    LAST_POSITION_FILE_NAME: str = "qtposition-geoclue2"
    """File name of the persisted last position inside the user data dir"""

    # =========================================================================
    # Runtime Configuration Access
    # =========================================================================

    @property
    def config(self) -> Config:
        """
        Get loaded configuration object

        Returns:
            Loaded config

        Raises:
            RuntimeError: If initialize() has not been called
        """
        if self._config is None:
            raise RuntimeError("Settings not initialized. Call settings.initialize(config) first.")
        return self._config


# Global singleton instance
settings = Settings()
"""Global settings singleton instance

Import this anywhere in the application:
    from geoclue2source.common.settings import settings
"""
