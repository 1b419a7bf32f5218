"""Configuration file loading and management"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from geoclue2source.common.types import PositioningMethods

METHOD_NAMES: Dict[str, PositioningMethods] = {
    "none": PositioningMethods.NONE,
    "satellite": PositioningMethods.SATELLITE,
    "non_satellite": PositioningMethods.NON_SATELLITE,
    "all": PositioningMethods.ALL,
}


@dataclass
class SourceConfig:
    """Position source settings"""
    desktop_id: Optional[str]
    update_interval_ms: int
    preferred_methods: PositioningMethods
    request_timeout_ms: int
    persist_path: Optional[str]


@dataclass
class LoggingConfig:
    """Logging configuration settings"""
    level: str
    file: Optional[str]
    format: str


@dataclass
class Config:
    """Complete application configuration"""
    source: SourceConfig
    logging: LoggingConfig


def methods_parse(name: str) -> PositioningMethods:
    """
    Parse a positioning-method name

    Args:
        name: One of none, satellite, non_satellite, all

    Returns:
        Matching PositioningMethods flag

    Raises:
        ValueError: If name is not recognized
    """
    key = name.strip().lower().replace("-", "_")
    if key not in METHOD_NAMES:
        raise ValueError(
            f"Unknown positioning methods '{name}' "
            f"(expected one of: {', '.join(METHOD_NAMES)})"
        )
    return METHOD_NAMES[key]


class ConfigLoader:
    """Loads and parses configuration from YAML files"""

    DEFAULT_CONFIG_PATHS = [
        "config.yml",
        "~/.config/geoclue2source/config.yml",
        "/etc/geoclue2source/config.yml",
    ]

    DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    @staticmethod
    def configFile_find() -> Optional[Path]:
        """
        Find configuration file in standard locations

        Returns:
            Path to config file, or None if not found
        """
        for config_path in ConfigLoader.DEFAULT_CONFIG_PATHS:
            path = Path(config_path).expanduser().resolve()
            if path.exists() and path.is_file():
                return path
        return None

    @staticmethod
    def yaml_load(file_path: Path) -> Dict[str, Any]:
        """
        Load YAML configuration file

        Args:
            file_path: Path to YAML file

        Returns:
            Parsed configuration dictionary

        Raises:
            FileNotFoundError: If file does not exist
            yaml.YAMLError: If file is not valid YAML
        """
        with open(file_path, "r") as f:
            data = yaml.safe_load(f)

        if not isinstance(data, dict):
            raise ValueError(f"Config file {file_path} must contain a YAML dictionary")

        return data

    @staticmethod
    def config_parse(data: Dict[str, Any]) -> Config:
        """
        Parse configuration dictionary into Config object

        Every key is optional; missing values fall back to defaults.

        Args:
            data: Raw configuration dictionary

        Returns:
            Parsed Config object

        Raises:
            ValueError: If a value has the wrong shape
        """
        source_data = data.get("source") or {}
        if not isinstance(source_data, dict):
            raise ValueError("'source' section must be a dictionary")

        update_interval_ms = int(source_data.get("update_interval_ms", 0))
        request_timeout_ms = int(source_data.get("request_timeout_ms", 0))
        if update_interval_ms < 0 or request_timeout_ms < 0:
            raise ValueError("update_interval_ms and request_timeout_ms must be non-negative")

        source = SourceConfig(
            desktop_id=source_data.get("desktop_id") or None,
            update_interval_ms=update_interval_ms,
            preferred_methods=methods_parse(str(source_data.get("preferred_methods", "all"))),
            request_timeout_ms=request_timeout_ms,
            persist_path=source_data.get("persist_path"),
        )

        logging_data = data.get("logging") or {}
        if not isinstance(logging_data, dict):
            raise ValueError("'logging' section must be a dictionary")
        logging = LoggingConfig(
            level=str(logging_data.get("level", "INFO")),
            file=logging_data.get("file"),
            format=logging_data.get("format", ConfigLoader.DEFAULT_LOG_FORMAT),
        )

        return Config(source=source, logging=logging)

    @staticmethod
    def config_load(file_path: Optional[Path] = None) -> Config:
        """
        Load configuration from file

        Args:
            file_path: Optional path to config file. If None, searches standard
                locations and falls back to built-in defaults when none exists.

        Returns:
            Parsed Config object

        Raises:
            FileNotFoundError: If an explicit config file does not exist
            ValueError: If config file is invalid
        """
        if file_path is None:
            file_path = ConfigLoader.configFile_find()
            if file_path is None:
                return ConfigLoader.config_parse({})

        data = ConfigLoader.yaml_load(file_path)
        return ConfigLoader.config_parse(data)

    @staticmethod
    def configWithOverrides_load(
        file_path: Optional[Path] = None,
        **overrides: Any
    ) -> Config:
        """
        Load configuration and apply command-line overrides

        Args:
            file_path: Optional path to config file
            **overrides: Key-value pairs to override config values

        Returns:
            Config object with overrides applied

        Example:
            config = ConfigLoader.configWithOverrides_load(
                desktop_id="org.example.App",
                update_interval_ms=5000
            )
        """
        config = ConfigLoader.config_load(file_path)

        if overrides.get("desktop_id"):
            config.source.desktop_id = overrides["desktop_id"]
        if overrides.get("update_interval_ms") is not None:
            config.source.update_interval_ms = overrides["update_interval_ms"]
        if overrides.get("request_timeout_ms") is not None:
            config.source.request_timeout_ms = overrides["request_timeout_ms"]
        if overrides.get("preferred_methods") is not None:
            config.source.preferred_methods = methods_parse(overrides["preferred_methods"])
        if overrides.get("log_level") is not None:
            config.logging.level = overrides["log_level"]

        return config
