"""
Coverage Analytics Configuration Module
=======================================

Centralized configuration for the coverage analytics components. The
service area (center position, maximum distance, initial zoom) is held
in explicit config objects that are passed to the functions needing
them.

Usage
-----
    from coverage_map.analytics.config import Config

    # Use values directly
    max_miles = Config.LOCATION.MAX_DISTANCE_MILES

    # Or hand an entire group to a function
    parse_location(lat, lon, Config.LOCATION)

Environment Override
-------------------
    CENTER_POS="37.3382,-121.8863"     center used for location checks
    MAX_DISTANCE_MILES=50              0 or negative disables the check
    INITIAL_ZOOM_LEVEL=10              initial map zoom for the frontend
    COVERAGE_DB_PATH=/path/to/db       SQLite database file
    COVERAGE_API_LOW_CONFIDENCE=0.5    low-confidence threshold for stats

Hot Reload
----------
    from coverage_map.analytics.config import reload_config, Config

    reload_config()
    print(Config.LOCATION.CENTER_LAT)

Thread Safety
-------------
Configuration reads are thread-safe. Reloads are atomic - readers will
see either the old or new config, never a partial state.
"""

import logging
import os
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Tuple

logger = logging.getLogger("Analytics.Config")

# Lock for thread-safe config reload
_config_lock = threading.RLock()

# Default: San Jose, CA
DEFAULT_CENTER_POS = (37.3382, -121.8863)


def _env_int(key: str, default: int) -> int:
    """Get integer from environment or use default."""
    val = os.environ.get(key)
    if val is not None:
        try:
            return int(val)
        except ValueError:
            logger.warning(f"Invalid int value for {key}: {val}, using default {default}")
    return default


def _env_float(key: str, default: float) -> float:
    """Get float from environment or use default."""
    val = os.environ.get(key)
    if val is not None:
        try:
            return float(val)
        except ValueError:
            logger.warning(f"Invalid float value for {key}: {val}, using default {default}")
    return default


def _env_str(key: str, default: str) -> str:
    val = os.environ.get(key)
    return val if val else default


def _env_center_pos(key: str, default: Tuple[float, float]) -> Tuple[float, float]:
    """Parse a "lat,lon" pair from the environment."""
    val = os.environ.get(key)
    if val:
        parts = val.split(",")
        if len(parts) == 2:
            try:
                return (float(parts[0]), float(parts[1]))
            except ValueError:
                pass
        logger.warning(f"Invalid position for {key}: {val}, using default {default}")
    return default


@dataclass(frozen=True)
class LocationConfig:
    """Validity region for incoming samples and repeaters."""

    CENTER_LAT: float = field(
        default_factory=lambda: _env_center_pos("CENTER_POS", DEFAULT_CENTER_POS)[0]
    )
    CENTER_LON: float = field(
        default_factory=lambda: _env_center_pos("CENTER_POS", DEFAULT_CENTER_POS)[1]
    )

    # 0 or negative = no distance limit
    MAX_DISTANCE_MILES: float = field(
        default_factory=lambda: _env_float("MAX_DISTANCE_MILES", 0.0)
    )

    INITIAL_ZOOM: int = field(
        default_factory=lambda: _env_int("INITIAL_ZOOM_LEVEL", 10)
    )

    @property
    def center_pos(self) -> Tuple[float, float]:
        return (self.CENTER_LAT, self.CENTER_LON)


@dataclass(frozen=True)
class StorageConfig:
    """SQLite storage configuration."""

    DB_PATH: str = field(
        default_factory=lambda: _env_str(
            "COVERAGE_DB_PATH", "/var/lib/coverage_map/coverage.db"
        )
    )


@dataclass(frozen=True)
class APIConfig:
    """API defaults."""

    # Collision prefixes below this confidence are flagged in stats
    LOW_CONFIDENCE_THRESHOLD: float = field(
        default_factory=lambda: _env_float("COVERAGE_API_LOW_CONFIDENCE", 0.5)
    )


class Config:
    """
    Main configuration container with all config groups.

    Access via Config.GROUP.CONSTANT, e.g.:
        Config.LOCATION.MAX_DISTANCE_MILES
        Config.STORAGE.DB_PATH
    """

    LOCATION = LocationConfig()
    STORAGE = StorageConfig()
    API = APIConfig()

    # Version counter, increments on reload
    _version: int = 0

    @classmethod
    def to_dict(cls) -> Dict[str, Dict[str, Any]]:
        """Export all config as dict (useful for debugging)."""
        from dataclasses import asdict
        return {
            "location": asdict(cls.LOCATION),
            "storage": asdict(cls.STORAGE),
            "api": asdict(cls.API),
            "_version": cls._version,
        }

    @classmethod
    def get_version(cls) -> int:
        return cls._version


def reload_config() -> None:
    """
    Reload configuration from environment variables.

    Example:
        >>> import os
        >>> os.environ['MAX_DISTANCE_MILES'] = '25'
        >>> reload_config()
        >>> Config.LOCATION.MAX_DISTANCE_MILES
        25.0
    """
    with _config_lock:
        Config.LOCATION = LocationConfig()
        Config.STORAGE = StorageConfig()
        Config.API = APIConfig()
        Config._version += 1

        logger.info(f"Configuration reloaded (version {Config._version})")
