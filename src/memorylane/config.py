"""Configuration management for MemoryLane.

This module provides centralized configuration management using environment variables.
Designed for simplicity: a single container serving one shared gallery.
"""

import os
from pathlib import Path
from typing import Any

from .logging_config import get_logger

logger = get_logger(__name__)


class Config:
    """Centralized configuration management using environment variables."""

    def __init__(self):
        """Initialize configuration."""
        self._cache = {}

    def get(self, key: str, default: Any = None, cast_type: type = str) -> Any:
        """Get configuration value from environment variables.

        Args:
            key: Configuration key
            default: Default value if not found
            cast_type: Type to cast the value to (str, int, bool, float)

        Returns:
            Configuration value cast to the specified type
        """
        cache_key = f"{key}:{cast_type.__name__}"
        if cache_key in self._cache:
            return self._cache[cache_key]

        value = os.getenv(key)

        if value is None:
            value = default

        if value is not None:
            try:
                if cast_type is bool:
                    if isinstance(value, str):
                        value = value.lower() in ("true", "1", "yes", "on")  # type: ignore[assignment]
                    else:
                        value = bool(value)  # type: ignore[assignment]
                elif cast_type is not str:
                    value = cast_type(value)
            except (ValueError, TypeError) as e:
                logger.warning(f"Failed to cast config value '{key}' to {cast_type.__name__}: {e}")
                value = default

        self._cache[cache_key] = value
        return value

    def clear_cache(self):
        """Clear configuration cache."""
        self._cache.clear()


# Global configuration instance
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config()
    return _config


def get_env(key: str, default: Any = None, cast_type: type = str) -> Any:
    """Get environment variable with type casting."""
    return get_config().get(key, default, cast_type)


# Common configuration getters
def get_environment() -> str:
    """Get current environment."""
    return str(get_env("ENVIRONMENT", "development"))


def get_images_dir() -> Path:
    """Directory holding originals, thumbnails and the metadata document."""
    return Path(get_env("IMAGES_DIR", "/app/images"))


def get_exports_dir() -> Path:
    """Directory holding the (single) export archive."""
    return Path(get_env("EXPORTS_DIR", "/app/exports"))


def get_max_file_size() -> int:
    """Maximum accepted upload size in bytes."""
    return int(get_env("MAX_FILE_SIZE", 50 * 1024 * 1024, int))


def get_thumbnail_max_size() -> int:
    return int(get_env("THUMBNAIL_MAX_SIZE", 300, int))


def get_thumbnail_quality() -> int:
    return int(get_env("THUMBNAIL_QUALITY", 80, int))


def get_conversion_quality() -> int:
    """JPEG quality used when normalizing HEIC/HEIF uploads."""
    return int(get_env("CONVERSION_QUALITY", 100, int))


def get_retry_max_attempts() -> int:
    return int(get_env("RETRY_MAX_ATTEMPTS", 3, int))


def get_retry_backoff_seconds() -> float:
    return float(get_env("RETRY_BACKOFF_SECONDS", 1.0, float))


def get_export_lock_stale_seconds() -> float:
    """Age after which an export lock file is considered abandoned."""
    return float(get_env("EXPORT_LOCK_STALE_SECONDS", 600.0, float))


def get_cors_origins() -> list[str]:
    raw = str(get_env("CORS_ORIGINS", "*"))
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


def get_host() -> str:
    return str(get_env("HOST", "0.0.0.0"))  # nosec B104


def get_port() -> int:
    return int(get_env("PORT", 4173, int))
