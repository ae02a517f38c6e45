"""Process-wide settings accessor and logging setup.

Usage:
    from custodia.core.settings import get_settings

    settings = get_settings()
    window = settings.inventory.expiring_window_days

Settings are read from the environment once per process. Tests that change
the environment call clear_settings_cache() to force a reload.
"""

from __future__ import annotations

import logging
from functools import lru_cache

from pydantic import ValidationError

from custodia.core.config import (
    ConfigValidationError,
    Settings,
    validate_settings,
)

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(request_id)s] %(message)s"


def _describe_errors(exc: ValidationError) -> str:
    lines = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"]) or "settings"
        lines.append(f"  - {location}: {error['msg']}")
    return "\n".join(lines)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load, validate and cache the application settings.

    Raises:
        SystemExit: When the environment holds an invalid configuration.
            Custodia refuses to start rather than run half-configured.
    """
    logger.info("Loading Custodia settings from environment")
    try:
        settings = Settings()
        validate_settings(settings)
    except ValidationError as e:
        logger.critical("Invalid Custodia configuration:\n%s", _describe_errors(e))
        raise SystemExit(1) from e
    except ConfigValidationError as e:
        logger.critical(
            "Invalid Custodia configuration: %s (field: %s)",
            e.message,
            e.field or "unknown",
        )
        raise SystemExit(1) from e

    logger.info(
        "Settings loaded: environment=%s, backend=%s, code_prefix=%s, config_hash=%s",
        settings.environment.value,
        "sqlite" if settings.database.is_sqlite else "postgresql",
        settings.inventory.delivery_code_prefix,
        settings.get_config_hash()[:16],
    )
    return settings


def clear_settings_cache() -> None:
    """Forget the cached settings so the next call reloads them."""
    get_settings.cache_clear()
    logger.debug("Settings cache cleared")


def get_settings_safe() -> Settings | None:
    """Settings, or None when the environment is invalid."""
    try:
        return get_settings()
    except SystemExit:
        return None


def configure_logging(settings: Settings) -> None:
    """Configure root logging once for the API process.

    Every record carries the request ID of the request being served (``-``
    outside a request).
    """
    from custodia.api.middleware.request_id import RequestIDLogFilter

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(RequestIDLogFilter())
    logging.basicConfig(level=settings.log_level, handlers=[handler], force=True)


def log_config_change(component: str, change_description: str) -> None:
    """Log a configuration change in a structured, traceable format.

    Args:
        component: Component or setting that changed.
        change_description: Human-readable description of the change.
    """
    settings = get_settings()
    logger.info(
        "CONFIG_CHANGE: component=%s, description=%s, config_hash=%s",
        component,
        change_description,
        settings.get_config_hash()[:16],
        extra={"environment": settings.environment.value},
    )
