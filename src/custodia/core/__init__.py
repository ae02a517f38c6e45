"""Custodia core module.

Shared components used across all services:
- Configuration management
- Cached settings accessor
"""

from custodia.core.config import (
    ConfigValidationError,
    DatabaseSettings,
    Environment,
    InventorySettings,
    NotificationSettings,
    Settings,
)
from custodia.core.settings import (
    clear_settings_cache,
    get_settings,
    get_settings_safe,
    log_config_change,
)

__all__ = [
    "ConfigValidationError",
    "DatabaseSettings",
    "Environment",
    "InventorySettings",
    "NotificationSettings",
    "Settings",
    "clear_settings_cache",
    "get_settings",
    "get_settings_safe",
    "log_config_change",
]
