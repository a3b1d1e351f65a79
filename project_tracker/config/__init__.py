"""Configuration package."""

from project_tracker.config.settings import (
    AppSettings,
    AuditSettings,
    RollupSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "AuditSettings",
    "RollupSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
