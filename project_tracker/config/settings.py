"""
Configuration Management for Project Tracker

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Services read their defaults from these settings, and every value can be
overridden per instance through constructor arguments (tests do this).
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RollupSettings(BaseSettings):
    """Parent rollup recalculation configuration."""

    model_config = SettingsConfigDict(
        env_prefix="ROLLUP_",
        extra="ignore"
    )

    include_financial_totals: bool = Field(
        default=False,
        description="Also re-derive budget totals and utilization rate from children"
    )
    retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per project when the store fails transiently"
    )
    retry_wait_seconds: float = Field(
        default=0.1,
        ge=0.0,
        le=30.0,
        description="Base wait between recalculation retries"
    )


class AuditSettings(BaseSettings):
    """Activity log configuration."""

    model_config = SettingsConfigDict(
        env_prefix="AUDIT_",
        extra="ignore"
    )

    retry_attempts: int = Field(
        default=2,
        ge=1,
        le=10,
        description="Attempts to persist one activity record"
    )
    retry_wait_seconds: float = Field(
        default=0.1,
        ge=0.0,
        le=30.0,
        description="Base wait between activity write retries"
    )
    log_json: bool = Field(
        default=True,
        description="Render structured logs as JSON (console renderer otherwise)"
    )


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    # Authorization
    elevated_role: str = Field(
        default="super_admin",
        min_length=1,
        description="Role allowed to run system-wide recalculation"
    )


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def app(self) -> AppSettings:
        return AppSettings()

    @property
    def rollup(self) -> RollupSettings:
        return RollupSettings()

    @property
    def audit(self) -> AuditSettings:
        return AuditSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, plus "{name}_error"
    entries describing any failure. Useful for startup checks.
    """
    results = {}
    settings = get_settings()

    for name in ("app", "rollup", "audit"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
