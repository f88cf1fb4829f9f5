"""
Configuration Management for Expense Recorder

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Every timing constant of the sync protocol lives in SyncSettings so tests
can shrink the time unit without touching the engine.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LocalStorageSettings(BaseSettings):
    """Local key-value persistence configuration."""

    model_config = SettingsConfigDict(
        env_prefix="EXPENSE_STORAGE_",
        extra="ignore"
    )

    data_dir: str = Field(
        default="~/.expense_recorder",
        description="Directory holding the local JSON blobs"
    )
    auto_backup_default: bool = Field(
        default=True,
        description="Whether the combined backup blob is written until the user changes it"
    )

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir).expanduser()


class SyncSettings(BaseSettings):
    """Remote sync protocol timing (all values in seconds)."""

    model_config = SettingsConfigDict(
        env_prefix="EXPENSE_SYNC_",
        extra="ignore"
    )

    enabled: bool = Field(
        default=True,
        description="Start the sync engine when a user signs in"
    )
    push_debounce_seconds: float = Field(
        default=2.0,
        gt=0,
        description="Quiet period after the last local change before pushing"
    )
    remote_settle_seconds: float = Field(
        default=0.5,
        ge=0,
        description="How long local changes are ignored after applying a remote document"
    )
    poll_interval_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Polling interval for backends without push notifications"
    )
    remote_timeout_seconds: float = Field(
        default=20.0,
        gt=0,
        description="Transport timeout for a single remote call"
    )


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets remote document storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use"
    )
    documents_sheet_name: str = Field(
        default="SyncDocuments",
        description="Worksheet holding one sync document per user"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before enabling sync."
            )
        return v


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

    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        description="Minimum log level"
    )
    log_json: bool = Field(
        default=True,
        description="Render logs as JSON lines (console renderer otherwise)"
    )
    audit_history_size: int = Field(
        default=500,
        ge=0,
        description="Number of audit events kept in memory"
    )

    @field_validator('log_level')
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


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

    # Note: These are loaded lazily to allow partial configuration

    @property
    def storage(self) -> LocalStorageSettings:
        return LocalStorageSettings()

    @property
    def sync(self) -> SyncSettings:
        return SyncSettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, object]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid} plus "<name>_error" entries.
    Google Sheets is optional: without it the app runs local-only.
    """
    results: dict[str, object] = {}
    settings = get_settings()

    for name in ("storage", "sync", "google_sheets", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results


def load_google_sheets_settings() -> Optional[GoogleSheetsSettings]:
    """Return Google Sheets settings, or None when they are not configured."""
    try:
        return get_settings().google_sheets
    except ValueError:
        return None
