"""Configuration package."""

from expense_recorder.config.settings import (
    AppSettings,
    GoogleSheetsSettings,
    LocalStorageSettings,
    Settings,
    SyncSettings,
    get_settings,
    load_google_sheets_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "GoogleSheetsSettings",
    "LocalStorageSettings",
    "Settings",
    "SyncSettings",
    "get_settings",
    "load_google_sheets_settings",
    "validate_all_settings",
]
