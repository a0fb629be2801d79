"""Configuration module for tubekeeper."""

from .settings import (
    DatabaseSettings,
    DownloadSettings,
    NotificationSettings,
    ObservabilitySettings,
    SchedulerSettings,
    Settings,
    StorageSettings,
    get_settings,
)

__all__ = [
    "Settings",
    "DatabaseSettings",
    "SchedulerSettings",
    "DownloadSettings",
    "StorageSettings",
    "NotificationSettings",
    "ObservabilitySettings",
    "get_settings",
]
