"""Application settings loaded from environment variables and .env files.

Hey future me - nested groups map to env vars with a double underscore, e.g.
TUBEKEEPER_SCHEDULER__CONCURRENCY=4 or TUBEKEEPER_DOWNLOAD__ORDER=oldest.
Everything that the user can override per account (download limits, order, ...)
lives in UserPreferences; the values here are only the global fallbacks.
"""

from functools import lru_cache
from pathlib import Path

from apscheduler.triggers.cron import CronTrigger
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from tubekeeper.domain.entities import VideoOrder


class DatabaseSettings(BaseModel):
    """Database connection settings."""

    url: str = "sqlite+aiosqlite:///./data/tubekeeper.db"
    echo: bool = False
    pool_pre_ping: bool = True
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 3600


class SchedulerSettings(BaseModel):
    """Background job scheduler settings."""

    concurrency: int = Field(default=2, ge=1)
    # Standard 5-field crontab (minute hour day month weekday)
    sync_schedule: str = "5 * * * *"
    job_history_days: int = Field(default=30, ge=1)
    cleanup_interval_hours: int = Field(default=24, ge=1)

    # Yo, reject broken cron expressions HERE instead of when the trigger first fires.
    # A typo in the schedule would otherwise only show up hours later as a scheduler crash.
    @field_validator("sync_schedule")
    @classmethod
    def validate_sync_schedule(cls, value: str) -> str:
        try:
            CronTrigger.from_crontab(value)
        except ValueError as e:
            raise ValueError(f"Invalid cron expression '{value}': {e}") from e
        return value


class DownloadSettings(BaseModel):
    """Global download defaults (used when neither subscription nor user override)."""

    auto_download: bool = True
    global_limit: int = Field(default=-1, ge=-1)
    subscription_limit: int = Field(default=5, ge=-1)
    order: VideoOrder = VideoOrder.PLAYLIST
    mark_deleted_as_watched: bool = True
    automatically_delete_watched: bool = True
    max_attempts: int = Field(default=3, ge=1)
    download_path: Path = Path("./data/downloads")
    file_pattern: str = "${channel}/${playlist}/S01E${playlist_index} - ${title} [${id}]"


class StorageSettings(BaseModel):
    """Local storage for re-hosted thumbnails."""

    media_root: Path = Path("./data/media")
    media_url: str = "/media/"
    thumbnail_timeout: float = 15.0


class NotificationSettings(BaseModel):
    """In-memory notification feed settings."""

    # Clients poll every few seconds; 15 minutes covers flaky connections.
    retention_seconds: int = Field(default=15 * 60, ge=1)


class ObservabilitySettings(BaseModel):
    """Logging settings."""

    log_level: str = "INFO"
    log_json_format: bool = False


class Settings(BaseSettings):
    """Root settings object."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="TUBEKEEPER_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    app_name: str = "tubekeeper"
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    download: DownloadSettings = Field(default_factory=DownloadSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)

    def get_sqlite_db_path(self) -> Path | None:
        """Return the SQLite database file path, or None for other backends."""
        url = self.database.url
        if not url.startswith("sqlite"):
            return None
        _, _, path = url.partition(":///")
        if not path or path == ":memory:":
            return None
        return Path(path)

    def ensure_directories(self) -> None:
        """Create the storage directories used at runtime."""
        self.download.download_path.mkdir(parents=True, exist_ok=True)
        self.storage.media_root.mkdir(parents=True, exist_ok=True)
        db_path = self.get_sqlite_db_path()
        if db_path is not None:
            db_path.parent.mkdir(parents=True, exist_ok=True)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the cached application settings."""
    return Settings()
