"""Tests for application settings."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from tubekeeper.config import DatabaseSettings, SchedulerSettings, Settings
from tubekeeper.domain.entities import VideoOrder


class TestSettings:
    """Test defaults, env overrides and validation."""

    def test_defaults(self) -> None:
        settings = Settings(_env_file=None)
        assert settings.scheduler.sync_schedule == "5 * * * *"
        assert settings.download.global_limit == -1
        assert settings.download.subscription_limit == 5
        assert settings.download.order == VideoOrder.PLAYLIST

    def test_nested_env_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TUBEKEEPER_SCHEDULER__CONCURRENCY", "4")
        monkeypatch.setenv("TUBEKEEPER_DOWNLOAD__ORDER", "oldest")

        settings = Settings(_env_file=None)

        assert settings.scheduler.concurrency == 4
        assert settings.download.order == VideoOrder.OLDEST

    def test_invalid_cron_rejected(self) -> None:
        with pytest.raises(ValidationError, match="Invalid cron expression"):
            SchedulerSettings(sync_schedule="every hour")

    @pytest.mark.parametrize("value", [-2, -100])
    def test_limits_below_unlimited_rejected(self, value: int, monkeypatch) -> None:
        monkeypatch.setenv("TUBEKEEPER_DOWNLOAD__GLOBAL_LIMIT", str(value))
        with pytest.raises(ValidationError):
            Settings(_env_file=None)

    def test_sqlite_path(self) -> None:
        settings = Settings(
            _env_file=None, database=DatabaseSettings(url="sqlite+aiosqlite:///./data/app.db")
        )
        assert settings.get_sqlite_db_path() == Path("./data/app.db")

    @pytest.mark.parametrize(
        "url", ["sqlite+aiosqlite:///:memory:", "postgresql+asyncpg://u:p@db/app"]
    )
    def test_no_sqlite_path(self, url: str) -> None:
        settings = Settings(_env_file=None, database=DatabaseSettings(url=url))
        assert settings.get_sqlite_db_path() is None

    def test_ensure_directories(self, settings: Settings) -> None:
        settings.ensure_directories()
        assert settings.download.download_path.is_dir()
        assert settings.storage.media_root.is_dir()
