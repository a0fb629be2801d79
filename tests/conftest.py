"""Shared fixtures: temp SQLite database, fake provider and a ServiceContext.

Hey future me - the context fixture wires REAL repositories (file based SQLite in
tmp_path) with a fake provider and mocked media ports. The scheduler is NOT
started: jobs queued by the code under test just sit in its queue, which lets
tests assert on `scheduler.running_instances(...)` without anything running.
Use the `run_job` fixture to execute a job inline.
"""

import dataclasses
from collections.abc import AsyncIterator, Awaitable, Callable
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock

import pytest

from tubekeeper.application.context import ServiceContext
from tubekeeper.application.scheduler.job import Job
from tubekeeper.application.scheduler.scheduler import Scheduler
from tubekeeper.application.services.notification_bus import NotificationBus
from tubekeeper.application.services.video_provider_registry import VideoProviderRegistry
from tubekeeper.config import (
    DatabaseSettings,
    DownloadSettings,
    SchedulerSettings,
    Settings,
    StorageSettings,
)
from tubekeeper.domain.entities import JobExecution, Subscription, User, Video
from tubekeeper.domain.exceptions import ExternalServiceError, InvalidURLError
from tubekeeper.domain.ports import (
    IMediaDownloader,
    IThumbnailStore,
    IVideoProvider,
    VideoProviderState,
)
from tubekeeper.infrastructure.persistence import Database

FAKE_URL_PREFIX = "https://videos.example/playlist/"


class FakeVideoProvider(IVideoProvider):
    """In-memory provider: playlists are lists of Videos keyed by playlist id."""

    def __init__(self, provider_id: str = "fake", url_prefix: str = FAKE_URL_PREFIX) -> None:
        self._provider_id = provider_id
        self._url_prefix = url_prefix
        self.playlists: dict[str, list[Video]] = {}
        self.failing_playlists: set[str] = set()
        self.fail_statistics = False
        self.statistics_batches: list[int] = []
        self.configured_with: dict[str, Any] | None = None
        self.batch_size = 50

    @property
    def provider_id(self) -> str:
        return self._provider_id

    @property
    def display_name(self) -> str:
        return "Fake videos"

    @property
    def max_batch_size(self) -> int:
        return self.batch_size

    def configure(self, settings: dict[str, Any]) -> None:
        self.validate_configuration(settings)
        self.configured_with = dict(settings)

    def unconfigure(self) -> None:
        self.configured_with = None

    def validate_configuration(self, settings: dict[str, Any]) -> None:
        if "api_key" not in settings:
            raise ValueError("api_key is required")

    def validate_subscription_url(self, url: str) -> None:
        if not url.startswith(self._url_prefix):
            raise InvalidURLError(f"Not a {self._provider_id} URL: {url}")

    async def fetch_subscription(self, url: str) -> Subscription:
        self.validate_subscription_url(url)
        playlist_id = url[len(self._url_prefix) :]
        return Subscription(
            name=f"Playlist {playlist_id}",
            provider_id=self._provider_id,
            provider_native_id=playlist_id,
            channel_name="Some Channel",
            thumbnail_url=f"https://img.example/{playlist_id}.jpg",
        )

    async def fetch_videos(self, subscription: Subscription) -> AsyncIterator[Video]:
        if subscription.provider_native_id in self.failing_playlists:
            raise ExternalServiceError(f"Playlist {subscription.provider_native_id} is gone")
        for video in self.playlists.get(subscription.provider_native_id, []):
            yield dataclasses.replace(video)

    async def update_videos(
        self,
        videos: list[Video],
        update_metadata: bool = False,
        update_statistics: bool = False,
    ) -> None:
        if self.fail_statistics:
            raise ExternalServiceError("quota exceeded")
        self.statistics_batches.append(len(videos))
        if update_statistics:
            for video in videos:
                video.view_count = 100 + video.playlist_index
                video.set_rating_from_votes(3, 1)

    def get_subscription_url(self, subscription: Subscription) -> str:
        return f"{self._url_prefix}{subscription.provider_native_id}"

    def get_video_url(self, video: Video) -> str:
        return f"https://videos.example/watch/{video.provider_native_id}"


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings pointing every path into tmp_path."""
    return Settings(
        _env_file=None,
        database=DatabaseSettings(url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"),
        scheduler=SchedulerSettings(concurrency=1),
        download=DownloadSettings(
            download_path=tmp_path / "downloads",
            subscription_limit=-1,
            global_limit=-1,
            max_attempts=3,
        ),
        storage=StorageSettings(media_root=tmp_path / "media"),
    )


@pytest.fixture
async def database(settings: Settings) -> AsyncIterator[Database]:
    """File based SQLite database with all tables created."""
    db = Database(settings)
    await db.create_tables()
    yield db
    await db.close()


@pytest.fixture
def provider_factory() -> type[FakeVideoProvider]:
    """The fake provider class, for tests that build their own registries."""
    return FakeVideoProvider


@pytest.fixture
def fake_provider() -> FakeVideoProvider:
    return FakeVideoProvider()


@pytest.fixture
def thumbnail_store() -> AsyncMock:
    store = AsyncMock(spec=IThumbnailStore)
    store.fetch = AsyncMock(side_effect=lambda url, category, identifier: f"/media/thumbs/{category}/{identifier}.jpg")
    return store


@pytest.fixture
def media_downloader() -> AsyncMock:
    downloader = AsyncMock(spec=IMediaDownloader)
    downloader.download = AsyncMock(return_value=4096)
    return downloader


@pytest.fixture
def context(
    settings: Settings,
    database: Database,
    fake_provider: FakeVideoProvider,
    thumbnail_store: AsyncMock,
    media_downloader: AsyncMock,
) -> ServiceContext:
    """ServiceContext on the temp database; the scheduler is not started."""
    registry = VideoProviderRegistry(database.unit_of_work, [fake_provider])
    fake_provider.state = VideoProviderState.OK
    return ServiceContext(
        settings=settings,
        unit_of_work=database.unit_of_work,
        scheduler=Scheduler(concurrency=1, max_tick_seconds=0.05),
        notification_bus=NotificationBus(),
        provider_registry=registry,
        thumbnail_store=thumbnail_store,
        media_downloader=media_downloader,
    )


@pytest.fixture
async def user(context: ServiceContext) -> User:
    async with context.unit_of_work() as uow:
        return await uow.users.add(User(username="alice"))


@pytest.fixture
def make_subscription(context: ServiceContext, user: User) -> Callable[..., Awaitable[Subscription]]:
    """Factory storing a subscription of `user` (kwargs override fields)."""

    async def _make(playlist_id: str = "PL1", **fields: Any) -> Subscription:
        subscription = Subscription(
            name=fields.pop("name", f"Playlist {playlist_id}"),
            provider_id="fake",
            provider_native_id=playlist_id,
            user_id=user.id,
            **fields,
        )
        async with context.unit_of_work() as uow:
            return await uow.subscriptions.add(subscription)

    return _make


@pytest.fixture
def make_video(context: ServiceContext) -> Callable[..., Awaitable[Video]]:
    """Factory storing a video of a subscription (kwargs override fields)."""

    async def _make(subscription: Subscription, native_id: str, index: int, **fields: Any) -> Video:
        video = Video(
            provider_native_id=native_id,
            name=fields.pop("name", f"Video {native_id}"),
            playlist_index=index,
            subscription_id=subscription.id,
            **fields,
        )
        async with context.unit_of_work() as uow:
            return await uow.videos.add(video)

    return _make


@pytest.fixture
def run_job(context: ServiceContext) -> Callable[..., Awaitable[Job]]:
    """Execute a job inline (no scheduler) and return the job instance."""

    async def _run(job_class: type[Job], *args: Any, user_id: int | None = None) -> Job:
        async with context.unit_of_work() as uow:
            execution = await uow.jobs.add(JobExecution(user_id=user_id))
        job = job_class(execution, context, *args)
        await job.run()
        await job.flush_progress()
        return job

    return _run
