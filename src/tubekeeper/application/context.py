"""ServiceContext - the explicit dependency container.

Hey future me - there are NO module-level singletons in tubekeeper. Whatever a
job or service needs (DB, scheduler, providers, ...) hangs off this object, and
jobs receive it as their second constructor argument. Tests build their own
context with fakes; production builds one in infrastructure/lifecycle.py.
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field

from tubekeeper.application.scheduler.scheduler import Scheduler
from tubekeeper.application.services.download_coordinator import DownloadCoordinator
from tubekeeper.application.services.notification_bus import NotificationBus
from tubekeeper.application.services.subscription_service import SubscriptionService
from tubekeeper.application.services.video_provider_registry import VideoProviderRegistry
from tubekeeper.application.services.video_service import VideoService
from tubekeeper.config import Settings
from tubekeeper.domain.ports import IMediaDownloader, IThumbnailStore, IUnitOfWork


@dataclass
class ServiceContext:
    """Everything jobs and services share for the lifetime of the process."""

    settings: Settings
    unit_of_work: Callable[[], IUnitOfWork]
    scheduler: Scheduler
    notification_bus: NotificationBus
    provider_registry: VideoProviderRegistry
    thumbnail_store: IThumbnailStore
    media_downloader: IMediaDownloader
    # Held by SynchronizeJob for a whole pass; only one pass at a time
    sync_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    download_coordinator: DownloadCoordinator = field(init=False)
    subscriptions: SubscriptionService = field(init=False)
    videos: VideoService = field(init=False)

    def __post_init__(self) -> None:
        self.download_coordinator = DownloadCoordinator(self)
        self.subscriptions = SubscriptionService(self)
        self.videos = VideoService(self)
        self.scheduler.set_context(self)
