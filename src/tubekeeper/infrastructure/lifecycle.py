"""Application lifecycle management for startup and shutdown tasks.

Hey future me - this is the ONLY place that wires concrete infrastructure
(SQLAlchemy, httpx, yt-dlp) into the application layer. Whatever process hosts
tubekeeper (a web app lifespan, a CLI, a test) does:

```python
async with app_lifespan(providers=[MyYouTubeProvider()]) as context:
    context.subscriptions.synchronize_all()
    ...
```

STARTUP ORDER (matters!):
1. logging, directories, DB schema
2. provider configs loaded (sync jobs need configured providers)
3. scheduler.initialize(): recovery running → interrupted, THEN workers start
4. recurring jobs: global synchronize (cron) + job history cleanup (interval)

SHUTDOWN: scheduler drains its queue, then HTTP client and engine are closed.
"""

import logging
from collections.abc import AsyncGenerator, Iterable
from contextlib import asynccontextmanager
from datetime import timedelta

from tubekeeper.application.context import ServiceContext
from tubekeeper.application.jobs.job_history_cleanup_job import JobHistoryCleanupJob
from tubekeeper.application.scheduler.scheduler import Scheduler
from tubekeeper.application.services.notification_bus import NotificationBus
from tubekeeper.application.services.video_provider_registry import VideoProviderRegistry
from tubekeeper.config import Settings, get_settings
from tubekeeper.domain.ports import IMediaDownloader, IThumbnailStore, IVideoProvider
from tubekeeper.infrastructure.integrations.thumbnail_store import HttpThumbnailStore
from tubekeeper.infrastructure.integrations.ytdlp_downloader import YtDlpMediaDownloader
from tubekeeper.infrastructure.observability import configure_logging
from tubekeeper.infrastructure.persistence import Database

logger = logging.getLogger(__name__)

CLEANUP_JOB_ID = "job-history-cleanup"


def build_context(
    settings: Settings,
    database: Database,
    providers: Iterable[IVideoProvider] = (),
    media_downloader: IMediaDownloader | None = None,
    thumbnail_store: IThumbnailStore | None = None,
) -> ServiceContext:
    """Create the ServiceContext with the default infrastructure adapters.

    Nothing is started here; see app_lifespan().
    """
    return ServiceContext(
        settings=settings,
        unit_of_work=database.unit_of_work,
        scheduler=Scheduler(concurrency=settings.scheduler.concurrency),
        notification_bus=NotificationBus(settings.notifications.retention_seconds),
        provider_registry=VideoProviderRegistry(database.unit_of_work, providers),
        thumbnail_store=thumbnail_store
        or HttpThumbnailStore(
            settings.storage.media_root,
            media_url=settings.storage.media_url,
            timeout=settings.storage.thumbnail_timeout,
        ),
        media_downloader=media_downloader or YtDlpMediaDownloader(),
    )


@asynccontextmanager
async def app_lifespan(
    settings: Settings | None = None,
    providers: Iterable[IVideoProvider] = (),
    media_downloader: IMediaDownloader | None = None,
    thumbnail_store: IThumbnailStore | None = None,
) -> AsyncGenerator[ServiceContext, None]:
    """Start tubekeeper and stop it again when the block exits.

    Yields:
        The running ServiceContext
    """
    settings = settings or get_settings()
    configure_logging(
        log_level=settings.observability.log_level,
        json_format=settings.observability.log_json_format,
        app_name=settings.app_name,
    )
    logger.info(f"Starting application: {settings.app_name}")

    settings.ensure_directories()
    database = Database(settings)
    context: ServiceContext | None = None
    try:
        await database.create_tables()
        logger.info(f"Database initialized: {settings.database.url}")

        context = build_context(settings, database, providers, media_downloader, thumbnail_store)
        await context.provider_registry.load()

        await context.scheduler.initialize()
        context.subscriptions.schedule_global_synchronize()
        context.scheduler.add_job(
            JobHistoryCleanupJob,
            trigger=timedelta(hours=settings.scheduler.cleanup_interval_hours),
            job_id=CLEANUP_JOB_ID,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        logger.info("Application started")

        yield context

    finally:
        logger.info("Shutting down application")
        if context is not None:
            await context.scheduler.shutdown(wait=True)
            if isinstance(context.thumbnail_store, HttpThumbnailStore):
                await context.thumbnail_store.close()
        await database.close()
        logger.info("Application stopped")
