"""Decides which videos get downloaded and enqueues the DownloadJobs.

Hey future me - every download knob resolves through ONE cascade:

    subscription override  →  user preference  →  global default (Settings.download)

first_non_null wins. Limits use -1 for "unlimited", any value >= 0 is a cap
(0 = download nothing). Keep that cascade in effective_settings() only; the
sync job, the download job and the video service all ask this class instead of
re-implementing it.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from tubekeeper.domain.entities import Subscription, User, UserPreferences, Video, VideoOrder, first_non_null

if TYPE_CHECKING:
    from tubekeeper.application.context import ServiceContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EffectiveDownloadSettings:
    """Download settings of one subscription after applying the cascade."""

    enabled: bool
    global_limit: int
    subscription_limit: int
    order: VideoOrder
    mark_deleted_as_watched: bool
    automatically_delete_watched: bool
    download_path: Path
    file_pattern: str


@dataclass
class GlobalDownloadBudget:
    """Snapshot of the downloaded count per user for one synchronize pass.

    Listen up: the count of a user is read ONCE (first subscription of that user
    in the pass) and every later subscription is limited against that same
    number. Downloads queued by earlier subscriptions of the pass are not
    subtracted, so a pass may overshoot the global limit; the next pass sees the
    real count again.
    """

    downloaded: dict[int, int] = field(default_factory=dict)


def download_job_id(video_id: int, attempt: int = 1) -> str:
    """Scheduler job id used for one download attempt of a video."""
    if attempt > 1:
        return f"download-video-{video_id}-attempt-{attempt}"
    return f"download-video-{video_id}"


class DownloadCoordinator:
    """Evaluates download limits and enqueues DownloadJobs."""

    def __init__(self, context: "ServiceContext") -> None:
        self._context = context

    def effective_settings(
        self, subscription: Subscription | None, user: User | None
    ) -> EffectiveDownloadSettings:
        defaults = self._context.settings.download
        prefs = user.preferences if user is not None else UserPreferences()
        sub = subscription

        return EffectiveDownloadSettings(
            enabled=first_non_null(
                sub.auto_download if sub else None, prefs.auto_download, defaults.auto_download
            ),
            global_limit=first_non_null(prefs.download_global_limit, defaults.global_limit),
            subscription_limit=first_non_null(
                sub.download_limit if sub else None,
                prefs.download_subscription_limit,
                defaults.subscription_limit,
            ),
            order=first_non_null(
                sub.download_order if sub else None, prefs.download_order, defaults.order
            ),
            mark_deleted_as_watched=first_non_null(
                prefs.mark_deleted_as_watched, defaults.mark_deleted_as_watched
            ),
            automatically_delete_watched=first_non_null(
                sub.auto_delete_watched if sub else None,
                prefs.automatically_delete_watched,
                defaults.automatically_delete_watched,
            ),
            download_path=Path(first_non_null(prefs.download_path, defaults.download_path)),
            file_pattern=first_non_null(prefs.download_file_pattern, defaults.file_pattern),
        )

    async def process_subscription(
        self,
        subscription: Subscription,
        user: User | None = None,
        budget: GlobalDownloadBudget | None = None,
    ) -> list[Video]:
        """Enqueue downloads for the best candidates of a subscription.

        Args:
            subscription: Saved subscription
            user: Owner (its preferences take part in the cascade)
            budget: Shared budget of the current synchronize pass; a fresh
                snapshot is taken when None

        Returns:
            Videos for which a DownloadJob was enqueued
        """
        assert subscription.id is not None
        settings = self.effective_settings(subscription, user)
        logger.info(
            f"Processing downloads of subscription {subscription.id} [{subscription.name}]: "
            f"enabled={settings.enabled} global_limit={settings.global_limit} "
            f"limit={settings.subscription_limit} order={settings.order.value}"
        )
        if not settings.enabled:
            return []

        user_id = subscription.user_id
        async with self._context.unit_of_work() as uow:
            candidates = await uow.videos.list_download_candidates(subscription.id, settings.order)
            logger.debug(f"{len(candidates)} download candidates")

            if settings.subscription_limit >= 0:
                downloaded = await uow.videos.count_downloaded_for_subscription(subscription.id)
                allowed = max(settings.subscription_limit - downloaded, 0)
                candidates = candidates[:allowed]
                logger.debug(f"Subscription limit allows {allowed} more downloads")

            if settings.global_limit >= 0 and user_id is not None:
                budget = budget if budget is not None else GlobalDownloadBudget()
                if user_id not in budget.downloaded:
                    budget.downloaded[user_id] = await uow.videos.count_downloaded_for_user(user_id)
                allowed = max(settings.global_limit - budget.downloaded[user_id], 0)
                candidates = candidates[:allowed]
                logger.debug(f"Global limit allows {allowed} more downloads")

        return [video for video in candidates if self.schedule_download(video, user_id)]

    def is_download_pending(self, video_id: int) -> bool:
        """Check whether any attempt of a video's download is queued or running."""
        scheduler = self._context.scheduler
        max_attempts = self._context.settings.download.max_attempts
        return any(
            scheduler.running_instances(download_job_id(video_id, attempt)) > 0
            for attempt in range(1, max_attempts + 1)
        )

    def schedule_download(self, video: Video, user_id: int | None, attempt: int = 1) -> bool:
        """Enqueue one DownloadJob unless the video is already queued/downloading.

        Returns:
            True if a job was enqueued
        """
        from tubekeeper.application.jobs.download_job import DownloadJob

        assert video.id is not None
        job_id = download_job_id(video.id, attempt)

        # Retries are queued by the running attempt itself, so they only check their own id
        pending = (
            self._context.scheduler.running_instances(job_id) > 0
            if attempt > 1
            else self.is_download_pending(video.id)
        )
        if pending:
            logger.debug(f"Video {video.id} already queued for download")
            return False

        logger.info(
            f"Enqueuing download of video {video.id} [{video.provider_native_id} {video.name}] "
            f"index={video.playlist_index} attempt={attempt}"
        )
        self._context.scheduler.add_job(
            DownloadJob,
            args=(video.id, attempt),
            user_id=user_id,
            job_id=job_id,
            max_instances=1,
        )
        return True
