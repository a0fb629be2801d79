"""DownloadJob - fetches the media of ONE video.

Hey future me - this job is always queued by DownloadCoordinator.schedule_download(),
never directly. The coordinator gives it the job_id `download-video-<id>` with
max_instances=1, and checks every attempt id of the video
(is_download_pending) before queueing, which keeps the same video from being
downloaded twice while a retry is pending.

RETRIES:
A failed download re-queues itself with attempt+1 (fresh job_id, see
schedule_download) and finishes normally, so every attempt shows up in the job
history. The LAST attempt (download.max_attempts) re-raises and the Scheduler
turns it into a failed execution.
"""

import asyncio
from typing import TYPE_CHECKING

from tubekeeper.application.scheduler.job import Job
from tubekeeper.domain.entities import JobExecution
from tubekeeper.domain.exceptions import MediaDownloadError
from tubekeeper.infrastructure.filesystem.media_files import build_output_prefix

if TYPE_CHECKING:
    from tubekeeper.application.context import ServiceContext


class DownloadJob(Job):
    """Downloads one video through the IMediaDownloader port."""

    name = "DownloadJob"

    def __init__(
        self,
        execution: JobExecution,
        context: "ServiceContext",
        video_id: int,
        attempt: int = 1,
    ) -> None:
        super().__init__(execution, context)
        self._video_id = video_id
        self._attempt = attempt

    def get_description(self) -> str:
        if self._attempt > 1:
            return f"Downloading video {self._video_id} (attempt {self._attempt})"
        return f"Downloading video {self._video_id}"

    async def run(self) -> None:
        async with self.context.unit_of_work() as uow:
            video = await uow.videos.get_by_id(self._video_id)
            subscription = (
                await uow.subscriptions.get_by_id(video.subscription_id)
                if video is not None and video.subscription_id is not None
                else None
            )
            user = (
                await uow.users.get_by_id(subscription.user_id)
                if subscription is not None and subscription.user_id is not None
                else None
            )

        if video is None or subscription is None:
            self.log.info(f"Video {self._video_id} no longer exists, nothing to download")
            return

        # Another job (or the user) got there first
        if video.is_downloaded or video.watched:
            self.log.info(
                f"Skipping video {video.id} [{video.provider_native_id}]: "
                f"downloaded={video.is_downloaded} watched={video.watched}"
            )
            return

        provider = self.context.provider_registry.get_for_subscription(subscription)
        settings = self.context.download_coordinator.effective_settings(subscription, user)
        output_prefix = await asyncio.to_thread(
            build_output_prefix, settings.download_path, settings.file_pattern, video, subscription
        )

        await self.usr_log(f"Downloading {video.name}", progress=0.0)
        try:
            size = await self.context.media_downloader.download(
                video, provider.get_video_url(video), output_prefix
            )
        except MediaDownloadError as e:
            max_attempts = self.context.settings.download.max_attempts
            if self._attempt >= max_attempts:
                raise
            await self.usr_warn(
                f"Download of {video.name} failed (attempt {self._attempt}/{max_attempts}): {e}"
            )
            self.context.download_coordinator.schedule_download(
                video, subscription.user_id, attempt=self._attempt + 1
            )
            return

        # Re-read: sync may have touched the row while we were downloading
        async with self.context.unit_of_work() as uow:
            current = await uow.videos.get_by_id(self._video_id)
            if current is None:
                self.log.warning(f"Video {self._video_id} was deleted during its download")
                return
            current.downloaded_path = str(output_prefix)
            current.downloaded_size = size
            await uow.videos.update(current)

        self.log.info(f"Downloaded video {video.id} to {output_prefix} ({size} bytes)")
        await self.usr_log(f"Downloaded {video.name}", progress=1.0)
