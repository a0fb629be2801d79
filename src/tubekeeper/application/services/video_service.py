"""Video Service - listing videos and the watched / delete / download actions."""

import logging
import re
from typing import TYPE_CHECKING

from tubekeeper.application.jobs.delete_video_job import DeleteVideoJob
from tubekeeper.application.scheduler.scheduler import ScheduledJob
from tubekeeper.domain.entities import Subscription, User, Video, VideoOrder
from tubekeeper.domain.exceptions import EntityNotFoundException

if TYPE_CHECKING:
    from tubekeeper.application.context import ServiceContext

logger = logging.getLogger(__name__)

WORD_PATTERN = re.compile(r"\w+")


class VideoService:
    """User-facing operations on videos."""

    def __init__(self, context: "ServiceContext") -> None:
        self._context = context

    async def list_videos(
        self,
        user_id: int,
        order: VideoOrder = VideoOrder.NEWEST,
        query: str | None = None,
        subscription_id: int | None = None,
        folder_id: int | None = None,
        only_watched: bool | None = None,
        only_downloaded: bool | None = None,
    ) -> list[Video]:
        """Filter the videos of a user.

        Args:
            user_id: Owner
            order: Sort order
            query: Free text; every word must match title, description,
                uploader or subscription name
            subscription_id: Only this subscription
            folder_id: Only subscriptions anywhere below this folder
            only_watched: True/False filter, None = both
            only_downloaded: True/False filter, None = both
        """
        words = WORD_PATTERN.findall(query) if query else None

        subscription_ids: list[int] | None = None
        if folder_id is not None:
            subscription_ids = await self._context.subscriptions.traverse(
                user_id,
                folder_id,
                lambda node: node.id if isinstance(node, Subscription) else None,
            )
        if subscription_id is not None:
            subscription_ids = (
                [subscription_id]
                if subscription_ids is None or subscription_id in subscription_ids
                else []
            )

        async with self._context.unit_of_work() as uow:
            return await uow.videos.search(
                user_id,
                order,
                words=words,
                subscription_ids=subscription_ids,
                only_watched=only_watched,
                only_downloaded=only_downloaded,
            )

    async def mark_watched(self, video_id: int) -> Video:
        """Mark a video watched.

        When auto-delete of watched videos is effective for its subscription and
        the video is downloaded, its files get deleted and the subscription is
        re-synchronized (so the freed slot gets the next download).
        """
        video, subscription, user = await self._load(video_id)

        async with self._context.unit_of_work() as uow:
            video.watched = True
            await uow.videos.update(video)

        if video.is_downloaded:
            settings = self._context.download_coordinator.effective_settings(subscription, user)
            if settings.automatically_delete_watched:
                self.delete_files(video, subscription.user_id, resynchronize=True)
        return video

    async def mark_unwatched(self, video_id: int) -> Video:
        """Mark a video not watched and re-synchronize its subscription."""
        video, subscription, _ = await self._load(video_id)

        async with self._context.unit_of_work() as uow:
            video.watched = False
            await uow.videos.update(video)

        assert subscription.id is not None
        self._context.subscriptions.synchronize(subscription.id, subscription.user_id)
        return video

    def delete_files(
        self, video: Video, user_id: int | None = None, resynchronize: bool = False
    ) -> ScheduledJob:
        """Schedule deletion of the downloaded files of a video.

        Args:
            video: Video whose files go away
            user_id: Owner of the job execution
            resynchronize: Synchronize the subscription once the files are gone
        """
        assert video.id is not None
        logger.info(f"Scheduling deletion of the files of video {video.id} [{video.name}]")
        return self._context.scheduler.add_job(
            DeleteVideoJob, args=(video.id, resynchronize), user_id=user_id
        )

    async def download(self, video_id: int) -> bool:
        """Queue a download of a video right away, ignoring the limits.

        Watched videos are still skipped by the DownloadJob.

        Returns:
            False if a download of that video is already queued
        """
        video, subscription, _ = await self._load(video_id)
        return self._context.download_coordinator.schedule_download(video, subscription.user_id)

    async def _load(self, video_id: int) -> tuple[Video, Subscription, User | None]:
        async with self._context.unit_of_work() as uow:
            video = await uow.videos.get_by_id(video_id)
            if video is None or video.subscription_id is None:
                raise EntityNotFoundException("Video", video_id)
            subscription = await uow.subscriptions.get_by_id(video.subscription_id)
            if subscription is None:
                raise EntityNotFoundException("Subscription", video.subscription_id)
            user = (
                await uow.users.get_by_id(subscription.user_id)
                if subscription.user_id is not None
                else None
            )
        return video, subscription, user
