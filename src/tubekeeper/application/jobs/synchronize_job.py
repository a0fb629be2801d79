"""SynchronizeJob - reconciles remote playlists with the local library.

Hey future me - this is the heart of tubekeeper! Every other feature (new video
badges, auto downloads, "deleted on disk" detection) is a side effect of this job.

FLOW (per subscription, in this order):
```
clear is_new ──► discover (provider.fetch_videos)
             ──► reconcile new     (insert unknown videos, fix playlist indices)
             ──► reconcile deleted (downloaded_path set but no video file left)
             ──► refresh metadata  (re-host http thumbnails, batched statistics)
             ──► trigger downloads (DownloadCoordinator)
             ──► last_synchronized = now
```

RULES:
- Only ONE synchronize pass runs at a time (context.sync_lock). A second job
  simply waits for the lock, it is NOT dropped.
- Each subscription is its own failure boundary: whatever blows up (discovery,
  reconcile, downloads) skips that subscription with one usr_err and the rest
  of the pass goes on. Thumbnail and statistics failures are only warnings.
- Filesystem trouble with a single file is a suppressed warning, not an error.
- Never hold a DB transaction across a provider call or a file operation.
"""

import asyncio
from pathlib import Path
from typing import TYPE_CHECKING

from tubekeeper.application.scheduler.job import Job
from tubekeeper.application.scheduler.progress_tracker import ProgressTracker
from tubekeeper.application.services.download_coordinator import GlobalDownloadBudget
from tubekeeper.domain.entities import JobExecution, Subscription, User, Video, utc_now
from tubekeeper.domain.ports import IVideoProvider
from tubekeeper.infrastructure.filesystem.media_files import find_files, is_video_file

if TYPE_CHECKING:
    from tubekeeper.application.context import ServiceContext

# discover, reconcile new, reconcile deleted, refresh metadata, downloads
SYNC_PHASES = 5


class SynchronizeJob(Job):
    """Synchronizes one subscription, or every subscription when none is given."""

    name = "SynchronizeJob"

    def __init__(
        self,
        execution: JobExecution,
        context: "ServiceContext",
        subscription_id: int | None = None,
    ) -> None:
        super().__init__(execution, context)
        self._subscription_id = subscription_id
        self._users: dict[int, User | None] = {}

    def get_description(self) -> str:
        if self._subscription_id is not None:
            return f"Running synchronization for subscription {self._subscription_id}"
        return "Running synchronization..."

    async def run(self) -> None:
        async with self.context.sync_lock:
            self.log.info(self.get_description())

            subscriptions = await self._load_subscriptions()
            if not subscriptions:
                await self.usr_log("Nothing to synchronize", progress=1.0, suppress_notification=True)
                return

            self.set_total_steps(len(subscriptions))
            budget = GlobalDownloadBudget()

            for subscription in subscriptions:
                progress = self.create_subtask(1, subtask_total=SYNC_PHASES)
                await self._synchronize_subscription(subscription, progress, budget)

            await self.progress_advance(0, "Synchronization finished")

    async def _load_subscriptions(self) -> list[Subscription]:
        async with self.context.unit_of_work() as uow:
            if self._subscription_id is None:
                return await uow.subscriptions.list_all()
            subscription = await uow.subscriptions.get_by_id(self._subscription_id)

        if subscription is None:
            self.log.warning(f"Subscription {self._subscription_id} no longer exists")
            return []
        return [subscription]

    async def _get_user(self, user_id: int | None) -> User | None:
        if user_id is None:
            return None
        if user_id not in self._users:
            async with self.context.unit_of_work() as uow:
                self._users[user_id] = await uow.users.get_by_id(user_id)
        return self._users[user_id]

    # =========================================================================
    # ONE SUBSCRIPTION
    # =========================================================================

    async def _synchronize_subscription(
        self,
        subscription: Subscription,
        progress: ProgressTracker,
        budget: GlobalDownloadBudget,
    ) -> None:
        """Run every phase for one subscription; any failure skips only this subscription."""
        try:
            await self._run_phases(subscription, progress, budget)
        except Exception as e:
            self.log.error(
                f"Failed to synchronize subscription {subscription.id} [{subscription.name}]: {e}",
                exc_info=True,
            )
            await self.usr_err(f"Failed to synchronize {subscription.name}: {e}")

    async def _run_phases(
        self,
        subscription: Subscription,
        progress: ProgressTracker,
        budget: GlobalDownloadBudget,
    ) -> None:
        assert subscription.id is not None
        user = await self._get_user(subscription.user_id)

        async with self.context.unit_of_work() as uow:
            await uow.videos.clear_new_flag(subscription.id)

        provider = self.context.provider_registry.get_for_subscription(subscription)
        remote_videos = [video async for video in provider.fetch_videos(subscription)]
        progress.advance(1, f"Synchronizing subscription {subscription.name}")
        await self.flush_progress()

        new_videos = await self._reconcile_new(subscription, remote_videos)
        progress.advance(1, f"{len(new_videos)} new videos in {subscription.name}")

        await self._reconcile_deleted(subscription, user)
        progress.advance(1)

        await self._refresh_metadata(subscription, provider)
        progress.advance(1)
        await self.flush_progress()

        enqueued = await self.context.download_coordinator.process_subscription(
            subscription, user, budget
        )
        if enqueued:
            self.log.info(f"Enqueued {len(enqueued)} downloads for {subscription.name}")

        async with self.context.unit_of_work() as uow:
            current = await uow.subscriptions.get_by_id(subscription.id)
            if current is not None:
                current.last_synchronized = utc_now()
                await uow.subscriptions.update(current)

    async def _reconcile_new(
        self, subscription: Subscription, remote_videos: list[Video]
    ) -> list[Video]:
        """Insert remote videos not yet known locally.

        Index fix: when rewrite_playlist_indices is on, or the remote index is
        already taken (also by a video inserted earlier in this pass), the video
        goes to 1 + highest local index.
        """
        assert subscription.id is not None
        if subscription.rewrite_playlist_indices:
            ordered = sorted(remote_videos, key=lambda v: v.publish_date)
        else:
            ordered = sorted(remote_videos, key=lambda v: v.playlist_index)

        created: list[Video] = []
        async with self.context.unit_of_work() as uow:
            existing = await uow.videos.list_by_subscription(subscription.id)
            known_ids = {video.provider_native_id for video in existing}
            used_indices = {video.playlist_index for video in existing}
            highest = max(used_indices, default=-1)

            for item in ordered:
                if item.provider_native_id in known_ids:
                    continue

                if subscription.rewrite_playlist_indices or item.playlist_index in used_indices:
                    item.playlist_index = 1 + highest

                item.id = None
                item.subscription_id = subscription.id
                item.is_new = True
                saved = await uow.videos.add(item)
                self.log.info(
                    f"New video for subscription {subscription.name}: "
                    f"{saved.provider_native_id} {saved.name} (index {saved.playlist_index})"
                )

                known_ids.add(saved.provider_native_id)
                used_indices.add(saved.playlist_index)
                highest = max(highest, saved.playlist_index)
                created.append(saved)

        return created

    async def _reconcile_deleted(self, subscription: Subscription, user: User | None) -> None:
        """Forget downloads whose video file disappeared from disk."""
        assert subscription.id is not None
        settings = self.context.download_coordinator.effective_settings(subscription, user)

        async with self.context.unit_of_work() as uow:
            videos = await uow.videos.list_by_subscription(subscription.id)

        changed: list[Video] = []
        for video in videos:
            if video.downloaded_path is None:
                continue
            if await self._check_video_deleted(video, settings.mark_deleted_as_watched):
                changed.append(video)

        if changed:
            async with self.context.unit_of_work() as uow:
                await uow.videos.update_many(changed)

    async def _check_video_deleted(self, video: Video, mark_watched: bool) -> bool:
        """Returns True if the video was found deleted and got cleaned up."""
        assert video.downloaded_path is not None
        try:
            files = await asyncio.to_thread(find_files, video.downloaded_path)
        except FileNotFoundError:
            files = []
        except OSError as e:
            self.log.error(f"Could not access path {video.downloaded_path}: {e}")
            await self.usr_warn(
                f"Could not access path {video.downloaded_path}: {e}", suppress_notification=True
            )
            return False

        if any(is_video_file(file) for file in files):
            return False

        self.log.info(f"Video {video.id} was deleted! [{video.provider_native_id} {video.name}]")
        for file in files:
            await self._delete_stray_file(file)

        video.downloaded_path = None
        video.downloaded_size = None
        if mark_watched:
            video.watched = True
        return True

    async def _delete_stray_file(self, file: Path) -> None:
        try:
            await asyncio.to_thread(file.unlink)
        except OSError as e:
            self.log.error(f"Could not delete redundant file {file}: {e}")
            await self.usr_warn(f"Could not delete redundant file {file}: {e}", suppress_notification=True)

    async def _refresh_metadata(self, subscription: Subscription, provider: IVideoProvider) -> None:
        assert subscription.id is not None
        thumbnail_store = self.context.thumbnail_store

        if subscription.thumbnail_url.startswith("http"):
            try:
                local_url = await thumbnail_store.fetch(
                    subscription.thumbnail_url, "sub", subscription.provider_native_id
                )
            except Exception as e:
                self.log.warning(f"Keeping remote thumbnail of subscription {subscription.id}: {e}")
            else:
                async with self.context.unit_of_work() as uow:
                    current = await uow.subscriptions.get_by_id(subscription.id)
                    if current is not None:
                        current.thumbnail_url = local_url
                        await uow.subscriptions.update(current)
                subscription.thumbnail_url = local_url

        async with self.context.unit_of_work() as uow:
            videos = await uow.videos.list_by_subscription(subscription.id)

        for video in videos:
            if not video.thumbnail_url.startswith("http"):
                continue
            try:
                video.thumbnail_url = await thumbnail_store.fetch(
                    video.thumbnail_url, "video", video.provider_native_id
                )
            except Exception as e:
                self.log.warning(f"Keeping remote thumbnail of video {video.id}: {e}")

        batch_size = max(provider.max_batch_size, 1)
        try:
            for start in range(0, len(videos), batch_size):
                await provider.update_videos(
                    videos[start : start + batch_size], update_statistics=True
                )
        except Exception as e:
            self.log.warning(f"Failed to update statistics of subscription {subscription.name}: {e}")
            await self.usr_warn(
                f"Could not update statistics of {subscription.name}: {e}", suppress_notification=True
            )

        # Only copy what this phase refreshed, a DownloadJob may have written the rows meanwhile
        async with self.context.unit_of_work() as uow:
            for video in videos:
                assert video.id is not None
                current = await uow.videos.get_by_id(video.id)
                if current is None:
                    continue
                current.thumbnail_url = video.thumbnail_url
                current.view_count = video.view_count
                current.rating = video.rating
                await uow.videos.update(current)
