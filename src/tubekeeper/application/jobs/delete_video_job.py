"""DeleteVideoJob - removes the downloaded files of one video."""

import asyncio
from pathlib import Path
from typing import TYPE_CHECKING

from tubekeeper.application.scheduler.job import Job
from tubekeeper.domain.entities import JobExecution
from tubekeeper.infrastructure.filesystem.media_files import find_files

if TYPE_CHECKING:
    from tubekeeper.application.context import ServiceContext


class DeleteVideoJob(Job):
    """Deletes every `<downloaded_path>*` file and clears the download fields.

    Single files failing to delete are reported and skipped. The DB row is cleared
    either way, the next synchronize pass cleans up whatever is left.
    """

    name = "DeleteVideoJob"

    def __init__(
        self,
        execution: JobExecution,
        context: "ServiceContext",
        video_id: int,
        resynchronize: bool = False,
    ) -> None:
        super().__init__(execution, context)
        self._video_id = video_id
        self._resynchronize = resynchronize

    def get_description(self) -> str:
        return f"Deleting video {self._video_id}"

    async def run(self) -> None:
        async with self.context.unit_of_work() as uow:
            video = await uow.videos.get_by_id(self._video_id)

        if video is None or video.downloaded_path is None:
            self.log.info(f"Video {self._video_id} has no files to delete")
            return

        try:
            files = await asyncio.to_thread(find_files, video.downloaded_path)
        except FileNotFoundError:
            files = []
        except OSError as e:
            self.log.error(f"Failed to list files of video {video.id} [{video.name}]: {e}")
            await self.usr_warn(f"Could not list files of {video.name}: {e}", suppress_notification=True)
            files = []

        deleted = 0
        for file in files:
            if await self._delete_file(file):
                deleted += 1

        async with self.context.unit_of_work() as uow:
            current = await uow.videos.get_by_id(self._video_id)
            if current is not None:
                current.downloaded_path = None
                current.downloaded_size = None
                await uow.videos.update(current)

        self.log.info(f"Deleted video {video.id} ({deleted} files) [{video.provider_native_id} {video.name}]")
        await self.usr_log(f"Deleted {video.name}", progress=1.0)

        # Frees a download slot, let the coordinator fill it
        if self._resynchronize and video.subscription_id is not None:
            self.context.subscriptions.synchronize(video.subscription_id, self.execution.user_id)

    async def _delete_file(self, file: Path) -> bool:
        self.log.info(f"Deleting file {file}")
        try:
            await asyncio.to_thread(file.unlink)
        except OSError as e:
            self.log.error(f"Failed to delete file {file}: {e}")
            await self.usr_warn(f"Failed to delete file {file.name}: {e}", suppress_notification=True)
            return False
        return True
