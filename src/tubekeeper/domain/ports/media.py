"""Media ports: downloading video files and re-hosting thumbnails."""

from abc import ABC, abstractmethod
from pathlib import Path

from tubekeeper.domain.entities import Subscription, Video


class IMediaDownloader(ABC):
    """Interface for the component that fetches the media of one video."""

    @abstractmethod
    async def download(
        self, video: Video, video_url: str, output_prefix: Path
    ) -> int:
        """Download a video so that every produced file starts with output_prefix.

        Args:
            video: Video being downloaded
            video_url: Provider URL of the video
            output_prefix: Path without extension (files are `prefix*`)

        Returns:
            Total size in bytes of the produced files

        Raises:
            MediaDownloadError: If the download fails
        """
        pass


class IThumbnailStore(ABC):
    """Interface for re-hosting remote thumbnails locally."""

    @abstractmethod
    async def fetch(self, url: str, category: str, identifier: str) -> str:
        """Download a thumbnail and return the URL of the local copy.

        Args:
            url: Remote http(s) URL
            category: "sub" or "video" (used as directory name)
            identifier: Stable id used as file name

        Raises:
            ExternalServiceError: If the download fails
        """
        pass
