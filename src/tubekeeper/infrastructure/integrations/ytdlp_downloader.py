"""Media downloader backed by yt-dlp.

yt-dlp is synchronous and CPU/IO heavy, so every download runs in a worker
thread (asyncio.to_thread) and never blocks the scheduler's event loop. We
don't retry here: DownloadJob re-schedules itself on failure, which keeps the
attempts visible in the job history.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any

from yt_dlp import YoutubeDL
from yt_dlp.utils import DownloadError

from tubekeeper.domain.entities import Video
from tubekeeper.domain.exceptions import MediaDownloadError
from tubekeeper.domain.ports import IMediaDownloader
from tubekeeper.infrastructure.filesystem.media_files import find_files, total_size

logger = logging.getLogger(__name__)


class _YtDlpLogger:
    """Routes yt-dlp output into our logging instead of stderr."""

    def debug(self, msg: str) -> None:
        logger.debug(msg)

    def info(self, msg: str) -> None:
        logger.debug(msg)

    def warning(self, msg: str) -> None:
        logger.warning(msg)

    def error(self, msg: str) -> None:
        logger.error(msg)


class YtDlpMediaDownloader(IMediaDownloader):
    """Downloads one video per call to `<prefix>.<ext>`."""

    def __init__(
        self,
        format_selector: str = "bestvideo*+bestaudio/best",
        subtitles_languages: list[str] | None = None,
        extra_options: dict[str, Any] | None = None,
    ) -> None:
        self._format = format_selector
        self._subtitles_languages = subtitles_languages or []
        self._extra_options = extra_options or {}

    def _build_options(self, output_prefix: Path) -> dict[str, Any]:
        options: dict[str, Any] = {
            "format": self._format,
            # "%" in titles would be interpreted by yt-dlp's template engine
            "outtmpl": str(output_prefix).replace("%", "%%") + ".%(ext)s",
            "quiet": True,
            "no_warnings": True,
            "noprogress": True,
            "logger": _YtDlpLogger(),
            "writethumbnail": True,
            "retries": 3,
            "fragment_retries": 3,
        }
        if self._subtitles_languages:
            options["writesubtitles"] = True
            options["subtitleslangs"] = self._subtitles_languages
        options.update(self._extra_options)
        return options

    def _download_blocking(self, video_url: str, output_prefix: Path) -> int:
        output_prefix.parent.mkdir(parents=True, exist_ok=True)
        with YoutubeDL(self._build_options(output_prefix)) as ydl:
            ydl.download([video_url])
        return total_size(find_files(output_prefix))

    async def download(self, video: Video, video_url: str, output_prefix: Path) -> int:
        logger.info(f"Downloading video {video.id} [{video.provider_native_id}] to {output_prefix}")
        try:
            return await asyncio.to_thread(self._download_blocking, video_url, output_prefix)
        except (DownloadError, OSError) as e:
            raise MediaDownloadError(f"Failed to download {video_url}: {e}") from e
