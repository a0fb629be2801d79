"""Tests for YtDlpMediaDownloader (yt-dlp itself is mocked)."""

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from yt_dlp.utils import DownloadError

from tubekeeper.domain.entities import Video
from tubekeeper.domain.exceptions import MediaDownloadError
from tubekeeper.infrastructure.integrations.ytdlp_downloader import YtDlpMediaDownloader

MODULE = "tubekeeper.infrastructure.integrations.ytdlp_downloader"


def _fake_youtube_dl(write_files: list[Path] | None = None, error: Exception | None = None):
    """Patchable YoutubeDL class writing files (or failing) on download()."""
    instance = MagicMock()
    instance.__enter__.return_value = instance

    def download(urls: list[str]) -> None:
        if error is not None:
            raise error
        for path in write_files or []:
            path.write_bytes(b"x" * 10)

    instance.download.side_effect = download
    return MagicMock(return_value=instance)


class TestYtDlpMediaDownloader:
    """Test option building and result handling."""

    def test_output_template_escapes_percent(self, tmp_path: Path) -> None:
        options = YtDlpMediaDownloader()._build_options(tmp_path / "100% real")
        assert options["outtmpl"] == str(tmp_path / "100%% real") + ".%(ext)s"
        assert "writesubtitles" not in options

    def test_subtitles_and_extra_options(self, tmp_path: Path) -> None:
        downloader = YtDlpMediaDownloader(
            subtitles_languages=["en"], extra_options={"ratelimit": 1000}
        )
        options = downloader._build_options(tmp_path / "clip")
        assert options["writesubtitles"] is True
        assert options["subtitleslangs"] == ["en"]
        assert options["ratelimit"] == 1000

    async def test_download_returns_total_size(self, tmp_path: Path) -> None:
        prefix = tmp_path / "Channel" / "clip"
        youtube_dl = _fake_youtube_dl([prefix.with_name("clip.mp4"), prefix.with_name("clip.jpg")])
        video = Video(provider_native_id="abc", name="Clip", playlist_index=0, id=1)

        with patch(f"{MODULE}.YoutubeDL", youtube_dl):
            size = await YtDlpMediaDownloader().download(video, "https://videos.example/watch/abc", prefix)

        assert size == 20
        youtube_dl.return_value.download.assert_called_once_with(["https://videos.example/watch/abc"])

    async def test_download_error_wrapped(self, tmp_path: Path) -> None:
        youtube_dl = _fake_youtube_dl(error=DownloadError("HTTP Error 403: Forbidden"))
        video = Video(provider_native_id="abc", name="Clip", playlist_index=0, id=1)

        with patch(f"{MODULE}.YoutubeDL", youtube_dl):
            with pytest.raises(MediaDownloadError, match="403"):
                await YtDlpMediaDownloader().download(video, "https://videos.example/watch/abc", tmp_path / "clip")
