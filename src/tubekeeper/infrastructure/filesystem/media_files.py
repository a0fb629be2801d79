"""Helpers for downloaded media on disk.

A downloaded video is addressed by a path PREFIX without extension, e.g.
`/downloads/Channel/Uploads/S01E007 - Title [abc123]`. The downloader writes
`prefix.mp4`, `prefix.en.vtt`, `prefix.jpg`, ... next to each other; "the files
of a video" are all entries of the directory starting with the prefix name.

All functions here are blocking. Call them through asyncio.to_thread().
"""

import logging
import mimetypes
import re
from pathlib import Path
from string import Template

from tubekeeper.domain.entities import Subscription, Video

logger = logging.getLogger(__name__)

UNSAFE_FILENAME_CHARS = r'[<>:"/\\|?*\x00-\x1f]'
MAX_COMPONENT_LEN = 150


def sanitize_component(value: str) -> str:
    """Make a value safe to use as one path component."""
    safe = re.sub(UNSAFE_FILENAME_CHARS, "_", value or "")
    safe = safe.replace("..", "")
    safe = re.sub(r"\s+", " ", safe).strip()
    if len(safe) > MAX_COMPONENT_LEN:
        safe = safe[:MAX_COMPONENT_LEN].rstrip()
    return safe.strip(".") or "_"


def build_output_prefix(
    base_dir: Path, file_pattern: str, video: Video, subscription: Subscription
) -> Path:
    """Expand a ${placeholder} file pattern into an absolute path prefix.

    Placeholders: channel, channel_id, playlist, playlist_id, playlist_index,
    title, id. Every "/" in the pattern starts a sub directory; placeholder
    values themselves can never add directories or escape base_dir.
    """
    values = {
        "channel": sanitize_component(subscription.channel_name or subscription.name),
        "channel_id": sanitize_component(subscription.channel_id or subscription.provider_native_id),
        "playlist": sanitize_component(subscription.name),
        "playlist_id": sanitize_component(subscription.provider_native_id),
        "playlist_index": f"{video.playlist_index + 1:03d}",
        "title": sanitize_component(video.name),
        "id": sanitize_component(video.provider_native_id),
    }
    expanded = Template(file_pattern).safe_substitute(values)
    parts = [part for part in expanded.split("/") if part not in ("", ".", "..")]
    if not parts:
        parts = [values["id"]]

    root = base_dir.resolve()
    prefix = root.joinpath(*parts)
    if not prefix.resolve().is_relative_to(root):
        logger.warning(f"File pattern escaped the download directory, using video id for {video.id}")
        prefix = root / values["id"]
    return prefix


def find_files(prefix: str | Path) -> list[Path]:
    """List the files of a prefix: `<prefix>` itself and every `<prefix>.*`.

    Raises:
        OSError: If the directory can't be listed (FileNotFoundError included)
    """
    prefix = Path(prefix)
    directory, name = prefix.parent, prefix.name
    return sorted(
        entry
        for entry in directory.iterdir()
        if (entry.name == name or entry.name.startswith(name + ".")) and entry.is_file()
    )


def is_video_file(path: str | Path) -> bool:
    """Check the mime type guessed from the extension."""
    mime, _ = mimetypes.guess_type(str(path))
    return mime is not None and mime.startswith("video/")


def find_video_file(prefix: str | Path) -> Path | None:
    """Return the first video file of a prefix (None when there is none)."""
    for file in find_files(prefix):
        if is_video_file(file):
            return file
    return None


def total_size(files: list[Path]) -> int:
    """Sum of the sizes of existing files."""
    size = 0
    for file in files:
        try:
            size += file.stat().st_size
        except OSError:
            continue
    return size
