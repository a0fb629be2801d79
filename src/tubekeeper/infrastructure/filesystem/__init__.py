"""Filesystem helpers for downloaded media."""

from tubekeeper.infrastructure.filesystem.media_files import (
    build_output_prefix,
    find_files,
    find_video_file,
    is_video_file,
    sanitize_component,
    total_size,
)

__all__ = [
    "build_output_prefix",
    "find_files",
    "find_video_file",
    "is_video_file",
    "sanitize_component",
    "total_size",
]
