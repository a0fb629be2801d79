"""Domain entities."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


def utc_now() -> datetime:
    """Get current UTC time."""
    return datetime.now(UTC)


def first_non_null(*values: Any) -> Any:
    """Return the first value which is not None (or None if all of them are)."""
    return next((value for value in values if value is not None), None)


# Hey future me, these are the sort orders users can pick for download candidates and the
# video list. The DB layer maps each one to an ORDER BY clause (see repositories.py).
# Stored as plain strings in the DB so old rows survive enum additions.
class VideoOrder(str, Enum):
    """Ordering policy for videos."""

    NEWEST = "newest"
    OLDEST = "oldest"
    PLAYLIST = "playlist"
    PLAYLIST_REVERSE = "playlist_reverse"
    POPULARITY = "popularity"
    RATING = "rating"


class JobStatus(str, Enum):
    """Lifecycle state of one job execution."""

    RUNNING = "running"
    FINISHED = "finished"
    FAILED = "failed"
    # Process died while the job was running (set by startup recovery)
    INTERRUPTED = "interrupted"

    @property
    def is_terminal(self) -> bool:
        """Check if this is a final state."""
        return self is not JobStatus.RUNNING


class JobMessageLevel(str, Enum):
    """Severity of a user-visible job message."""

    NORMAL = "normal"
    WARNING = "warning"
    ERROR = "error"


@dataclass
class UserPreferences:
    """Per-user overrides of the global download defaults.

    None means "not set, use the global default from Settings.download".
    """

    auto_download: bool | None = None
    download_global_limit: int | None = None
    download_subscription_limit: int | None = None
    download_order: VideoOrder | None = None
    mark_deleted_as_watched: bool | None = None
    automatically_delete_watched: bool | None = None
    download_path: str | None = None
    download_file_pattern: str | None = None


@dataclass
class User:
    """Owner of subscriptions, folders and user-scoped jobs."""

    username: str
    id: int | None = None
    preferences: UserPreferences = field(default_factory=UserPreferences)

    def __post_init__(self) -> None:
        """Validate user data."""
        if not self.username or not self.username.strip():
            raise ValueError("Username cannot be empty")


@dataclass
class SubscriptionFolder:
    """Node of the per-user folder tree that groups subscriptions."""

    name: str
    user_id: int
    parent_id: int | None = None
    id: int | None = None

    def __post_init__(self) -> None:
        """Validate folder data."""
        if not self.name or not self.name.strip():
            raise ValueError("Folder name cannot be empty")


# Listen up, Subscription is one tracked remote playlist/channel. provider_id says WHICH
# provider (e.g. "youtube"), provider_native_id is the playlist id on that provider.
# The nullable override fields win over user preferences, which win over global defaults.
# rewrite_playlist_indices is for playlists whose remote order is unstable (uploads
# playlists prepend new items), so new videos get appended at the end locally instead.
@dataclass
class Subscription:
    """A tracked remote playlist or channel."""

    name: str
    provider_id: str
    provider_native_id: str
    user_id: int | None = None
    id: int | None = None
    description: str = ""
    channel_id: str = ""
    channel_name: str = ""
    thumbnail_url: str = ""
    parent_folder_id: int | None = None
    rewrite_playlist_indices: bool = False
    auto_download: bool | None = None
    download_limit: int | None = None
    download_order: VideoOrder | None = None
    auto_delete_watched: bool | None = None
    last_synchronized: datetime | None = None

    def copy_overrides_from(self, other: "Subscription") -> None:
        """Copy user-editable override fields from another subscription."""
        self.parent_folder_id = other.parent_folder_id
        self.auto_download = other.auto_download
        self.download_limit = other.download_limit
        self.download_order = other.download_order
        self.auto_delete_watched = other.auto_delete_watched

    def __str__(self) -> str:
        return self.name


@dataclass
class Video:
    """One item of a subscription."""

    provider_native_id: str
    name: str
    playlist_index: int
    subscription_id: int | None = None
    id: int | None = None
    description: str = ""
    publish_date: datetime = field(default_factory=utc_now)
    thumbnail_url: str = ""
    uploader_name: str = ""
    downloaded_path: str | None = None
    downloaded_size: int | None = None
    watched: bool = False
    is_new: bool = True
    view_count: int = 0
    rating: float = 0.5
    last_updated: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        """Keep rating inside [0, 1]."""
        self.rating = min(max(self.rating, 0.0), 1.0)

    @property
    def is_downloaded(self) -> bool:
        """Check if the video has local files."""
        return self.downloaded_path is not None

    def set_rating_from_votes(self, likes: int | None, dislikes: int | None) -> None:
        """Compute rating as likes / (likes + dislikes) when votes are known."""
        if likes is None or dislikes is None or likes + dislikes <= 0:
            return
        self.rating = likes / (likes + dislikes)

    def __str__(self) -> str:
        return self.name


@dataclass
class JobExecution:
    """Persistent record of one job run."""

    description: str = ""
    user_id: int | None = None
    status: JobStatus = JobStatus.RUNNING
    start_time: datetime = field(default_factory=utc_now)
    end_time: datetime | None = None
    id: int | None = None


@dataclass
class JobMessage:
    """User-visible message emitted by a job. Append-only."""

    job_id: int
    text: str
    level: JobMessageLevel = JobMessageLevel.NORMAL
    progress: float | None = None
    suppress_notification: bool = False
    timestamp: datetime = field(default_factory=utc_now)
    id: int | None = None


@dataclass
class ProviderConfig:
    """Opaque persisted configuration of one video provider."""

    provider_id: str
    settings: dict[str, Any] = field(default_factory=dict)


__all__ = [
    "utc_now",
    "first_non_null",
    "VideoOrder",
    "JobStatus",
    "JobMessageLevel",
    "UserPreferences",
    "User",
    "SubscriptionFolder",
    "Subscription",
    "Video",
    "JobExecution",
    "JobMessage",
    "ProviderConfig",
]
