"""Domain ports (interfaces) for dependency inversion."""

from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime
from types import TracebackType

from tubekeeper.domain.entities import (
    JobExecution,
    JobMessage,
    ProviderConfig,
    Subscription,
    SubscriptionFolder,
    User,
    Video,
    VideoOrder,
)
from tubekeeper.domain.ports.media import IMediaDownloader, IThumbnailStore
from tubekeeper.domain.ports.video_provider import IVideoProvider, VideoProviderState


# Hey future me, these repository ports are what the application layer talks to. The
# SQLAlchemy implementations live in infrastructure/persistence. Tests can swap in mocks.
# Repositories never commit - the unit of work does (see IUnitOfWork below).
class IUserRepository(ABC):
    """Repository interface for User entities."""

    @abstractmethod
    async def add(self, user: User) -> User:
        """Add a new user and return it with its id set."""
        pass

    @abstractmethod
    async def get_by_id(self, user_id: int) -> User | None:
        """Get a user by ID."""
        pass

    @abstractmethod
    async def get_by_username(self, username: str) -> User | None:
        """Get a user by username."""
        pass

    @abstractmethod
    async def update(self, user: User) -> None:
        """Update user data and preferences."""
        pass


class ISubscriptionFolderRepository(ABC):
    """Repository interface for SubscriptionFolder entities."""

    @abstractmethod
    async def add(self, folder: SubscriptionFolder) -> SubscriptionFolder:
        """Add a new folder and return it with its id set."""
        pass

    @abstractmethod
    async def get_by_id(self, folder_id: int) -> SubscriptionFolder | None:
        """Get a folder by ID."""
        pass

    @abstractmethod
    async def get_by_name(
        self, user_id: int, parent_id: int | None, name: str
    ) -> SubscriptionFolder | None:
        """Get a folder by name inside a parent (case-insensitive)."""
        pass

    @abstractmethod
    async def list_children(
        self, user_id: int, parent_id: int | None
    ) -> list[SubscriptionFolder]:
        """List direct child folders ordered by name."""
        pass

    @abstractmethod
    async def update(self, folder: SubscriptionFolder) -> None:
        """Update an existing folder."""
        pass

    @abstractmethod
    async def delete(self, folder_id: int) -> None:
        """Delete a folder (cascades to child folders and subscriptions)."""
        pass


class ISubscriptionRepository(ABC):
    """Repository interface for Subscription entities."""

    @abstractmethod
    async def add(self, subscription: Subscription) -> Subscription:
        """Add a new subscription and return it with its id set."""
        pass

    @abstractmethod
    async def get_by_id(self, subscription_id: int) -> Subscription | None:
        """Get a subscription by ID."""
        pass

    @abstractmethod
    async def get_by_provider_native_id(
        self, user_id: int, provider_id: str, provider_native_id: str
    ) -> Subscription | None:
        """Get a user's subscription by provider playlist id."""
        pass

    @abstractmethod
    async def list_all(self) -> list[Subscription]:
        """List all subscriptions of all users."""
        pass

    @abstractmethod
    async def list_by_user(self, user_id: int) -> list[Subscription]:
        """List subscriptions owned by a user."""
        pass

    @abstractmethod
    async def list_by_folder(
        self, user_id: int, folder_id: int | None
    ) -> list[Subscription]:
        """List subscriptions directly inside a folder (None = root), ordered by name."""
        pass

    @abstractmethod
    async def update(self, subscription: Subscription) -> None:
        """Update an existing subscription."""
        pass

    @abstractmethod
    async def delete(self, subscription_id: int) -> None:
        """Delete a subscription (cascades to its videos)."""
        pass


class IVideoRepository(ABC):
    """Repository interface for Video entities."""

    @abstractmethod
    async def add(self, video: Video) -> Video:
        """Add a new video and return it with its id set."""
        pass

    @abstractmethod
    async def get_by_id(self, video_id: int) -> Video | None:
        """Get a video by ID."""
        pass

    @abstractmethod
    async def get_by_native_id(
        self, subscription_id: int, provider_native_id: str
    ) -> Video | None:
        """Get a subscription's video by its provider id."""
        pass

    @abstractmethod
    async def list_by_subscription(self, subscription_id: int) -> list[Video]:
        """List all videos of a subscription ordered by playlist index."""
        pass

    @abstractmethod
    async def update(self, video: Video) -> None:
        """Update an existing video."""
        pass

    @abstractmethod
    async def update_many(self, videos: Iterable[Video]) -> None:
        """Update several videos."""
        pass

    @abstractmethod
    async def clear_new_flag(self, subscription_id: int) -> int:
        """Clear is_new on every video of a subscription. Returns affected rows."""
        pass

    @abstractmethod
    async def list_download_candidates(
        self, subscription_id: int, order: VideoOrder
    ) -> list[Video]:
        """List undownloaded, unwatched videos sorted by order."""
        pass

    @abstractmethod
    async def count_downloaded_for_subscription(self, subscription_id: int) -> int:
        """Count downloaded videos of a subscription."""
        pass

    @abstractmethod
    async def count_downloaded_for_user(self, user_id: int) -> int:
        """Count downloaded videos across all subscriptions of a user."""
        pass

    @abstractmethod
    async def search(
        self,
        user_id: int,
        order: VideoOrder,
        words: list[str] | None = None,
        subscription_ids: list[int] | None = None,
        only_watched: bool | None = None,
        only_downloaded: bool | None = None,
    ) -> list[Video]:
        """Filter a user's videos."""
        pass


class IJobExecutionRepository(ABC):
    """Repository interface for job executions and their messages."""

    @abstractmethod
    async def add(self, execution: JobExecution) -> JobExecution:
        """Add a new execution and return it with its id set."""
        pass

    @abstractmethod
    async def get_by_id(self, execution_id: int) -> JobExecution | None:
        """Get an execution by ID."""
        pass

    @abstractmethod
    async def update(self, execution: JobExecution) -> None:
        """Update status / description / end time of an execution."""
        pass

    @abstractmethod
    async def list_recent(
        self, user_id: int | None, limit: int = 50
    ) -> list[JobExecution]:
        """List newest executions visible to a user (own + system-wide)."""
        pass

    @abstractmethod
    async def mark_running_as_interrupted(self) -> int:
        """Transition every RUNNING execution to INTERRUPTED. Returns affected rows."""
        pass

    @abstractmethod
    async def add_message(self, message: JobMessage) -> JobMessage:
        """Append a message to an execution."""
        pass

    @abstractmethod
    async def list_messages(self, execution_id: int) -> list[JobMessage]:
        """List messages of an execution ordered by timestamp."""
        pass

    @abstractmethod
    async def delete_finished_before(self, threshold: datetime) -> int:
        """Delete terminal executions (and their messages) that ended before threshold."""
        pass


class IProviderConfigRepository(ABC):
    """Repository interface for persisted provider configuration."""

    @abstractmethod
    async def list_all(self) -> list[ProviderConfig]:
        """List every stored provider configuration."""
        pass

    @abstractmethod
    async def get(self, provider_id: str) -> ProviderConfig | None:
        """Get configuration of one provider."""
        pass

    @abstractmethod
    async def save(self, config: ProviderConfig) -> None:
        """Insert or replace a provider configuration."""
        pass

    @abstractmethod
    async def delete(self, provider_id: str) -> None:
        """Delete a provider configuration (no-op if missing)."""
        pass


# Yo, the unit of work bundles all repositories on ONE session/transaction. Use it as
# `async with context.unit_of_work() as uow:` - commit happens on clean exit, rollback on
# exception. Keep the block short in jobs: don't hold a transaction across network calls.
class IUnitOfWork(ABC):
    """Transactional bundle of repositories."""

    users: IUserRepository
    folders: ISubscriptionFolderRepository
    subscriptions: ISubscriptionRepository
    videos: IVideoRepository
    jobs: IJobExecutionRepository
    provider_configs: IProviderConfigRepository

    @abstractmethod
    async def commit(self) -> None:
        """Commit pending changes."""
        pass

    @abstractmethod
    async def rollback(self) -> None:
        """Discard pending changes."""
        pass

    async def __aenter__(self) -> "IUnitOfWork":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if exc_type is None:
            await self.commit()
        else:
            await self.rollback()


__all__ = [
    "IUserRepository",
    "ISubscriptionFolderRepository",
    "ISubscriptionRepository",
    "IVideoRepository",
    "IJobExecutionRepository",
    "IProviderConfigRepository",
    "IUnitOfWork",
    "IVideoProvider",
    "VideoProviderState",
    "IMediaDownloader",
    "IThumbnailStore",
]
