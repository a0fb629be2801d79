"""Video Provider Port (Interface).

A video provider is a pluggable integration with one video-hosting service
(YouTube, Vimeo, ...). Following Hexagonal Architecture, this is a PORT in the
domain layer; concrete providers live outside the core and are registered in
the VideoProviderRegistry at startup.
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from enum import Enum
from typing import Any

from tubekeeper.domain.entities import Subscription, Video


class VideoProviderState(str, Enum):
    """Configuration state of a registered provider."""

    NOT_CONFIGURED = "not_configured"
    OK = "ok"


class IVideoProvider(ABC):
    """Interface for video provider implementations.

    Hey future me - providers may be called from several jobs running at the same
    time (sync + import), so implementations must not keep per-call state on self.
    The registry owns `state`; providers only flip it through configure/unconfigure
    calls made BY the registry.
    """

    # Set by the registry after configure()/unconfigure()
    state: VideoProviderState = VideoProviderState.NOT_CONFIGURED

    @property
    @abstractmethod
    def provider_id(self) -> str:
        """Return the unique identifier of this provider.

        Example:
            return "youtube"
        """
        pass

    @property
    @abstractmethod
    def display_name(self) -> str:
        """Return a human-readable provider name."""
        pass

    @property
    def max_batch_size(self) -> int:
        """Maximum number of videos accepted by one update_videos() call."""
        return 50

    @abstractmethod
    def configure(self, settings: dict[str, Any]) -> None:
        """Apply a configuration (API keys etc.) to this provider.

        Args:
            settings: Key/value pairs as persisted in ProviderConfig
        """
        pass

    def unconfigure(self) -> None:
        """Drop the current configuration."""
        return None

    @abstractmethod
    def validate_configuration(self, settings: dict[str, Any]) -> None:
        """Validate a configuration before it is stored.

        Raises:
            ProviderConfigurationError: With a field -> message map for the user
        """
        pass

    @abstractmethod
    def validate_subscription_url(self, url: str) -> None:
        """Check that url points to a playlist/channel of this provider.

        Raises:
            InvalidURLError: If the URL is not handled by this provider
        """
        pass

    @abstractmethod
    async def fetch_subscription(self, url: str) -> Subscription:
        """Fetch playlist/channel metadata and build an unsaved Subscription.

        Raises:
            InvalidURLError: If the URL is not valid
            ExternalServiceError: If the remote service fails
        """
        pass

    @abstractmethod
    def fetch_videos(self, subscription: Subscription) -> AsyncIterator[Video]:
        """Yield the remote items of a subscription as unsaved Videos.

        Only the minimum details are needed here; statistics are filled in later
        by update_videos().

        Raises:
            ExternalServiceError: If the remote service fails
        """
        pass

    @abstractmethod
    async def update_videos(
        self,
        videos: list[Video],
        update_metadata: bool = False,
        update_statistics: bool = False,
    ) -> None:
        """Refresh the given videos in place.

        Args:
            videos: At most max_batch_size videos
            update_metadata: Refresh name/description/thumbnail
            update_statistics: Refresh view_count and rating
        """
        pass

    @abstractmethod
    def get_subscription_url(self, subscription: Subscription) -> str:
        """Build a URL that links to the subscription on the remote site."""
        pass

    @abstractmethod
    def get_video_url(self, video: Video) -> str:
        """Build a URL that links to the video on the remote site."""
        pass
