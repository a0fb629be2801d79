"""Application services - provider registry, notifications, downloads and user operations."""

from tubekeeper.application.services.download_coordinator import (
    DownloadCoordinator,
    EffectiveDownloadSettings,
    GlobalDownloadBudget,
)
from tubekeeper.application.services.notification_bus import NotificationBus, NotificationMessage
from tubekeeper.application.services.subscription_file_parser import FormatNotSupportedError

# Hey future me - these two import the jobs, and the jobs import download_coordinator.
# Keep them below the modules the jobs depend on.
from tubekeeper.application.services.subscription_service import SubscriptionService
from tubekeeper.application.services.video_provider_registry import VideoProviderRegistry
from tubekeeper.application.services.video_service import VideoService

__all__ = [
    "DownloadCoordinator",
    "EffectiveDownloadSettings",
    "FormatNotSupportedError",
    "GlobalDownloadBudget",
    "NotificationBus",
    "NotificationMessage",
    "SubscriptionService",
    "VideoProviderRegistry",
    "VideoService",
]
