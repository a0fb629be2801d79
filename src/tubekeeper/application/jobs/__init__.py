"""Background jobs executed by the Scheduler."""

from tubekeeper.application.jobs.delete_video_job import DeleteVideoJob
from tubekeeper.application.jobs.download_job import DownloadJob
from tubekeeper.application.jobs.job_history_cleanup_job import JobHistoryCleanupJob
from tubekeeper.application.jobs.subscription_import_job import SubscriptionImportJob
from tubekeeper.application.jobs.synchronize_job import SynchronizeJob

__all__ = [
    "DeleteVideoJob",
    "DownloadJob",
    "JobHistoryCleanupJob",
    "SubscriptionImportJob",
    "SynchronizeJob",
]
