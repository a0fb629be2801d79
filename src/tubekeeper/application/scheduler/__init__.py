"""Job scheduling and execution engine."""

from tubekeeper.application.scheduler.job import Job
from tubekeeper.application.scheduler.progress_tracker import ProgressTracker
from tubekeeper.application.scheduler.scheduler import ScheduledJob, Scheduler
from tubekeeper.application.scheduler.triggers import build_trigger, parse_cron

__all__ = [
    "Job",
    "ProgressTracker",
    "ScheduledJob",
    "Scheduler",
    "build_trigger",
    "parse_cron",
]
