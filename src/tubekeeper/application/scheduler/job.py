"""Base class for jobs executed by the Scheduler."""

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from tubekeeper.application.scheduler.progress_tracker import ProgressTracker
from tubekeeper.domain.entities import JobExecution, JobMessage, JobMessageLevel

if TYPE_CHECKING:
    from tubekeeper.application.context import ServiceContext


class Job(ABC):
    """A unit of background work with user-visible logging and progress.

    Hey future me - jobs are built by the Scheduler as
    `JobClass(execution, context, *args)`, one instance per run. Never build them
    yourself, use `context.scheduler.add_job(...)` so the run gets a JobExecution
    record and lands on the worker pool.

    Progress: ProgressTracker listeners are plain callbacks, but persisting a
    message needs the DB. So the listener only queues (progress, message) pairs
    and progress_advance()/flush_progress() write them out. If you advance a
    subtask tracker directly, call flush_progress() afterwards.
    """

    name = "GenericJob"

    def __init__(self, execution: JobExecution, context: "ServiceContext", *args: Any) -> None:
        self.execution = execution
        self.context = context
        self.log = logging.getLogger(f"tubekeeper.jobs.{self.name}")
        self._pending_progress: list[tuple[float, str]] = []
        self._progress_tracker = ProgressTracker(listener=self._on_progress)

    @abstractmethod
    def get_description(self) -> str:
        """Get a user friendly description of this job."""
        return "Running job..."

    @abstractmethod
    async def run(self) -> None:
        """Do the work. Exceptions are handled by the Scheduler."""
        pass

    # =========================================================================
    # PROGRESS
    # =========================================================================

    def _on_progress(self, progress: float, message: str) -> None:
        self._pending_progress.append((progress, message))

    def set_total_steps(self, steps: float) -> None:
        """Set the number of work steps of this job."""
        self._progress_tracker.set_total_steps(steps)

    async def progress_advance(self, steps: float = 1, message: str = "") -> None:
        """Advance the job's tracker and persist the progress message."""
        self._progress_tracker.advance(steps, message)
        await self.flush_progress()

    def create_subtask(
        self,
        weight: float = 1,
        subtask_total: float = 100,
        subtask_initial: float = 0,
    ) -> ProgressTracker:
        """Open a subtask worth `weight` steps of the job."""
        return self._progress_tracker.subtask(weight, subtask_total, subtask_initial)

    def compute_progress(self) -> float:
        return self._progress_tracker.compute_progress()

    async def flush_progress(self) -> None:
        """Persist progress reported through trackers since the last flush."""
        pending, self._pending_progress = self._pending_progress, []
        for progress, message in pending:
            await self.usr_log(message, progress=progress)

    # =========================================================================
    # USER LOG MESSAGES
    # =========================================================================

    async def usr_log(
        self,
        message: str,
        progress: float | None = None,
        level: JobMessageLevel = JobMessageLevel.NORMAL,
        suppress_notification: bool = False,
    ) -> None:
        """Record a message shown in the job history of the UI.

        Args:
            message: Text for the user
            progress: Progress in [0, 1]
            level: Normal, warning or error
            suppress_notification: Only store it, don't push it to the live feed
        """
        assert self.execution.id is not None
        async with self.context.unit_of_work() as uow:
            await uow.jobs.add_message(
                JobMessage(
                    job_id=self.execution.id,
                    text=message,
                    level=level,
                    progress=progress,
                    suppress_notification=suppress_notification,
                )
            )

        if not suppress_notification:
            self.context.notification_bus.notify_operation_progress(
                self.execution.id, message, progress, user_id=self.execution.user_id
            )

    async def usr_warn(
        self,
        message: str,
        progress: float | None = None,
        suppress_notification: bool = False,
    ) -> None:
        """Record a warning message (see usr_log)."""
        await self.usr_log(message, progress, JobMessageLevel.WARNING, suppress_notification)

    async def usr_err(
        self,
        message: str,
        progress: float | None = None,
        suppress_notification: bool = False,
    ) -> None:
        """Record an error message (see usr_log)."""
        await self.usr_log(message, progress, JobMessageLevel.ERROR, suppress_notification)
