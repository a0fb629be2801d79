"""JobHistoryCleanupJob - prunes old job executions and their messages.

Yo, this is the ONLY place where job history gets deleted. Executions still
running are never touched; retention is scheduler.job_history_days.
"""

from datetime import timedelta

from tubekeeper.application.scheduler.job import Job
from tubekeeper.domain.entities import utc_now


class JobHistoryCleanupJob(Job):
    """Deletes terminal executions that ended before the retention window."""

    name = "JobHistoryCleanupJob"

    def get_description(self) -> str:
        return "Cleaning up job history"

    async def run(self) -> None:
        days = self.context.settings.scheduler.job_history_days
        threshold = utc_now() - timedelta(days=days)

        async with self.context.unit_of_work() as uow:
            deleted = await uow.jobs.delete_finished_before(threshold)

        self.log.info(f"Deleted {deleted} job executions that ended before {threshold.isoformat()}")
        await self.usr_log(
            f"Removed {deleted} job executions older than {days} days",
            progress=1.0,
            suppress_notification=True,
        )
