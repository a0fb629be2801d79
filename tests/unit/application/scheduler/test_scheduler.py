"""Tests for the Scheduler.

Hey future me - most tests here run the REAL worker pool against the temp DB:
initialize() → add_job() → join() → shutdown(). The recurring-trigger logic is
tested through process_due_jobs(now=...) so no test has to wait for a clock.
"""

import asyncio
from datetime import timedelta

import pytest

from tubekeeper.application.context import ServiceContext
from tubekeeper.application.scheduler.job import Job
from tubekeeper.application.services.notification_bus import NotificationMessage
from tubekeeper.domain.entities import JobExecution, JobMessageLevel, JobStatus
from tubekeeper.domain.exceptions import (
    DuplicateEntityException,
    EntityNotFoundException,
    ValidationException,
)
from tubekeeper.infrastructure.observability.logging import get_job_id


class RecordingJob(Job):
    """Remembers its value and the job id seen while running."""

    name = "RecordingJob"
    calls: list[tuple[str, str]] = []

    def __init__(self, execution, context, value: str = "x") -> None:
        super().__init__(execution, context)
        self.value = value

    def get_description(self) -> str:
        return f"Recording {self.value}"

    async def run(self) -> None:
        RecordingJob.calls.append((self.value, get_job_id()))
        self.set_total_steps(2)
        await self.progress_advance(1, "first half")
        await self.progress_advance(1, "second half")


class FailingJob(Job):
    name = "FailingJob"

    def get_description(self) -> str:
        return "Failing on purpose"

    async def run(self) -> None:
        raise RuntimeError("boom")


class BlockingJob(Job):
    """Runs until it gets cancelled."""

    name = "BlockingJob"
    started: asyncio.Event

    def get_description(self) -> str:
        return "Blocking forever"

    async def run(self) -> None:
        BlockingJob.started.set()
        await asyncio.Event().wait()


@pytest.fixture(autouse=True)
def reset_recording_job() -> None:
    RecordingJob.calls = []


async def _executions(context: ServiceContext) -> list[JobExecution]:
    async with context.unit_of_work() as uow:
        return await uow.jobs.list_recent(None)


class TestJobExecution:
    """Test the execution wrapper around Job.run()."""

    async def test_one_shot_job_finishes(self, context: ServiceContext) -> None:
        """A job without trigger runs once and ends as finished."""
        scheduler = context.scheduler
        await scheduler.initialize()
        scheduler.add_job(RecordingJob, args=("a",), job_id="rec-a")
        await scheduler.join()
        await scheduler.shutdown()

        assert RecordingJob.calls == [("a", "rec-a")]
        [execution] = await _executions(context)
        assert execution.status == JobStatus.FINISHED
        assert execution.description == "Recording a"
        assert execution.end_time is not None

        async with context.unit_of_work() as uow:
            messages = await uow.jobs.list_messages(execution.id)
        assert [m.text for m in messages] == ["first half", "second half"]
        assert [m.progress for m in messages] == [pytest.approx(0.5), pytest.approx(1.0)]

    async def test_operation_ended_notification_emitted(self, context: ServiceContext) -> None:
        scheduler = context.scheduler
        await scheduler.initialize()
        scheduler.add_job(RecordingJob, args=("b",))
        await scheduler.join()
        await scheduler.shutdown()

        events = context.notification_bus.get(user_id=None)
        ended = [e for e in events if e["msg"] == NotificationMessage.OPERATION_END]
        assert len(ended) == 1
        assert ended[0]["status"] == "Recording b finished"

    async def test_failing_job_recorded_and_worker_survives(self, context: ServiceContext) -> None:
        """An exception marks the execution failed and the next job still runs."""
        scheduler = context.scheduler
        await scheduler.initialize()
        scheduler.add_job(FailingJob)
        scheduler.add_job(RecordingJob, args=("after",))
        await scheduler.join()
        await scheduler.shutdown()

        assert [value for value, _ in RecordingJob.calls] == ["after"]
        executions = {e.description: e for e in await _executions(context)}
        failed = executions["Failing on purpose"]
        assert failed.status == JobStatus.FAILED
        assert failed.end_time is not None

        async with context.unit_of_work() as uow:
            messages = await uow.jobs.list_messages(failed.id)
        assert len(messages) == 1
        assert messages[0].level == JobMessageLevel.ERROR
        assert messages[0].text == "FailingJob operation failed: boom"

    async def test_job_that_cannot_be_built_is_failed(self, context: ServiceContext) -> None:
        """Wrong constructor arguments end in a failed execution, not a dead worker."""
        scheduler = context.scheduler
        await scheduler.initialize()
        scheduler.add_job(RecordingJob, args=("a", "unexpected", "args"))
        await scheduler.join()
        await scheduler.shutdown()

        [execution] = await _executions(context)
        assert execution.status == JobStatus.FAILED
        async with context.unit_of_work() as uow:
            messages = await uow.jobs.list_messages(execution.id)
        assert messages[0].text.startswith("RecordingJob operation failed:")

    async def test_cancelled_job_marked_interrupted(self, context: ServiceContext) -> None:
        """shutdown(wait=False) cancels the running job and records it as interrupted."""
        BlockingJob.started = asyncio.Event()
        scheduler = context.scheduler
        await scheduler.initialize()
        scheduler.add_job(BlockingJob)
        await asyncio.wait_for(BlockingJob.started.wait(), timeout=5)

        await scheduler.shutdown(wait=False)

        [execution] = await _executions(context)
        assert execution.status == JobStatus.INTERRUPTED
        assert execution.end_time is not None


class TestRecovery:
    """Test startup recovery of executions left running."""

    async def test_running_executions_become_interrupted(self, context: ServiceContext) -> None:
        async with context.unit_of_work() as uow:
            stale = await uow.jobs.add(JobExecution(description="crashed"))
            done = await uow.jobs.add(
                JobExecution(description="done", status=JobStatus.FINISHED)
            )

        await context.scheduler.initialize()
        await context.scheduler.shutdown()

        async with context.unit_of_work() as uow:
            assert (await uow.jobs.get_by_id(stale.id)).status == JobStatus.INTERRUPTED
            assert (await uow.jobs.get_by_id(done.id)).status == JobStatus.FINISHED

    async def test_recovery_is_idempotent(self, context: ServiceContext) -> None:
        async with context.unit_of_work() as uow:
            await uow.jobs.add(JobExecution(description="crashed"))

        async with context.unit_of_work() as uow:
            first = await uow.jobs.mark_running_as_interrupted()
        async with context.unit_of_work() as uow:
            second = await uow.jobs.mark_running_as_interrupted()

        assert first == 1
        assert second == 0


class TestJobRegistration:
    """Test add/reschedule/remove and instance limits (scheduler not started)."""

    async def test_max_instances_drops_second_firing(self, context: ServiceContext) -> None:
        scheduler = context.scheduler
        scheduler.add_job(RecordingJob, job_id="dl-1", max_instances=1)
        scheduler.add_job(RecordingJob, job_id="dl-1", max_instances=1)
        assert scheduler.running_instances("dl-1") == 1

    async def test_without_limit_every_firing_queues(self, context: ServiceContext) -> None:
        scheduler = context.scheduler
        scheduler.add_job(RecordingJob, job_id="free")
        scheduler.add_job(RecordingJob, job_id="free")
        assert scheduler.running_instances("free") == 2

    async def test_coalesce_collapses_missed_firings(self, context: ServiceContext) -> None:
        scheduler = context.scheduler
        job = scheduler.add_job(
            RecordingJob, trigger=timedelta(minutes=1), job_id="tick", coalesce=True
        )
        first = job.next_run_time
        later = first + timedelta(minutes=5)

        delay = scheduler.process_due_jobs(now=later)

        assert scheduler.running_instances("tick") == 1
        assert job.next_run_time > later
        assert delay is not None and delay > 0

    async def test_without_coalesce_every_missed_firing_runs(self, context: ServiceContext) -> None:
        scheduler = context.scheduler
        job = scheduler.add_job(
            RecordingJob, trigger=timedelta(minutes=1), job_id="tick", coalesce=False
        )
        later = job.next_run_time + timedelta(minutes=5)

        scheduler.process_due_jobs(now=later)

        assert scheduler.running_instances("tick") == 6

    async def test_max_instances_applies_to_recurring_firings(self, context: ServiceContext) -> None:
        scheduler = context.scheduler
        job = scheduler.add_job(
            RecordingJob,
            trigger=timedelta(minutes=1),
            job_id="sync",
            max_instances=1,
            coalesce=False,
        )
        scheduler.process_due_jobs(now=job.next_run_time + timedelta(minutes=5))
        assert scheduler.running_instances("sync") == 1

    async def test_duplicate_recurring_id_rejected(self, context: ServiceContext) -> None:
        scheduler = context.scheduler
        scheduler.add_job(RecordingJob, trigger="0 * * * *", job_id="hourly")
        with pytest.raises(DuplicateEntityException):
            scheduler.add_job(RecordingJob, trigger="0 * * * *", job_id="hourly")

    async def test_replace_existing_reschedules_same_job(self, context: ServiceContext) -> None:
        scheduler = context.scheduler
        first = scheduler.add_job(RecordingJob, trigger="0 * * * *", job_id="hourly")
        second = scheduler.add_job(
            RecordingJob, trigger="30 * * * *", job_id="hourly", replace_existing=True
        )

        assert second is first
        assert len(scheduler.get_jobs()) == 1
        assert scheduler.get_job("hourly").next_run_time.minute == 30

    async def test_remove_job(self, context: ServiceContext) -> None:
        scheduler = context.scheduler
        job = scheduler.add_job(RecordingJob, trigger="0 * * * *", job_id="hourly")
        job.remove()
        assert scheduler.get_job("hourly") is None

    async def test_unknown_job_ids_raise(self, context: ServiceContext) -> None:
        scheduler = context.scheduler
        with pytest.raises(EntityNotFoundException):
            scheduler.remove_job("missing")
        with pytest.raises(EntityNotFoundException):
            scheduler.reschedule_job("missing", "0 * * * *")

    async def test_invalid_cron_rejected_on_add(self, context: ServiceContext) -> None:
        with pytest.raises(ValidationException):
            context.scheduler.add_job(RecordingJob, trigger="every hour")

    def test_invalid_concurrency(self) -> None:
        from tubekeeper.application.scheduler.scheduler import Scheduler

        with pytest.raises(ValueError):
            Scheduler(concurrency=0)


class TestTicker:
    """Test that the ticker task fires recurring jobs on its own."""

    async def test_interval_job_fires(self, context: ServiceContext) -> None:
        scheduler = context.scheduler
        await scheduler.initialize()
        try:
            scheduler.add_job(
                RecordingJob, trigger=timedelta(milliseconds=50), job_id="fast", max_instances=1
            )
            async with asyncio.timeout(5):
                while not RecordingJob.calls:
                    await asyncio.sleep(0.02)
        finally:
            scheduler.remove_job("fast")
            await scheduler.shutdown()

        assert RecordingJob.calls[0][1] == "fast"
