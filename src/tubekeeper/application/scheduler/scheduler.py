"""In-process job scheduler running Jobs on a bounded pool of asyncio workers.

Hey future me - this is THE place where background work happens!

FLOW:
```
add_job(JobClass, trigger)  ──► one-shot: straight into the queue
                           └──► recurring: registered, the ticker fires it
queue ──► worker task ──► _execute(): JobExecution(running) → job.run()
                                     → finished / failed → end_time saved
                                     → "operation ended" notification
```

RULES:
- A job exception NEVER kills a worker. It ends up as a failed execution plus
  one user-visible error message.
- max_instances counts a firing from the moment it is queued until it
  finished, so a download that is already waiting in the queue is not queued
  a second time.
- coalesce=True turns a pile of missed firings (laptop slept, loop was busy)
  into ONE run.
- initialize() runs the crash recovery (running → interrupted) BEFORE any
  worker starts, so recovery never touches executions of this process.
"""

import asyncio
import logging
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from apscheduler.triggers.base import BaseTrigger

from tubekeeper.application.scheduler.job import Job
from tubekeeper.application.scheduler.triggers import TriggerSpec, build_trigger
from tubekeeper.domain.entities import JobExecution, JobMessage, JobMessageLevel, JobStatus, utc_now
from tubekeeper.domain.exceptions import DuplicateEntityException, EntityNotFoundException
from tubekeeper.infrastructure.observability.logging import job_id_var

if TYPE_CHECKING:
    from tubekeeper.application.context import ServiceContext

logger = logging.getLogger(__name__)


@dataclass
class ScheduledJob:
    """Handle of a job added to the scheduler."""

    id: str
    job_class: type[Job]
    args: tuple[Any, ...]
    user_id: int | None
    trigger: BaseTrigger | None
    max_instances: int | None = None
    coalesce: bool = True
    next_run_time: datetime | None = None
    _scheduler: "Scheduler | None" = field(default=None, repr=False, compare=False)

    @property
    def is_recurring(self) -> bool:
        return self.trigger is not None

    def reschedule(self, trigger: TriggerSpec) -> "ScheduledJob":
        """Replace the trigger of this job (see Scheduler.reschedule_job)."""
        assert self._scheduler is not None
        return self._scheduler.reschedule_job(self.id, trigger)

    def remove(self) -> None:
        """Stop future firings of this job."""
        assert self._scheduler is not None
        self._scheduler.remove_job(self.id)


@dataclass
class _Dispatch:
    """One queued run of a ScheduledJob."""

    job_id: str
    job_class: type[Job]
    args: tuple[Any, ...]
    user_id: int | None


class Scheduler:
    """Runs jobs immediately, on a cron schedule or at an interval."""

    def __init__(self, concurrency: int = 2, max_tick_seconds: float = 60.0) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")

        self._concurrency = concurrency
        self._max_tick_seconds = max_tick_seconds
        self._context: ServiceContext | None = None
        self._jobs: dict[str, ScheduledJob] = {}
        self._instances: Counter[str] = Counter()
        self._queue: asyncio.Queue[_Dispatch] = asyncio.Queue()
        self._wakeup = asyncio.Event()
        self._workers: list[asyncio.Task[None]] = []
        self._ticker: asyncio.Task[None] | None = None
        self._running = False

    # Yo, the scheduler needs the context (DB + notification bus) and the context
    # holds the scheduler. We break the cycle by handing the context over after
    # both exist, same as we do for other late-bound collaborators.
    def set_context(self, context: "ServiceContext") -> None:
        self._context = context

    @property
    def running(self) -> bool:
        return self._running

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def initialize(self) -> None:
        """Run crash recovery, then start workers and the ticker."""
        if self._running:
            logger.warning("Scheduler already running")
            return

        context = self._require_context()
        async with context.unit_of_work() as uow:
            interrupted = await uow.jobs.mark_running_as_interrupted()
        if interrupted:
            logger.warning(f"Marked {interrupted} unfinished job executions as interrupted")

        self._running = True
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"scheduler-worker-{i}")
            for i in range(self._concurrency)
        ]
        self._ticker = asyncio.create_task(self._tick_loop(), name="scheduler-ticker")
        logger.info(f"Scheduler started with {self._concurrency} workers")

    async def shutdown(self, wait: bool = True) -> None:
        """Stop the scheduler.

        Args:
            wait: Let already queued runs finish first. With False, queued runs
                are dropped and running ones cancelled.
        """
        if not self._running:
            return
        self._running = False

        if self._ticker is not None:
            self._ticker.cancel()
            await asyncio.gather(self._ticker, return_exceptions=True)
            self._ticker = None

        if wait:
            await self._queue.join()
        else:
            while not self._queue.empty():
                dispatch = self._queue.get_nowait()
                self._release(dispatch.job_id)
                self._queue.task_done()

        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Scheduler stopped")

    async def join(self) -> None:
        """Wait until every queued run (including runs queued meanwhile) finished."""
        await self._queue.join()

    # =========================================================================
    # JOB REGISTRATION
    # =========================================================================

    def add_job(
        self,
        job_class: type[Job],
        trigger: TriggerSpec = None,
        args: tuple[Any, ...] | list[Any] = (),
        user_id: int | None = None,
        job_id: str | None = None,
        max_instances: int | None = None,
        coalesce: bool = True,
        replace_existing: bool = False,
    ) -> ScheduledJob:
        """Add a job.

        Args:
            job_class: Job subclass to instantiate per run
            trigger: None (run once now), 5-field cron string, timedelta or an
                APScheduler trigger
            args: Extra constructor arguments of the job
            user_id: Owner of the executions (None = system-wide)
            job_id: Stable name; needed for reschedule/remove and instance limits
            max_instances: Max queued+running runs with this job_id
            coalesce: Collapse missed firings into one run
            replace_existing: Re-adding an existing recurring job_id reschedules it

        Returns:
            Handle of the scheduled job

        Raises:
            ValidationException: Invalid cron expression or interval
            DuplicateEntityException: job_id already registered and not replace_existing
        """
        built = build_trigger(trigger)
        job = ScheduledJob(
            id=job_id or uuid.uuid4().hex,
            job_class=job_class,
            args=tuple(args),
            user_id=user_id,
            trigger=built,
            max_instances=max_instances,
            coalesce=coalesce,
            _scheduler=self,
        )

        if built is None:
            self._fire(job)
            return job

        existing = self._jobs.get(job.id)
        if existing is not None:
            if not replace_existing:
                raise DuplicateEntityException("ScheduledJob", job.id)
            existing.job_class = job.job_class
            existing.args = job.args
            existing.user_id = job.user_id
            existing.max_instances = job.max_instances
            existing.coalesce = job.coalesce
            logger.info(f"Replacing scheduled job {job.id}")
            return self.reschedule_job(job.id, built)

        job.next_run_time = built.get_next_fire_time(None, utc_now())
        if job.next_run_time is None:
            logger.warning(f"Trigger of job {job.id} never fires, not scheduling it")
            return job

        self._jobs[job.id] = job
        self._wakeup.set()
        logger.info(
            f"Scheduled job {job.id} ({job_class.__name__}), next run at {job.next_run_time}"
        )
        return job

    def get_job(self, job_id: str) -> ScheduledJob | None:
        """Get a registered recurring job."""
        return self._jobs.get(job_id)

    def get_jobs(self) -> list[ScheduledJob]:
        return list(self._jobs.values())

    def reschedule_job(self, job_id: str, trigger: TriggerSpec) -> ScheduledJob:
        """Give a registered job a new trigger and recompute its next run.

        Raises:
            EntityNotFoundException: No job with that id
        """
        job = self._jobs.get(job_id)
        if job is None:
            raise EntityNotFoundException("ScheduledJob", job_id)

        built = build_trigger(trigger)
        if built is None:
            raise ValueError("A recurring job needs a trigger")

        job.trigger = built
        job.next_run_time = built.get_next_fire_time(None, utc_now())
        if job.next_run_time is None:
            del self._jobs[job_id]
            logger.warning(f"New trigger of job {job_id} never fires, removed it")
        self._wakeup.set()
        return job

    def remove_job(self, job_id: str) -> None:
        """Stop future firings. Runs already queued still happen.

        Raises:
            EntityNotFoundException: No job with that id
        """
        if self._jobs.pop(job_id, None) is None:
            raise EntityNotFoundException("ScheduledJob", job_id)
        logger.info(f"Removed scheduled job {job_id}")

    def running_instances(self, job_id: str) -> int:
        """Count queued + running runs of a job id."""
        return self._instances.get(job_id, 0)

    # =========================================================================
    # DISPATCH
    # =========================================================================

    def _fire(self, job: ScheduledJob) -> bool:
        if job.max_instances is not None and self._instances[job.id] >= job.max_instances:
            logger.debug(
                f"Skipping run of job {job.id}: maximum number of instances "
                f"({job.max_instances}) reached"
            )
            return False

        self._instances[job.id] += 1
        self._queue.put_nowait(
            _Dispatch(job_id=job.id, job_class=job.job_class, args=job.args, user_id=job.user_id)
        )
        return True

    def _release(self, job_id: str) -> None:
        self._instances[job_id] -= 1
        if self._instances[job_id] <= 0:
            del self._instances[job_id]

    def process_due_jobs(self, now: datetime | None = None) -> float | None:
        """Fire every due recurring job.

        Returns:
            Seconds until the next job is due, None if nothing is scheduled
        """
        now = now or utc_now()
        for job in list(self._jobs.values()):
            if job.next_run_time is None or job.next_run_time > now:
                continue
            assert job.trigger is not None

            missed = 0
            run_time: datetime | None = job.next_run_time
            while run_time is not None and run_time <= now:
                missed += 1
                run_time = job.trigger.get_next_fire_time(run_time, now)

            runs = 1 if job.coalesce else missed
            for _ in range(runs):
                if not self._fire(job):
                    break

            job.next_run_time = run_time
            if run_time is None:
                logger.info(f"Job {job.id} has no more firings, removing it")
                del self._jobs[job.id]

        upcoming = [j.next_run_time for j in self._jobs.values() if j.next_run_time is not None]
        if not upcoming:
            return None
        return max((min(upcoming) - now).total_seconds(), 0.0)

    async def _tick_loop(self) -> None:
        while True:
            self._wakeup.clear()
            delay = self.process_due_jobs()
            timeout = self._max_tick_seconds if delay is None else min(delay, self._max_tick_seconds)
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=timeout)
            except TimeoutError:
                pass

    async def _worker(self, index: int) -> None:
        while True:
            dispatch = await self._queue.get()
            try:
                await self._execute(dispatch)
            except Exception:
                # Only reached when the DB itself is broken; keep the worker alive
                logger.exception(f"Worker {index} failed to run job {dispatch.job_id}")
            finally:
                self._release(dispatch.job_id)
                self._queue.task_done()

    # =========================================================================
    # EXECUTION
    # =========================================================================

    async def _execute(self, dispatch: _Dispatch) -> None:
        context = self._require_context()
        token = job_id_var.set(dispatch.job_id)
        try:
            async with context.unit_of_work() as uow:
                execution = await uow.jobs.add(JobExecution(user_id=dispatch.user_id))

            job: Job | None = None
            try:
                job = dispatch.job_class(execution, context, *dispatch.args)
                execution.description = job.get_description()
                await self._save_execution(execution)

                await job.run()
                await job.flush_progress()
                execution.status = JobStatus.FINISHED

            except asyncio.CancelledError:
                # shutdown(wait=False) cancelled the worker mid-run
                execution.status = JobStatus.INTERRUPTED
                logger.warning(f"Job {dispatch.job_id} was cancelled while running")
                raise

            except Exception as ex:
                execution.status = JobStatus.FAILED
                name = job.name if job is not None else dispatch.job_class.name
                (job.log if job is not None else logger).critical(
                    f"Job {dispatch.job_id} failed with exception", exc_info=True
                )
                message = f"{name} operation failed: {ex}"
                if job is not None:
                    await job.usr_err(message)
                else:
                    await self._record_error(context, execution, message)

            finally:
                execution.end_time = utc_now()
                await self._save_execution(execution)
                context.notification_bus.notify_operation_ended(
                    execution.id,
                    f"{execution.description or dispatch.job_class.name} {execution.status.value}",
                    user_id=execution.user_id,
                )
        finally:
            job_id_var.reset(token)

    async def _save_execution(self, execution: JobExecution) -> None:
        context = self._require_context()
        async with context.unit_of_work() as uow:
            await uow.jobs.update(execution)

    async def _record_error(
        self, context: "ServiceContext", execution: JobExecution, message: str
    ) -> None:
        assert execution.id is not None
        async with context.unit_of_work() as uow:
            await uow.jobs.add_message(
                JobMessage(job_id=execution.id, text=message, level=JobMessageLevel.ERROR)
            )
        context.notification_bus.notify_operation_progress(
            execution.id, message, None, user_id=execution.user_id
        )

    def _require_context(self) -> "ServiceContext":
        if self._context is None:
            raise RuntimeError("Scheduler has no context; call set_context() first")
        return self._context
