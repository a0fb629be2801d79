"""Trigger helpers for the job scheduler.

We only borrow APScheduler's trigger classes (cron parsing and next fire time
computation). Dispatching, coalescing and instance limits are done by our own
Scheduler so they can live on the asyncio worker pool.
"""

from datetime import UTC, timedelta

from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from tubekeeper.domain.exceptions import ValidationException

TriggerSpec = str | timedelta | BaseTrigger | None


def parse_cron(expression: str) -> CronTrigger:
    """Parse a standard 5-field crontab expression.

    Raises:
        ValidationException: If the expression is not valid
    """
    try:
        return CronTrigger.from_crontab(expression, timezone=UTC)
    except (ValueError, TypeError) as e:
        raise ValidationException(f"Invalid cron expression '{expression}': {e}") from e


def build_trigger(trigger: TriggerSpec) -> BaseTrigger | None:
    """Normalize the accepted trigger forms to an APScheduler trigger.

    None stays None (meaning: run once, right now).
    """
    if trigger is None or isinstance(trigger, BaseTrigger):
        return trigger
    if isinstance(trigger, str):
        return parse_cron(trigger)
    if isinstance(trigger, timedelta):
        if trigger.total_seconds() <= 0:
            raise ValidationException("Interval must be positive")
        return IntervalTrigger(seconds=trigger.total_seconds(), timezone=UTC)
    raise TypeError(f"Unsupported trigger type: {type(trigger).__name__}")
