"""Cron trigger sources driving the notification scheduler."""

from typing import Any, Awaitable, Callable, Protocol, runtime_checkable
import logging

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

logger = logging.getLogger(__name__)

TickCallback = Callable[[], Awaitable[Any]]

# crontab weekday numbers: 0 and 7 are both Sunday
_CRON_DAYS = ("sun", "mon", "tue", "wed", "thu", "fri", "sat", "sun")


def _crontab_day_of_week(field: str) -> str:
    """Translate crontab weekday numbers to APScheduler day names.

    APScheduler counts weekdays from Monday = 0, crontab from Sunday = 0,
    so numeric weekdays are spelled out before building the trigger.
    """
    days = []
    for part in field.split(","):
        expr, _, step = part.partition("/")
        if expr == "*" and not step:
            days.append(part)
            continue
        if expr != "*" and not any(ch.isdigit() for ch in expr):
            days.append(part)
            continue

        if expr == "*":
            start, end = 0, 6
        else:
            first, _, last = expr.partition("-")
            start = int(first)
            end = int(last) if last else (6 if step else start)
        if not (0 <= start <= end <= 7):
            raise ValueError(f"Invalid day of week '{part}'")
        days.extend(_CRON_DAYS[d] for d in range(start, end + 1, int(step) if step else 1))

    return ",".join(dict.fromkeys(days))


def crontab_trigger(expression: str, timezone: str) -> CronTrigger:
    """Build a trigger from a standard 5-field crontab expression."""
    values = expression.split()
    if len(values) != 5:
        raise ValueError(f"Wrong number of fields; got {len(values)}, expected 5")

    minute, hour, day, month, day_of_week = values
    return CronTrigger(
        minute=minute,
        hour=hour,
        day=day,
        month=month,
        day_of_week=_crontab_day_of_week(day_of_week),
        timezone=timezone,
    )


@runtime_checkable
class TriggerSource(Protocol):
    """Something that calls back on cron ticks, one timer per job name."""

    def add(self, name: str, trigger: Any, callback: TickCallback) -> None: ...

    def remove(self, name: str) -> None: ...

    def start(self) -> None: ...

    def shutdown(self) -> None: ...


class APSchedulerTriggerSource:
    """Trigger source backed by APScheduler's ``AsyncIOScheduler``.

    ``start()`` must be called from inside a running event loop.
    """

    def __init__(self, timezone: str = "Europe/Paris"):
        self.timezone = timezone
        self._scheduler = AsyncIOScheduler(timezone=timezone)

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def add(self, name: str, trigger: Any, callback: TickCallback) -> None:
        self._scheduler.add_job(
            callback,
            trigger=trigger,
            id=name,
            name=name,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
            misfire_grace_time=60,
        )

    def remove(self, name: str) -> None:
        try:
            self._scheduler.remove_job(name)
        except JobLookupError:
            logger.debug("No timer registered for job %s", name)

    def start(self) -> None:
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("Cron trigger source started (%s)", self.timezone)

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.remove_all_jobs()
            self._scheduler.shutdown(wait=False)
            logger.info("Cron trigger source shut down")
