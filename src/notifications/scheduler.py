"""Recurring notification jobs and ad-hoc event notifications.

A job is a plain record (name, cron schedule, task id). The task is a
function of the firing time returning a ``ScheduledDispatch``, a list of
them, or None when there is nothing to send; the scheduler hands them to
the dispatcher. One-shot delayed sends ride the same ``TriggerSource`` on
a date trigger. Timers come from the source so tests can tick them by hand.
"""

from datetime import datetime
from typing import Any, Callable, Optional, Union
import inspect
import logging

from zoneinfo import ZoneInfo

from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger

from src.logging_config import LogContext, log_performance
from src.notifications.config import JobState, SendState, TargetKind
from src.notifications.dispatcher import Dispatcher
from src.notifications.errors import NotFoundError, ScheduleError
from src.notifications.models import (
    DelayedSend,
    DispatchResult,
    Notification,
    ScheduledDispatch,
    ScheduledJob,
    _now,
)
from src.notifications.templates import render
from src.notifications.triggers import TriggerSource, crontab_trigger

logger = logging.getLogger(__name__)

JobTask = Callable[[datetime], Union[ScheduledDispatch, list[ScheduledDispatch], None]]

TIER_NAMES = {
    "perform": "Perform",
    "pro": "Pro",
    "elite": "Elite",
}

ALERT_ICONS = {
    "low_activity": "🚨",
    "high_stress": "😰",
    "poor_sleep": "😴",
    "dehydration": "💧",
}
DEFAULT_ALERT_ICON = "⚠️"


class NotificationScheduler:
    """Holds named cron jobs and fires them through the dispatcher."""

    def __init__(
        self,
        dispatcher: Dispatcher,
        trigger_source: TriggerSource,
        timezone: str = "Europe/Paris",
        clock: Callable[[], datetime] = _now,
    ):
        self.dispatcher = dispatcher
        self.trigger_source = trigger_source
        self.timezone = timezone
        self.clock = clock
        self._tasks: dict[str, JobTask] = {}
        self._jobs: dict[str, ScheduledJob] = {}
        self._triggers: dict[str, CronTrigger] = {}
        self._pending: dict[str, DelayedSend] = {}
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    # ── Job registry ──────────────────────────────────────────────────

    def register_task(self, task_id: str, fn: JobTask) -> None:
        """Make a task available to jobs by id."""
        if task_id in self._tasks:
            logger.info("Task %s replaced", task_id)
        self._tasks[task_id] = fn

    def _parse_schedule(self, name: str, cron_expr: str) -> CronTrigger:
        try:
            return crontab_trigger(cron_expr, self.timezone)
        except (ValueError, TypeError, AttributeError) as e:
            raise ScheduleError(name, str(cron_expr), str(e)) from None

    def schedule_job(
        self,
        name: str,
        cron_expr: str,
        task: Union[str, JobTask],
    ) -> ScheduledJob:
        """Create or replace a named job.

        ``task`` is a registered task id or a callable, which gets
        registered under the job name. A job with the same name has its
        timer removed first, so only the new one fires.
        """
        trigger = self._parse_schedule(name, cron_expr)

        if callable(task):
            task_id = name
            self.register_task(task_id, task)
        else:
            task_id = task
            if task_id not in self._tasks:
                raise NotFoundError(
                    f"Task '{task_id}' is not registered",
                    resource_type="task",
                    resource_id=task_id,
                )

        previous = self._jobs.get(name)
        if previous is not None:
            logger.warning("Job %s already scheduled, replacing", name)
            self._uninstall(previous)

        job = ScheduledJob(name=name, schedule=cron_expr, task_id=task_id, created_at=self.clock())
        self._jobs[name] = job
        self._triggers[name] = trigger

        if self._running:
            self._install(job)

        logger.info("Job %s scheduled: %s", name, cron_expr)
        return job

    def unschedule_job(self, name: str) -> bool:
        """Remove a job. Returns False when no such job exists."""
        job = self._jobs.pop(name, None)
        if job is None:
            return False
        self._uninstall(job)
        self._triggers.pop(name, None)
        logger.info("Job %s unscheduled", name)
        return True

    def _install(self, job: ScheduledJob) -> None:
        name = job.name

        async def on_tick() -> None:
            await self.fire(name)

        self.trigger_source.add(name, self._triggers[name], on_tick)
        job.state = JobState.SCHEDULED

    def _uninstall(self, job: ScheduledJob) -> None:
        if job.running:
            self.trigger_source.remove(job.name)
        job.state = JobState.STOPPED

    # ── One-shot delayed sends ────────────────────────────────────────

    async def schedule_notification(
        self,
        user_id: str,
        notification: Notification,
        at: datetime,
    ) -> DelayedSend:
        """Send ``notification`` to a user at ``at``.

        A time that is already past sends right away and dispatch errors
        propagate. A future time installs a one-shot timer; its outcome is
        recorded on the returned ``DelayedSend``. Naive times are read in
        the scheduler timezone.
        """
        notification.validate()
        await self.dispatcher.registry.get_user(user_id)
        if at.tzinfo is None:
            at = at.replace(tzinfo=ZoneInfo(self.timezone))

        delayed = DelayedSend(user_id=user_id, notification=notification, at=at)
        if at <= self.clock():
            delayed.result = await self.dispatcher.send_to_user(user_id, notification)
            delayed.state = SendState.SENT
            return delayed

        send_id = delayed.send_id

        async def on_time() -> None:
            await self._deliver(send_id)

        self._pending[send_id] = delayed
        self.trigger_source.add(self._timer_name(send_id), DateTrigger(run_date=at, timezone=self.timezone), on_time)
        logger.info("Notification %s for user %s scheduled at %s", send_id, user_id, at.isoformat())
        return delayed

    @staticmethod
    def _timer_name(send_id: str) -> str:
        return f"send:{send_id}"

    async def _deliver(self, send_id: str) -> None:
        delayed = self._pending.pop(send_id, None)
        if delayed is None or not delayed.pending:
            return
        self.trigger_source.remove(self._timer_name(send_id))

        try:
            delayed.result = await self.dispatcher.send_to_user(delayed.user_id, delayed.notification)
            delayed.state = SendState.SENT
        except Exception as e:
            delayed.state = SendState.FAILED
            delayed.error = str(e)
            logger.error("Delayed notification %s failed: %s", send_id, e)

    def cancel_notification(self, send_id: str) -> bool:
        """Drop a pending delayed send. Returns False when none is pending."""
        delayed = self._pending.pop(send_id, None)
        if delayed is None:
            return False
        self.trigger_source.remove(self._timer_name(send_id))
        delayed.state = SendState.CANCELLED
        logger.info("Delayed notification %s cancelled", send_id)
        return True

    def pending_notifications(self) -> list[DelayedSend]:
        return sorted(self._pending.values(), key=lambda d: d.at)

    # ── Lifecycle ─────────────────────────────────────────────────────

    def start(self) -> None:
        """Install a timer for every registered job."""
        if self._running:
            logger.warning("Notification scheduler already running")
            return

        self.trigger_source.start()
        for job in self._jobs.values():
            self._install(job)
        self._running = True
        logger.info("Notification scheduler started with %d jobs: %s", len(self._jobs), ", ".join(self._jobs))

    def stop(self) -> None:
        """Remove every timer.

        Jobs stay registered for a later start(). Pending delayed sends
        are cancelled.
        """
        if not self._running:
            logger.warning("Notification scheduler already stopped")
            return

        for job in self._jobs.values():
            self._uninstall(job)
        for send_id in list(self._pending):
            self.cancel_notification(send_id)
        self.trigger_source.shutdown()
        self._running = False
        logger.info("Notification scheduler stopped")

    def status(self) -> dict:
        return {
            "running": self._running,
            "job_count": len(self._jobs),
            "jobs": list(self._jobs),
        }

    def list_jobs(self) -> list[ScheduledJob]:
        return list(self._jobs.values())

    def get_job(self, name: str) -> ScheduledJob:
        job = self._jobs.get(name)
        if job is None:
            raise NotFoundError(f"Job '{name}' not found", resource_type="job", resource_id=name)
        return job

    # ── Firing ────────────────────────────────────────────────────────

    @log_performance(threshold_ms=30000)
    async def fire(self, name: str, now: Optional[datetime] = None) -> Any:
        """Run one job now and dispatch what its task produces.

        Firings of a stopped job are ignored. Task and dispatch failures are
        logged, never raised, so one broken job cannot take the others down.
        Returns the dispatch result, one result per delivered send for
        per-user tasks, or None.
        """
        job = self.get_job(name)
        if not self._running or not job.running:
            logger.debug("Firing of stopped job %s ignored", name)
            return None

        now = now or self.clock()
        job.last_fired_at = now
        job.fire_count += 1

        with LogContext(job=name):
            try:
                dispatch = self._tasks[job.task_id](now)
                if inspect.isawaitable(dispatch):
                    dispatch = await dispatch
                if not dispatch:
                    logger.info("Job %s produced nothing to send", name)
                    return None
                if isinstance(dispatch, list):
                    return await self._dispatch_each(name, dispatch)
                return await self._dispatch(dispatch)
            except Exception as e:
                logger.error("Job %s failed: %s", name, e, exc_info=True)
                return None

    async def _dispatch_each(self, name: str, dispatches: list[ScheduledDispatch]) -> list:
        results = []
        for dispatch in dispatches:
            try:
                results.append(await self._dispatch(dispatch))
            except Exception as e:
                logger.warning("Job %s: send to %s failed: %s", name, dispatch.target.user_id or dispatch.target.topic, e)
        logger.info("Job %s sent %d/%d", name, len(results), len(dispatches))
        return results

    async def _dispatch(self, dispatch: ScheduledDispatch) -> Any:
        target = dispatch.target
        if target.kind == TargetKind.USER:
            return await self.dispatcher.send_to_user(target.user_id, dispatch.notification)
        if target.kind == TargetKind.USERS:
            return await self.dispatcher.send_to_users(target.user_ids, dispatch.notification)
        return await self.dispatcher.send_to_topic(target.topic, dispatch.notification)

    # ── Ad-hoc event notifications ────────────────────────────────────

    async def send_welcome(self, user_id: str, user_name: str) -> DispatchResult:
        notification = render(
            "welcome",
            overrides={"data": {"category": "onboarding", "user_name": user_name}},
            variables={"user_name": user_name},
        )
        result = await self.dispatcher.send_to_user(user_id, notification)
        logger.info("Welcome notification sent to %s", user_name)
        return result

    async def send_achievement(
        self,
        user_id: str,
        achievement_id: str,
        achievement_title: str,
        points: int = 0,
    ) -> DispatchResult:
        notification = render(
            "achievement_unlocked",
            overrides={
                "data": {
                    "category": "achievement",
                    "achievement_id": achievement_id,
                    "points": points,
                }
            },
            variables={"achievement_title": achievement_title},
        )
        result = await self.dispatcher.send_to_user(user_id, notification)
        logger.info("Achievement notification sent for %s", achievement_title)
        return result

    async def send_subscription_upgrade(self, user_id: str, tier: str) -> DispatchResult:
        notification = render(
            "subscription_upgrade",
            overrides={"data": {"category": "subscription_upgrade", "new_tier": tier}},
            variables={"tier_name": TIER_NAMES.get(tier, tier)},
        )
        result = await self.dispatcher.send_to_user(user_id, notification)
        logger.info("Subscription upgrade notification sent for tier %s", tier)
        return result

    async def send_health_alert(self, user_id: str, alert_type: str, message: str) -> DispatchResult:
        notification = render(
            "health_alert",
            overrides={
                "body": message,
                "data": {"category": "health_alert", "alert_type": alert_type},
            },
            variables={"alert_icon": ALERT_ICONS.get(alert_type, DEFAULT_ALERT_ICON)},
        )
        result = await self.dispatcher.send_to_user(user_id, notification)
        logger.info("Health alert sent: %s", alert_type)
        return result
