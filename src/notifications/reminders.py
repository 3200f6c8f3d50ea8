"""Default recurring reminder jobs.

Most tasks are pure functions of the firing time returning the
notification to broadcast and its topic. The health reminder task walks
the user store instead and produces one personalized send per user.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Optional
import logging
import random

from zoneinfo import ZoneInfo

from src.notifications.config import NotificationType, Topic
from src.notifications.models import Notification, ScheduledDispatch, Target, UserRecord
from src.notifications.store import UserStore
from src.notifications.templates import render

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DailyTip:
    title: str
    body: str
    category: str


DAILY_TIPS: tuple[DailyTip, ...] = (
    DailyTip(
        title="💡 Conseil Santé du Jour",
        body="Commencez votre journée par 10 minutes de méditation pour réduire le stress.",
        category="health_tip",
    ),
    DailyTip(
        title="🥗 Nutrition du Jour",
        body="Incluez des légumes colorés dans chaque repas pour plus de vitamines.",
        category="nutrition_tip",
    ),
    DailyTip(
        title="🏃‍♀️ Mouvement du Jour",
        body="Prenez les escaliers au lieu de l'ascenseur aujourd'hui !",
        category="activity_tip",
    ),
    DailyTip(
        title="😴 Sommeil du Jour",
        body="Évitez les écrans 1h avant le coucher pour un meilleur sommeil.",
        category="sleep_tip",
    ),
)


@dataclass(frozen=True)
class HealthReminder:
    kind: str
    template: str
    personal_body: str
    hours: tuple[int, ...]


# kind, template, body with the user's name, local hours it is due
HEALTH_REMINDERS: tuple[HealthReminder, ...] = (
    HealthReminder(
        kind="hydration",
        template="hydration_reminder",
        personal_body="{user_name}, n'oubliez pas de boire de l'eau !",
        hours=(8, 10, 12, 14, 16, 18, 20),
    ),
    HealthReminder(
        kind="workout",
        template="workout_reminder",
        personal_body="{user_name}, que diriez-vous d'un peu d'exercice ?",
        hours=(16,),
    ),
    HealthReminder(
        kind="sleep",
        template="sleep_reminder",
        personal_body="{user_name}, il est temps de vous préparer pour la nuit !",
        hours=(22,),
    ),
)


def _personal_reminder(reminder: HealthReminder, user: UserRecord) -> Notification:
    overrides: dict = {"data": {"reminder_type": reminder.kind}}
    if user.display_name:
        overrides["body"] = reminder.personal_body
    return render(reminder.template, overrides=overrides, variables={"user_name": user.display_name})


def make_health_reminder_task(
    store: UserStore,
    timezone: str = "Europe/Paris",
) -> Callable[[datetime], Awaitable[list[ScheduledDispatch]]]:
    """Build the per-user health reminder task.

    On each firing, every user with an active channel gets the reminders
    due at the firing hour, except kinds they switched off and while their
    preferences block health reminders.
    """
    zone = ZoneInfo(timezone)

    async def health_reminders(now: datetime) -> list[ScheduledDispatch]:
        hour = now.astimezone(zone).hour
        due = [r for r in HEALTH_REMINDERS if hour in r.hours]
        if not due:
            return []

        dispatches = []
        for user in await store.all_users():
            if not any(c.active for c in user.channels):
                continue
            prefs = user.preferences
            if prefs.blocked_reason(NotificationType.HEALTH_REMINDER, now) is not None:
                continue
            for reminder in due:
                if prefs.wants_reminder(reminder.kind):
                    dispatches.append(
                        ScheduledDispatch(_personal_reminder(reminder, user), Target.user(user.user_id))
                    )

        logger.info("%d health reminders due at %02d:00", len(dispatches), hour)
        return dispatches

    return health_reminders


def workout_reminder(now: datetime) -> ScheduledDispatch:
    notification = render("workout_reminder", overrides={"data": {"reminder_type": "workout"}})
    return ScheduledDispatch(notification, Target.for_topic(Topic.WORKOUT_REMINDERS))


def sleep_reminder(now: datetime) -> ScheduledDispatch:
    notification = render("sleep_reminder", overrides={"data": {"reminder_type": "sleep"}})
    return ScheduledDispatch(notification, Target.for_topic(Topic.HEALTH_TIPS))


def make_daily_tip_task(rng: Optional[random.Random] = None) -> Callable[[datetime], ScheduledDispatch]:
    """Build the daily tip task. Pass a seeded ``rng`` for a fixed order."""
    rng = rng or random.Random()

    def daily_tip(now: datetime) -> ScheduledDispatch:
        tip = rng.choice(DAILY_TIPS)
        notification = Notification(
            title=tip.title,
            body=tip.body,
            type=NotificationType.HEALTH_TIP,
            data={"category": tip.category},
        )
        return ScheduledDispatch(notification, Target.for_topic(Topic.HEALTH_TIPS))

    return daily_tip


def weekly_motivation(now: datetime) -> ScheduledDispatch:
    notification = Notification(
        title="🔥 Nouvelle Semaine, Nouveaux Objectifs !",
        body="C'est parti pour une semaine pleine d'énergie et de réussites !",
        type=NotificationType.MOTIVATION,
        data={"category": "weekly_motivation"},
    )
    return ScheduledDispatch(notification, Target.for_topic(Topic.ACHIEVEMENTS))


def weekly_recap(now: datetime) -> ScheduledDispatch:
    notification = Notification(
        title="📊 Votre Semaine en Résumé",
        body="Découvrez vos progrès et préparez la semaine prochaine !",
        type=NotificationType.RECAP,
        data={"category": "weekly_recap"},
    )
    return ScheduledDispatch(notification, Target.for_topic(Topic.ACHIEVEMENTS))


# name -> (cron schedule, task id)
DEFAULT_JOBS: dict[str, tuple[str, str]] = {
    "hydration-reminders": ("0 8,10,12,14,16,18,20 * * *", "health_reminders"),
    "workout-reminders": ("0 16 * * *", "workout_reminder"),
    "sleep-reminders": ("0 22 * * *", "sleep_reminder"),
    "daily-tips": ("0 9 * * *", "daily_tip"),
    "weekly-motivation": ("0 8 * * 1", "weekly_motivation"),
    "weekly-recap": ("0 19 * * 0", "weekly_recap"),
}


def default_tasks(
    store: UserStore,
    rng: Optional[random.Random] = None,
    timezone: str = "Europe/Paris",
) -> dict[str, Callable]:
    return {
        "health_reminders": make_health_reminder_task(store, timezone),
        "workout_reminder": workout_reminder,
        "sleep_reminder": sleep_reminder,
        "daily_tip": make_daily_tip_task(rng),
        "weekly_motivation": weekly_motivation,
        "weekly_recap": weekly_recap,
    }


def register_default_jobs(scheduler, rng: Optional[random.Random] = None) -> list[str]:
    """Register the reminder tasks and schedule the default jobs.

    Returns the scheduled job names.
    """
    store = scheduler.dispatcher.registry.store
    for task_id, fn in default_tasks(store, rng, scheduler.timezone).items():
        scheduler.register_task(task_id, fn)

    for name, (schedule, task_id) in DEFAULT_JOBS.items():
        scheduler.schedule_job(name, schedule, task_id)

    return list(DEFAULT_JOBS)
