"""Configuration for Push Notifications."""

from dataclasses import dataclass
from enum import Enum


class NotificationType(Enum):
    """Notification categories understood by the mobile and web clients."""
    WELCOME = "welcome"
    REMINDER = "reminder"
    HEALTH_REMINDER = "health_reminder"
    HEALTH_TIP = "health_tip"
    ACHIEVEMENT = "achievement"
    HEALTH_ALERT = "health_alert"
    PREMIUM = "premium"
    SUBSCRIPTION = "subscription"
    MOTIVATION = "motivation"
    RECAP = "recap"
    TEST = "test"
    GENERAL = "general"


class Topic(Enum):
    """Broadcast topics a user may subscribe to."""
    HEALTH_TIPS = "health_tips"
    WORKOUT_REMINDERS = "workout_reminders"
    HYDRATION_REMINDERS = "hydration_reminders"
    ACHIEVEMENTS = "achievements"
    PREMIUM_UPDATES = "premium_updates"


class TargetKind(Enum):
    """What a dispatch is aimed at."""
    USER = "user"
    USERS = "users"
    TOPIC = "topic"


class JobState(Enum):
    """Lifecycle of a scheduled job."""
    STOPPED = "stopped"
    SCHEDULED = "scheduled"


class SendState(Enum):
    """Lifecycle of a one-shot delayed send."""
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"


# Per-user health reminder switches, all on by default
REMINDER_KINDS = ("hydration", "workout", "sleep")


@dataclass
class NotificationConfig:
    """Notification subsystem limits and defaults."""

    # Channel registry
    max_channels_per_user: int = 5
    max_error_count: int = 5

    # History
    history_limit: int = 100

    # Bulk dispatch
    max_bulk_targets: int = 500
    batch_size: int = 100
    batch_delay_seconds: float = 1.0

    # Timeouts
    send_timeout_seconds: float = 10.0

    # Scheduler
    scheduler_timezone: str = "Europe/Paris"


DEFAULT_NOTIFICATION_CONFIG = NotificationConfig()


# Presentation defaults per type, used to build the platform envelopes.
TYPE_CONFIGS: dict[NotificationType, dict] = {
    NotificationType.WELCOME: {
        "priority": "normal",
        "sound": "default",
        "color": "#4F46E5",
    },
    NotificationType.HEALTH_ALERT: {
        "priority": "high",
        "sound": "alert.wav",
        "color": "#F44336",
    },
    NotificationType.ACHIEVEMENT: {
        "priority": "normal",
        "sound": "achievement.wav",
        "color": "#FFB300",
    },
    NotificationType.HEALTH_REMINDER: {
        "priority": "normal",
        "sound": "default",
        "color": "#3B82F6",
    },
    NotificationType.TEST: {
        "priority": "high",
        "sound": "default",
        "color": "#607D8B",
    },
}

DEFAULT_TYPE_CONFIG = {
    "priority": "normal",
    "sound": "default",
    "color": "#4F46E5",
}


def type_config(notification_type: NotificationType) -> dict:
    """Return presentation defaults for a notification type."""
    return TYPE_CONFIGS.get(notification_type, DEFAULT_TYPE_CONFIG)
