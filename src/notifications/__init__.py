"""Push Notification Delivery & Scheduling.

Notification subsystem for the coaching app:
- Device channel registry with health tracking and LRU eviction
- Topic subscriptions mirrored to the push provider
- Single, bulk (batched) and topic dispatch, live or simulated
- Bounded per-user history and delivery preferences
- Cron-driven reminder jobs and event notifications
"""

from src.notifications.config import (
    JobState,
    NotificationConfig,
    NotificationType,
    SendState,
    TargetKind,
    Topic,
    DEFAULT_NOTIFICATION_CONFIG,
)
from src.notifications.errors import (
    EmptyTargetsError,
    ErrorCode,
    GatewayError,
    InvalidTopicError,
    NoChannelsError,
    NotFoundError,
    NotificationError,
    ScheduleError,
    TooManyTargetsError,
    UnknownTemplateError,
    ValidationError,
)
from src.notifications.models import (
    BulkResult,
    Channel,
    ChannelOutcome,
    DelayedSend,
    DispatchResult,
    HistoryEntry,
    HistoryPage,
    Notification,
    NotificationPreferences,
    ScheduledDispatch,
    ScheduledJob,
    SubscriptionResult,
    Target,
    TopicResult,
    UserOutcome,
    UserRecord,
)
from src.notifications.store import InMemoryUserStore, UserLocks, UserStore
from src.notifications.gateway import (
    GatewayConfig,
    LiveGateway,
    PushGateway,
    SimulatedGateway,
    create_gateway,
)
from src.notifications.channels import ChannelRegistry
from src.notifications.topics import TopicIndex
from src.notifications.history import HistoryLog
from src.notifications.preferences import PreferenceManager
from src.notifications.templates import TEMPLATES, list_templates, render
from src.notifications.dispatcher import Dispatcher, DispatchOptions
from src.notifications.triggers import APSchedulerTriggerSource, TriggerSource
from src.notifications.scheduler import NotificationScheduler
from src.notifications.reminders import DEFAULT_JOBS, register_default_jobs
from src.notifications.service import NotificationService, build_notification_service

__all__ = [
    # Config
    "JobState",
    "NotificationConfig",
    "NotificationType",
    "SendState",
    "TargetKind",
    "Topic",
    "DEFAULT_NOTIFICATION_CONFIG",
    # Errors
    "EmptyTargetsError",
    "ErrorCode",
    "GatewayError",
    "InvalidTopicError",
    "NoChannelsError",
    "NotFoundError",
    "NotificationError",
    "ScheduleError",
    "TooManyTargetsError",
    "UnknownTemplateError",
    "ValidationError",
    # Models
    "BulkResult",
    "Channel",
    "ChannelOutcome",
    "DelayedSend",
    "DispatchResult",
    "HistoryEntry",
    "HistoryPage",
    "Notification",
    "NotificationPreferences",
    "ScheduledDispatch",
    "ScheduledJob",
    "SubscriptionResult",
    "Target",
    "TopicResult",
    "UserOutcome",
    "UserRecord",
    # Storage
    "InMemoryUserStore",
    "UserLocks",
    "UserStore",
    # Gateway
    "GatewayConfig",
    "LiveGateway",
    "PushGateway",
    "SimulatedGateway",
    "create_gateway",
    # Components
    "ChannelRegistry",
    "TopicIndex",
    "HistoryLog",
    "PreferenceManager",
    "TEMPLATES",
    "list_templates",
    "render",
    "Dispatcher",
    "DispatchOptions",
    "APSchedulerTriggerSource",
    "TriggerSource",
    "NotificationScheduler",
    "DEFAULT_JOBS",
    "register_default_jobs",
    "NotificationService",
    "build_notification_service",
]
