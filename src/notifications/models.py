"""Data models for Push Notifications."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Any
from zoneinfo import ZoneInfo
import uuid

from src.notifications.config import (
    NotificationType,
    TargetKind,
    Topic,
    JobState,
    SendState,
    REMINDER_KINDS,
)
from src.notifications.errors import ValidationError


def _new_id() -> str:
    return uuid.uuid4().hex[:16]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def mask_token(token: str) -> str:
    """Shorten a push token for logs and API output."""
    if len(token) <= 20:
        return token
    return token[:20] + "..."


@dataclass
class Channel:
    """A registered delivery endpoint (push token) for one user."""

    token: str
    active: bool = True
    registered_at: datetime = field(default_factory=_now)
    last_used_at: datetime = field(default_factory=_now)
    success_count: int = 0
    error_count: int = 0
    device_info: dict = field(default_factory=dict)
    deactivated_at: Optional[datetime] = None

    @property
    def platform(self) -> Optional[str]:
        return self.device_info.get("platform")

    def mark_used(self, at: Optional[datetime] = None) -> None:
        """Mark channel as recently used."""
        self.last_used_at = at or _now()

    def deactivate(self, at: Optional[datetime] = None) -> None:
        """Exclude the channel from dispatch, keeping it for audit."""
        self.active = False
        self.deactivated_at = at or _now()

    def reactivate(self, at: Optional[datetime] = None) -> None:
        self.active = True
        self.deactivated_at = None
        self.mark_used(at)

    def record_success(self, at: Optional[datetime] = None) -> None:
        self.success_count += 1
        self.error_count = 0
        self.mark_used(at)

    def record_failure(
        self,
        permanent: bool,
        max_errors: int,
        at: Optional[datetime] = None,
    ) -> bool:
        """Apply a failed delivery. Returns True if the channel got deactivated."""
        if permanent:
            self.deactivate(at)
            return True

        self.error_count += 1
        if self.error_count >= max_errors:
            self.deactivate(at)
            return True
        return False

    def to_dict(self) -> dict:
        return {
            "token": mask_token(self.token),
            "active": self.active,
            "registered_at": self.registered_at.isoformat(),
            "last_used_at": self.last_used_at.isoformat(),
            "success_count": self.success_count,
            "error_count": self.error_count,
            "device_info": dict(self.device_info),
            "deactivated_at": self.deactivated_at.isoformat() if self.deactivated_at else None,
        }


@dataclass
class Notification:
    """A push notification payload."""

    title: str
    body: str
    type: NotificationType = NotificationType.GENERAL
    image_url: Optional[str] = None
    data: dict = field(default_factory=dict)

    def validate(self) -> None:
        """Reject payloads the gateway would refuse."""
        if not self.title or not self.title.strip():
            raise ValidationError("Notification title is required", field="title")
        if not self.body or not self.body.strip():
            raise ValidationError("Notification body is required", field="body")

    def to_payload(
        self,
        user_id: Optional[str] = None,
        topic: Optional[str] = None,
        sent_at: Optional[datetime] = None,
    ) -> dict:
        """Build the gateway-neutral message.

        Data values are coerced to strings, as push data maps only carry
        string values.
        """
        sent_at = sent_at or _now()
        data = {
            "type": self.type.value,
            "timestamp": sent_at.isoformat(),
        }
        if user_id is not None:
            data["user_id"] = str(user_id)
        if topic is not None:
            data["topic"] = topic
        data.update({str(k): str(v) for k, v in self.data.items()})

        payload = {
            "notification": {
                "title": self.title,
                "body": self.body,
            },
            "data": data,
        }

        if self.image_url:
            payload["notification"]["image"] = self.image_url

        return payload

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "body": self.body,
            "type": self.type.value,
            "image_url": self.image_url,
            "data": dict(self.data),
        }


@dataclass
class HistoryEntry:
    """One attempted delivery to a user."""

    title: str
    body: str
    type: NotificationType
    sent_at: datetime = field(default_factory=_now)
    success: bool = False
    channels_count: int = 0
    success_count: int = 0
    data: dict = field(default_factory=dict)

    @classmethod
    def from_outcomes(
        cls,
        notification: Notification,
        outcomes: list["ChannelOutcome"],
        sent_at: Optional[datetime] = None,
    ) -> "HistoryEntry":
        success_count = sum(1 for o in outcomes if o.success)
        return cls(
            title=notification.title,
            body=notification.body,
            type=notification.type,
            sent_at=sent_at or _now(),
            success=success_count > 0,
            channels_count=len(outcomes),
            success_count=success_count,
            data=dict(notification.data),
        )

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "body": self.body,
            "type": self.type.value,
            "sent_at": self.sent_at.isoformat(),
            "success": self.success,
            "channels_count": self.channels_count,
            "success_count": self.success_count,
            "data": dict(self.data),
        }


@dataclass
class NotificationPreferences:
    """User-controlled delivery preferences."""

    enabled: bool = True
    types: dict[NotificationType, bool] = field(
        default_factory=lambda: {t: True for t in NotificationType}
    )
    quiet_hours_enabled: bool = False
    quiet_hours_start: str = "22:00"  # HH:MM
    quiet_hours_end: str = "08:00"
    timezone: str = "Europe/Paris"
    reminders: dict[str, bool] = field(
        default_factory=lambda: {kind: True for kind in REMINDER_KINDS}
    )

    def is_type_enabled(self, notification_type: NotificationType) -> bool:
        return self.types.get(notification_type, True)

    def wants_reminder(self, kind: str) -> bool:
        return self.reminders.get(kind, True)

    def is_in_quiet_hours(self, current_time: datetime) -> bool:
        """Check if current time is within quiet hours."""
        if not self.quiet_hours_enabled or not self.quiet_hours_start or not self.quiet_hours_end:
            return False

        try:
            if current_time.tzinfo is not None:
                current_time = current_time.astimezone(ZoneInfo(self.timezone))

            start_hour, start_min = map(int, self.quiet_hours_start.split(":"))
            end_hour, end_min = map(int, self.quiet_hours_end.split(":"))

            current_minutes = current_time.hour * 60 + current_time.minute
            start_minutes = start_hour * 60 + start_min
            end_minutes = end_hour * 60 + end_min

            if start_minutes <= end_minutes:
                return start_minutes <= current_minutes < end_minutes
            else:
                # Overnight quiet hours (e.g., 22:00 - 08:00)
                return current_minutes >= start_minutes or current_minutes < end_minutes
        except (ValueError, KeyError):
            return False

    def blocked_reason(
        self,
        notification_type: NotificationType,
        current_time: datetime,
    ) -> Optional[str]:
        """Return why a notification would be blocked, or None if allowed."""
        if not self.enabled:
            return "notifications_disabled"
        if not self.is_type_enabled(notification_type):
            return "type_disabled"
        if self.is_in_quiet_hours(current_time):
            return "quiet_hours"
        return None

    def to_dict(self) -> dict:
        return {
            "enabled": self.enabled,
            "types": {t.value: v for t, v in self.types.items()},
            "quiet_hours": {
                "enabled": self.quiet_hours_enabled,
                "start": self.quiet_hours_start,
                "end": self.quiet_hours_end,
            },
            "timezone": self.timezone,
            "reminders": dict(self.reminders),
        }


@dataclass
class UserRecord:
    """The slice of a user account owned by the notification subsystem."""

    user_id: str
    display_name: str = ""
    channels: list[Channel] = field(default_factory=list)
    topics: list[Topic] = field(default_factory=list)
    history: list[HistoryEntry] = field(default_factory=list)
    preferences: NotificationPreferences = field(default_factory=NotificationPreferences)

    def find_channel(self, token: str) -> Optional[Channel]:
        for channel in self.channels:
            if channel.token == token:
                return channel
        return None


@dataclass
class ChannelOutcome:
    """Result of one send attempt to one channel."""

    token: str
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    permanent: bool = False
    latency_ms: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "token": mask_token(self.token),
            "success": self.success,
            "message_id": self.message_id,
            "error": self.error,
            "permanent": self.permanent,
            "latency_ms": self.latency_ms,
        }


@dataclass
class DispatchResult:
    """Aggregate result of sending to one user."""

    user_id: str
    success: bool
    success_count: int = 0
    total_channels: int = 0
    results: list[ChannelOutcome] = field(default_factory=list)
    notification_id: str = field(default_factory=lambda: f"notif_{_new_id()}")
    simulated: bool = False
    skipped_reason: Optional[str] = None
    timestamp: datetime = field(default_factory=_now)

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "success": self.success,
            "success_count": self.success_count,
            "total_channels": self.total_channels,
            "results": [r.to_dict() for r in self.results],
            "notification_id": self.notification_id,
            "simulated": self.simulated,
            "skipped_reason": self.skipped_reason,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class UserOutcome:
    """Per-user line of a bulk send."""

    user_id: str
    success: bool
    success_count: int = 0
    error: Optional[str] = None
    error_code: Optional[str] = None
    simulated: bool = False

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "success": self.success,
            "success_count": self.success_count,
            "error": self.error,
            "error_code": self.error_code,
            "simulated": self.simulated,
        }


@dataclass
class BulkResult:
    """Aggregate result of a bulk send."""

    total_users: int
    successful_users: int = 0
    total_notifications: int = 0
    batches: int = 0
    simulated: bool = False
    results: Optional[list[UserOutcome]] = None

    @property
    def failed_users(self) -> int:
        return self.total_users - self.successful_users

    def to_dict(self) -> dict:
        data = {
            "success": True,
            "total_users": self.total_users,
            "successful_users": self.successful_users,
            "total_notifications": self.total_notifications,
            "batches": self.batches,
            "simulated": self.simulated,
        }
        if self.results is not None:
            data["results"] = [r.to_dict() for r in self.results]
        return data


@dataclass
class TopicResult:
    """Result of a topic broadcast."""

    topic: str
    success: bool
    message_id: Optional[str] = None
    simulated: bool = False
    timestamp: datetime = field(default_factory=_now)

    def to_dict(self) -> dict:
        return {
            "topic": self.topic,
            "success": self.success,
            "message_id": self.message_id,
            "simulated": self.simulated,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class SubscriptionResult:
    """Result of a topic subscribe or unsubscribe."""

    user_id: str
    topic: str
    action: str  # subscribe, unsubscribe
    changed: bool = False
    tokens: int = 0
    success_count: int = 0
    failure_count: int = 0
    simulated: bool = False
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.failure_count == 0

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "topic": self.topic,
            "action": self.action,
            "changed": self.changed,
            "tokens": self.tokens,
            "success": self.success,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "simulated": self.simulated,
            "error": self.error,
        }


@dataclass
class HistoryPage:
    """One page of a user's notification history."""

    entries: list[HistoryEntry]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + self.limit < self.total

    def to_dict(self) -> dict:
        return {
            "history": [e.to_dict() for e in self.entries],
            "pagination": {
                "total": self.total,
                "offset": self.offset,
                "limit": self.limit,
                "has_more": self.has_more,
            },
        }


@dataclass
class Target:
    """Who a scheduled dispatch goes to."""

    kind: TargetKind
    user_id: Optional[str] = None
    user_ids: list[str] = field(default_factory=list)
    topic: Optional[str] = None

    @classmethod
    def user(cls, user_id: str) -> "Target":
        return cls(kind=TargetKind.USER, user_id=user_id)

    @classmethod
    def users(cls, user_ids: list[str]) -> "Target":
        return cls(kind=TargetKind.USERS, user_ids=list(user_ids))

    @classmethod
    def for_topic(cls, topic: Any) -> "Target":
        value = topic.value if isinstance(topic, Topic) else str(topic)
        return cls(kind=TargetKind.TOPIC, topic=value)


@dataclass
class ScheduledDispatch:
    """What a job task produces on each firing."""

    notification: Notification
    target: Target


@dataclass
class ScheduledJob:
    """A named recurring job."""

    name: str
    schedule: str
    task_id: str
    state: JobState = JobState.STOPPED
    created_at: datetime = field(default_factory=_now)
    last_fired_at: Optional[datetime] = None
    fire_count: int = 0

    @property
    def running(self) -> bool:
        return self.state == JobState.SCHEDULED

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "schedule": self.schedule,
            "task_id": self.task_id,
            "state": self.state.value,
            "running": self.running,
            "last_fired_at": self.last_fired_at.isoformat() if self.last_fired_at else None,
            "fire_count": self.fire_count,
        }


@dataclass
class DelayedSend:
    """A notification to one user held until a given time."""

    user_id: str
    notification: Notification
    at: datetime
    send_id: str = field(default_factory=lambda: f"send_{_new_id()}")
    state: SendState = SendState.PENDING
    result: Optional[DispatchResult] = None
    error: Optional[str] = None

    @property
    def pending(self) -> bool:
        return self.state == SendState.PENDING

    def to_dict(self) -> dict:
        return {
            "send_id": self.send_id,
            "user_id": self.user_id,
            "title": self.notification.title,
            "type": self.notification.type.value,
            "at": self.at.isoformat(),
            "state": self.state.value,
            "result": self.result.to_dict() if self.result else None,
            "error": self.error,
        }
