"""Notification Error Hierarchy.

Typed exceptions for the push notification subsystem. Every error carries
a stable error code and structured details naming the user, channel,
topic, job or template it concerns, so callers can retry narrowly.
"""

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCode(Enum):
    """Standardized error codes for notification failures."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    EMPTY_TARGETS = "EMPTY_TARGETS"
    TOO_MANY_TARGETS = "TOO_MANY_TARGETS"
    INVALID_TOPIC = "INVALID_TOPIC"

    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    UNKNOWN_TEMPLATE = "UNKNOWN_TEMPLATE"

    NO_CHANNELS = "NO_CHANNELS"
    SCHEDULE_ERROR = "SCHEDULE_ERROR"
    GATEWAY_ERROR = "GATEWAY_ERROR"


class NotificationError(Exception):
    """Base exception for all notification errors."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.VALIDATION_ERROR,
        details: Optional[List[Dict[str, Any]]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or []

    def to_dict(self) -> dict:
        return {
            "error": self.error_code.value,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(NotificationError):
    """Raised when input fails validation before any I/O happens."""

    def __init__(
        self,
        message: str = "Validation failed",
        error_code: ErrorCode = ErrorCode.VALIDATION_ERROR,
        field: Optional[str] = None,
        details: Optional[List[Dict[str, Any]]] = None,
    ):
        if field and not details:
            details = [{"field": field, "issue": message}]
        super().__init__(message, error_code, details)


class EmptyTargetsError(ValidationError):
    """Raised when a bulk send is given no users."""

    def __init__(self, message: str = "At least one target user is required"):
        super().__init__(message, ErrorCode.EMPTY_TARGETS, field="user_ids")


class TooManyTargetsError(ValidationError):
    """Raised when a bulk send exceeds the per-call target limit."""

    def __init__(self, count: int, limit: int):
        super().__init__(
            f"Bulk send accepts at most {limit} users, got {count}",
            ErrorCode.TOO_MANY_TARGETS,
            details=[{"field": "user_ids", "count": count, "limit": limit}],
        )
        self.count = count
        self.limit = limit


class InvalidTopicError(ValidationError):
    """Raised when a topic is not part of the known topic set."""

    def __init__(self, topic: Any, allowed: Optional[List[str]] = None):
        super().__init__(
            f"Unknown topic '{topic}'",
            ErrorCode.INVALID_TOPIC,
            details=[{"field": "topic", "value": str(topic), "allowed": allowed or []}],
        )
        self.topic = topic


class NotFoundError(NotificationError):
    """Raised when a user, channel, job or template does not exist."""

    def __init__(
        self,
        message: str = "Resource not found",
        error_code: ErrorCode = ErrorCode.RESOURCE_NOT_FOUND,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
    ):
        details = []
        if resource_type or resource_id:
            details = [{"resource_type": resource_type, "resource_id": resource_id}]
        super().__init__(message, error_code, details)
        self.resource_type = resource_type
        self.resource_id = resource_id


class UnknownTemplateError(NotFoundError):
    """Raised when rendering a template name absent from the catalog."""

    def __init__(self, name: str, available: Optional[List[str]] = None):
        super().__init__(
            f"Notification template '{name}' not found",
            ErrorCode.UNKNOWN_TEMPLATE,
            resource_type="template",
            resource_id=name,
        )
        self.available = available or []
        self.details[0]["available"] = self.available


class NoChannelsError(NotificationError):
    """Raised when a user has no active delivery channel."""

    def __init__(self, user_id: str):
        super().__init__(
            f"No active channels for user '{user_id}'",
            ErrorCode.NO_CHANNELS,
            details=[{"user_id": user_id}],
        )
        self.user_id = user_id


class ScheduleError(NotificationError):
    """Raised when a job's cron expression cannot be parsed."""

    def __init__(self, name: str, expression: str, reason: str = ""):
        message = f"Invalid schedule '{expression}' for job '{name}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(
            message,
            ErrorCode.SCHEDULE_ERROR,
            details=[{"job": name, "schedule": expression}],
        )
        self.name = name
        self.expression = expression


class GatewayError(NotificationError):
    """Raised when the push gateway rejects or fails a delivery."""

    def __init__(
        self,
        message: str,
        permanent: bool = False,
        token: Optional[str] = None,
        topic: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        detail: Dict[str, Any] = {"permanent": permanent}
        if token:
            detail["token"] = token[:20] + "..." if len(token) > 20 else token
        if topic:
            detail["topic"] = topic
        if status_code is not None:
            detail["status_code"] = status_code
        super().__init__(message, ErrorCode.GATEWAY_ERROR, [detail])
        self.permanent = permanent
        self.token = token
        self.topic = topic
        self.status_code = status_code
