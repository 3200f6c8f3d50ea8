"""User notification preferences management."""

from datetime import datetime
from typing import Callable, Optional
import logging
import re

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from src.notifications.config import NotificationType, REMINDER_KINDS
from src.notifications.errors import NotFoundError, ValidationError
from src.notifications.models import NotificationPreferences, UserRecord, _now
from src.notifications.store import UserLocks, UserStore

logger = logging.getLogger(__name__)

_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


class PreferenceManager:
    """Reads and updates the preferences stored on user records."""

    def __init__(
        self,
        store: UserStore,
        locks: Optional[UserLocks] = None,
        clock: Callable[[], datetime] = _now,
    ):
        self.store = store
        self.locks = locks or UserLocks()
        self.clock = clock

    async def _get_user(self, user_id: str) -> UserRecord:
        user = await self.store.find_by_id(user_id)
        if user is None:
            raise NotFoundError(
                f"User '{user_id}' not found",
                resource_type="user",
                resource_id=user_id,
            )
        return user

    async def get_preferences(self, user_id: str) -> NotificationPreferences:
        user = await self._get_user(user_id)
        return user.preferences

    async def update_preferences(
        self,
        user_id: str,
        enabled: Optional[bool] = None,
        types: Optional[dict] = None,
        quiet_hours_enabled: Optional[bool] = None,
        quiet_hours_start: Optional[str] = None,
        quiet_hours_end: Optional[str] = None,
        timezone: Optional[str] = None,
        reminders: Optional[dict[str, bool]] = None,
    ) -> NotificationPreferences:
        """Update a user's preferences. Omitted fields keep their value."""
        parsed_types = self._parse_types(types) if types is not None else None
        if reminders is not None:
            unknown = sorted(set(reminders) - set(REMINDER_KINDS))
            if unknown:
                raise ValidationError(f"Unknown reminder kind '{unknown[0]}'", field="reminders")
        for name, value in (("quiet_hours_start", quiet_hours_start), ("quiet_hours_end", quiet_hours_end)):
            if value is not None and not _HHMM.match(value):
                raise ValidationError(f"{name} must be HH:MM", field=name)
        if timezone is not None:
            try:
                ZoneInfo(timezone)
            except (ZoneInfoNotFoundError, ValueError):
                raise ValidationError(f"Unknown timezone '{timezone}'", field="timezone") from None

        async with self.locks.for_user(user_id):
            user = await self._get_user(user_id)
            pref = user.preferences

            if enabled is not None:
                pref.enabled = bool(enabled)
            if parsed_types is not None:
                pref.types.update(parsed_types)
            if quiet_hours_enabled is not None:
                pref.quiet_hours_enabled = bool(quiet_hours_enabled)
            if quiet_hours_start is not None:
                pref.quiet_hours_start = quiet_hours_start
            if quiet_hours_end is not None:
                pref.quiet_hours_end = quiet_hours_end
            if timezone is not None:
                pref.timezone = timezone
            if reminders is not None:
                pref.reminders.update({kind: bool(value) for kind, value in reminders.items()})

            await self.store.save(user)

        logger.info("Notification preferences updated for user %s", user_id)
        return pref

    @staticmethod
    def _parse_types(types: dict) -> dict[NotificationType, bool]:
        parsed = {}
        for key, value in types.items():
            try:
                notification_type = key if isinstance(key, NotificationType) else NotificationType(key)
            except ValueError:
                raise ValidationError(f"Unknown notification type '{key}'", field="types") from None
            parsed[notification_type] = bool(value)
        return parsed

    async def is_notification_allowed(
        self,
        user_id: str,
        notification_type: NotificationType,
        current_time: Optional[datetime] = None,
    ) -> tuple[bool, str]:
        """Check if notification is allowed based on preferences.

        Returns (allowed, reason) tuple.
        """
        pref = await self.get_preferences(user_id)
        reason = pref.blocked_reason(notification_type, current_time or self.clock())
        if reason:
            return False, reason
        return True, "allowed"

    async def reset_to_defaults(self, user_id: str) -> NotificationPreferences:
        async with self.locks.for_user(user_id):
            user = await self._get_user(user_id)
            user.preferences = NotificationPreferences()
            await self.store.save(user)
        return user.preferences
