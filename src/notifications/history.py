"""Bounded per-user notification history."""

from typing import Optional
import logging

from src.notifications.config import NotificationConfig, DEFAULT_NOTIFICATION_CONFIG
from src.notifications.errors import NotFoundError, ValidationError
from src.notifications.models import HistoryEntry, HistoryPage, UserRecord
from src.notifications.store import UserLocks, UserStore

logger = logging.getLogger(__name__)


class HistoryLog:
    """Newest-first delivery log, capped per user."""

    def __init__(
        self,
        store: UserStore,
        locks: Optional[UserLocks] = None,
        config: Optional[NotificationConfig] = None,
    ):
        self.store = store
        self.locks = locks or UserLocks()
        self.config = config or DEFAULT_NOTIFICATION_CONFIG

    async def _get_user(self, user_id: str) -> UserRecord:
        user = await self.store.find_by_id(user_id)
        if user is None:
            raise NotFoundError(
                f"User '{user_id}' not found",
                resource_type="user",
                resource_id=user_id,
            )
        return user

    async def append(self, user_id: str, entry: HistoryEntry) -> int:
        """Prepend an entry, dropping the oldest beyond the limit."""
        async with self.locks.for_user(user_id):
            user = await self._get_user(user_id)
            user.history.insert(0, entry)
            dropped = len(user.history) - self.config.history_limit
            if dropped > 0:
                del user.history[self.config.history_limit:]
                logger.debug("Trimmed %d history entries for user %s", dropped, user_id)
            await self.store.save(user)
            return len(user.history)

    async def page(self, user_id: str, limit: int = 20, offset: int = 0) -> HistoryPage:
        """Return one page of history, newest first."""
        if limit <= 0:
            raise ValidationError("limit must be positive", field="limit")
        if offset < 0:
            raise ValidationError("offset must not be negative", field="offset")

        user = await self._get_user(user_id)
        return HistoryPage(
            entries=user.history[offset:offset + limit],
            total=len(user.history),
            limit=limit,
            offset=offset,
        )

    async def clear(self, user_id: str) -> int:
        """Drop a user's history. Returns the number of entries removed."""
        async with self.locks.for_user(user_id):
            user = await self._get_user(user_id)
            count = len(user.history)
            user.history = []
            await self.store.save(user)
        return count
