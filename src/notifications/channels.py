"""Device channel registration and health tracking."""

from datetime import datetime
from typing import Callable, Iterable, Optional
import logging

from src.notifications.config import NotificationConfig, DEFAULT_NOTIFICATION_CONFIG
from src.notifications.errors import NotFoundError, ValidationError
from src.notifications.models import Channel, ChannelOutcome, UserRecord, _now, mask_token
from src.notifications.store import UserLocks, UserStore

logger = logging.getLogger(__name__)


class ChannelRegistry:
    """Owns each user's push channels and their activity state."""

    def __init__(
        self,
        store: UserStore,
        locks: Optional[UserLocks] = None,
        config: Optional[NotificationConfig] = None,
        clock: Callable[[], datetime] = _now,
    ):
        self.store = store
        self.locks = locks or UserLocks()
        self.config = config or DEFAULT_NOTIFICATION_CONFIG
        self.clock = clock

    async def get_user(self, user_id: str) -> UserRecord:
        user = await self.store.find_by_id(user_id)
        if user is None:
            raise NotFoundError(
                f"User '{user_id}' not found",
                resource_type="user",
                resource_id=user_id,
            )
        return user

    async def register(
        self,
        user_id: str,
        token: str,
        device_info: Optional[dict] = None,
    ) -> int:
        """Register a new channel or refresh an existing one.

        Returns the user's channel count after eviction.
        """
        if not token or not token.strip():
            raise ValidationError("Push token is required", field="token")

        async with self.locks.for_user(user_id):
            user = await self.get_user(user_id)
            now = self.clock()

            channel = user.find_channel(token)
            if channel is not None:
                channel.device_info = {**channel.device_info, **(device_info or {})}
                channel.reactivate(now)
            else:
                channel = Channel(
                    token=token,
                    registered_at=now,
                    last_used_at=now,
                    device_info=dict(device_info or {}),
                )
                user.channels.append(channel)

            self._evict_overflow(user, keep=channel)
            await self.store.save(user)

        logger.info(
            "Channel %s registered for user %s (%d channels)",
            mask_token(token),
            user_id,
            len(user.channels),
        )
        return len(user.channels)

    def _evict_overflow(self, user: UserRecord, keep: Channel) -> None:
        """Drop least-recently-used channels beyond the per-user limit."""
        overflow = len(user.channels) - self.config.max_channels_per_user
        if overflow <= 0:
            return

        candidates = sorted(
            (c for c in user.channels if c is not keep),
            key=lambda c: c.last_used_at,
        )
        evicted = candidates[:overflow]
        user.channels = [c for c in user.channels if not any(c is e for e in evicted)]

        for channel in evicted:
            logger.info("Evicted channel %s for user %s", mask_token(channel.token), user.user_id)

    async def unregister(self, user_id: str, token: str) -> bool:
        """Remove a channel. Returns False when it was not registered."""
        async with self.locks.for_user(user_id):
            user = await self.get_user(user_id)
            initial_count = len(user.channels)
            user.channels = [c for c in user.channels if c.token != token]

            if len(user.channels) == initial_count:
                return False

            await self.store.save(user)

        logger.info("Channel %s removed for user %s", mask_token(token), user_id)
        return True

    async def list_active(self, user_id: str) -> list[Channel]:
        """Active channels, most recently used first."""
        user = await self.get_user(user_id)
        active = [c for c in user.channels if c.active]
        return sorted(active, key=lambda c: c.last_used_at, reverse=True)

    async def list_channels(self, user_id: str) -> list[Channel]:
        """All channels, including deactivated ones kept for audit."""
        user = await self.get_user(user_id)
        return list(user.channels)

    async def record_outcome(
        self,
        user_id: str,
        token: str,
        success: bool,
        permanent_failure: bool = False,
    ) -> None:
        """Apply one delivery outcome to a channel's counters and state."""
        await self.record_outcomes(
            user_id,
            [ChannelOutcome(token=token, success=success, permanent=permanent_failure)],
        )

    async def record_outcomes(self, user_id: str, outcomes: Iterable[ChannelOutcome]) -> None:
        """Apply several outcomes under a single lock and save."""
        async with self.locks.for_user(user_id):
            user = await self.get_user(user_id)
            now = self.clock()

            for outcome in outcomes:
                channel = user.find_channel(outcome.token)
                if channel is None:
                    logger.warning(
                        "Outcome for unknown channel %s of user %s ignored",
                        mask_token(outcome.token),
                        user_id,
                    )
                    continue

                if outcome.success:
                    channel.record_success(now)
                    continue

                deactivated = channel.record_failure(
                    permanent=outcome.permanent,
                    max_errors=self.config.max_error_count,
                    at=now,
                )
                if deactivated:
                    logger.warning(
                        "Channel %s of user %s deactivated (%s)",
                        mask_token(channel.token),
                        user_id,
                        "permanent failure" if outcome.permanent else f"{channel.error_count} errors",
                    )

            await self.store.save(user)

    async def channel_stats(self, user_id: str) -> dict:
        """Channel counts for a user."""
        user = await self.get_user(user_id)
        active = sum(1 for c in user.channels if c.active)
        return {
            "total": len(user.channels),
            "active": active,
            "inactive": len(user.channels) - active,
        }
