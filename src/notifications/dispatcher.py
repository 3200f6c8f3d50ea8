"""Notification dispatch to users, user lists and topics.

The dispatcher resolves a user's active channels, calls the push gateway
for each one concurrently, then feeds the per-channel outcomes back into
the channel registry and the history log. Bulk sends are throttled into
sequential batches.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional
import logging
import time

from src.logging_config import LogContext, PerformanceTimer, log_performance
from src.notifications.channels import ChannelRegistry
from src.notifications.config import NotificationConfig, DEFAULT_NOTIFICATION_CONFIG
from src.notifications.errors import (
    EmptyTargetsError,
    GatewayError,
    NoChannelsError,
    NotificationError,
    TooManyTargetsError,
    ValidationError,
)
from src.notifications.gateway import PushGateway
from src.notifications.history import HistoryLog
from src.notifications.models import (
    BulkResult,
    ChannelOutcome,
    DispatchResult,
    HistoryEntry,
    Notification,
    TopicResult,
    UserOutcome,
    _now,
)
from src.notifications.preferences import PreferenceManager
from src.notifications.templates import render
from src.notifications.topics import parse_topic

logger = logging.getLogger(__name__)


@dataclass
class DispatchOptions:
    """Per-call overrides. ``None`` falls back to the dispatcher config."""

    batch_size: Optional[int] = None
    batch_delay_seconds: Optional[float] = None
    timeout_seconds: Optional[float] = None
    include_details: bool = False
    respect_preferences: bool = False


class Dispatcher:
    """Sends notifications through the push gateway.

    Whether sends are live or simulated is decided once, here, from
    ``gateway.simulated``. Simulated sends never touch channels or history.
    """

    def __init__(
        self,
        registry: ChannelRegistry,
        history: HistoryLog,
        gateway: PushGateway,
        config: Optional[NotificationConfig] = None,
        preferences: Optional[PreferenceManager] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], datetime] = _now,
    ):
        self.registry = registry
        self.history = history
        self.gateway = gateway
        self.config = config or DEFAULT_NOTIFICATION_CONFIG
        self.preferences = preferences
        self.sleep = sleep
        self.clock = clock
        self.simulated = bool(gateway.simulated)

        if self.simulated:
            logger.warning("Dispatcher running in simulation mode, no push will be delivered")

    # ── Single user ────────────────────────────────────────────────────

    async def send_to_user(
        self,
        user_id: str,
        notification: Notification,
        options: Optional[DispatchOptions] = None,
    ) -> DispatchResult:
        """Send to every active channel of one user."""
        options = options or DispatchOptions()
        notification.validate()

        with LogContext(user_id=user_id):
            if options.respect_preferences and self.preferences is not None:
                allowed, reason = await self.preferences.is_notification_allowed(
                    user_id, notification.type, self.clock()
                )
                if not allowed:
                    logger.info("Notification '%s' skipped: %s", notification.title, reason)
                    return DispatchResult(user_id=user_id, success=False, skipped_reason=reason)

            if self.simulated:
                logger.info(
                    "[SIMULATED] notification '%s' (%s) for user %s",
                    notification.title,
                    notification.type.value,
                    user_id,
                )
                return DispatchResult(user_id=user_id, success=True, simulated=True)

            channels = await self.registry.list_active(user_id)
            if not channels:
                raise NoChannelsError(user_id)

            now = self.clock()
            payload = notification.to_payload(user_id=user_id, sent_at=now)
            timeout = options.timeout_seconds or self.config.send_timeout_seconds

            outcomes = list(await asyncio.gather(
                *(self._send_channel(c.token, payload, timeout) for c in channels)
            ))

            await self.registry.record_outcomes(user_id, outcomes)
            await self.history.append(user_id, HistoryEntry.from_outcomes(notification, outcomes, now))

            success_count = sum(1 for o in outcomes if o.success)
            logger.info(
                "Notification '%s' delivered to %d/%d channels",
                notification.title,
                success_count,
                len(outcomes),
                extra={"success_count": success_count, "failure_count": len(outcomes) - success_count},
            )
            return DispatchResult(
                user_id=user_id,
                success=success_count > 0,
                success_count=success_count,
                total_channels=len(outcomes),
                results=outcomes,
                timestamp=now,
            )

    async def _send_channel(self, token: str, payload: dict, timeout: float) -> ChannelOutcome:
        """One gateway call. Never raises: failures become outcomes."""
        start = time.perf_counter()

        def elapsed() -> int:
            return int((time.perf_counter() - start) * 1000)

        try:
            sent = await asyncio.wait_for(self.gateway.send_to_token(token, payload), timeout)
        except asyncio.TimeoutError:
            return ChannelOutcome(
                token=token,
                success=False,
                error=f"Timed out after {timeout}s",
                latency_ms=elapsed(),
            )
        except GatewayError as e:
            return ChannelOutcome(
                token=token,
                success=False,
                error=e.message,
                permanent=e.permanent,
                latency_ms=elapsed(),
            )
        except Exception as e:
            logger.warning("Unexpected gateway error: %s", e, exc_info=True)
            return ChannelOutcome(
                token=token,
                success=False,
                error=f"{type(e).__name__}: {e}",
                latency_ms=elapsed(),
            )

        return ChannelOutcome(
            token=token,
            success=sent.success,
            message_id=sent.message_id,
            error=sent.error,
            permanent=sent.permanent,
            latency_ms=elapsed(),
        )

    # ── Bulk ───────────────────────────────────────────────────────────

    @log_performance(threshold_ms=60000)
    async def send_to_users(
        self,
        user_ids: list[str],
        notification: Notification,
        options: Optional[DispatchOptions] = None,
    ) -> BulkResult:
        """Send to many users in sequential, internally concurrent batches."""
        options = options or DispatchOptions()
        user_ids = list(user_ids)

        if not user_ids:
            raise EmptyTargetsError()
        if len(user_ids) > self.config.max_bulk_targets:
            raise TooManyTargetsError(len(user_ids), self.config.max_bulk_targets)

        batch_size = options.batch_size if options.batch_size is not None else self.config.batch_size
        if batch_size < 1:
            raise ValidationError("batch_size must be at least 1", field="batch_size")
        delay = (
            options.batch_delay_seconds
            if options.batch_delay_seconds is not None
            else self.config.batch_delay_seconds
        )
        notification.validate()

        batches = [user_ids[i:i + batch_size] for i in range(0, len(user_ids), batch_size)]
        outcomes: list[UserOutcome] = []

        with LogContext() as ctx:
            ctx.bind(bulk_users=len(user_ids))
            logger.info("Bulk send of '%s' to %d users in %d batches", notification.title, len(user_ids), len(batches))

            for index, batch in enumerate(batches, start=1):
                if index > 1 and delay > 0:
                    await self.sleep(delay)

                semaphore = asyncio.Semaphore(len(batch))
                with PerformanceTimer(f"bulk batch {index}/{len(batches)}", log=logger) as timer:
                    batch_outcomes = await asyncio.gather(
                        *(self._send_one(uid, notification, options, semaphore) for uid in batch)
                    )
                    timer.success_count = sum(1 for o in batch_outcomes if o.success)
                    timer.failure_count = len(batch_outcomes) - timer.success_count
                outcomes.extend(batch_outcomes)

            result = BulkResult(
                total_users=len(user_ids),
                successful_users=sum(1 for o in outcomes if o.success),
                total_notifications=sum(o.success_count for o in outcomes),
                batches=len(batches),
                simulated=self.simulated,
                results=outcomes if options.include_details else None,
            )
            logger.info(
                "Bulk send finished: %d/%d users reached",
                result.successful_users,
                result.total_users,
                extra={"success_count": result.successful_users, "failure_count": result.failed_users},
            )
        return result

    async def _send_one(
        self,
        user_id: str,
        notification: Notification,
        options: DispatchOptions,
        semaphore: asyncio.Semaphore,
    ) -> UserOutcome:
        async with semaphore:
            try:
                result = await self.send_to_user(user_id, notification, options)
            except NotificationError as e:
                logger.info("Bulk send to user %s failed: %s", user_id, e.message)
                return UserOutcome(
                    user_id=user_id,
                    success=False,
                    error=e.message,
                    error_code=e.error_code.value,
                )
            except Exception as e:
                logger.error("Bulk send to user %s crashed: %s", user_id, e, exc_info=True)
                return UserOutcome(
                    user_id=user_id,
                    success=False,
                    error=f"{type(e).__name__}: {e}",
                    error_code="INTERNAL_ERROR",
                )

        return UserOutcome(
            user_id=user_id,
            success=result.success,
            success_count=result.success_count,
            error=result.skipped_reason,
            simulated=result.simulated,
        )

    # ── Topic ──────────────────────────────────────────────────────────

    async def send_to_topic(
        self,
        topic: Any,
        notification: Notification,
        options: Optional[DispatchOptions] = None,
    ) -> TopicResult:
        """Broadcast through the gateway's topic fan-out. Channels are not touched."""
        options = options or DispatchOptions()
        topic = parse_topic(topic)
        notification.validate()

        with LogContext(topic=topic.value):
            now = self.clock()
            if self.simulated:
                logger.info("[SIMULATED] topic notification '%s'", notification.title)
                return TopicResult(topic=topic.value, success=True, simulated=True, timestamp=now)

            payload = notification.to_payload(topic=topic.value, sent_at=now)
            timeout = options.timeout_seconds or self.config.send_timeout_seconds
            try:
                sent = await asyncio.wait_for(self.gateway.send_to_topic(topic.value, payload), timeout)
            except asyncio.TimeoutError:
                raise GatewayError(f"Topic send timed out after {timeout}s", topic=topic.value) from None

            logger.info("Topic notification '%s' sent (%s)", notification.title, sent.message_id)
            return TopicResult(
                topic=topic.value,
                success=True,
                message_id=sent.message_id,
                simulated=sent.simulated,
                timestamp=now,
            )

    async def send_test(self, user_id: str, message: Optional[str] = None) -> DispatchResult:
        """Send a test notification to a user's devices."""
        notification = render("test", overrides={"body": message, "data": {"test": "true"}})
        return await self.send_to_user(user_id, notification)
