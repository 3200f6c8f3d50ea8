"""Notification service facade.

Wires one instance of every notification component around a shared user
store and per-user locks, and owns the startup/shutdown lifecycle.
"""

import asyncio
from datetime import datetime
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional
import logging
import random

import httpx

from src.notifications.channels import ChannelRegistry
from src.notifications.config import NotificationConfig, DEFAULT_NOTIFICATION_CONFIG
from src.notifications.dispatcher import Dispatcher, DispatchOptions
from src.notifications.gateway import PushGateway, create_gateway
from src.notifications.history import HistoryLog
from src.notifications.models import (
    BulkResult,
    DelayedSend,
    DispatchResult,
    HistoryPage,
    Notification,
    NotificationPreferences,
    SubscriptionResult,
    TopicResult,
    _now,
)
from src.notifications.preferences import PreferenceManager
from src.notifications.reminders import register_default_jobs
from src.notifications.scheduler import NotificationScheduler
from src.notifications.store import InMemoryUserStore, UserLocks, UserStore
from src.notifications.templates import TEMPLATES, list_templates, render
from src.notifications.topics import TopicIndex
from src.notifications.triggers import APSchedulerTriggerSource, TriggerSource

if TYPE_CHECKING:
    from src.settings import Settings

logger = logging.getLogger(__name__)


class NotificationService:
    """Single entry point for application code sending notifications."""

    def __init__(
        self,
        store: UserStore,
        gateway: PushGateway,
        config: Optional[NotificationConfig] = None,
        trigger_source: Optional[TriggerSource] = None,
        scheduler_enabled: bool = True,
        default_jobs_enabled: bool = True,
        clock: Callable[[], datetime] = _now,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.config = config or DEFAULT_NOTIFICATION_CONFIG
        self.store = store
        self.gateway = gateway
        self.locks = UserLocks()
        self.scheduler_enabled = scheduler_enabled

        self.registry = ChannelRegistry(store, self.locks, self.config, clock)
        self.topics = TopicIndex(self.registry, gateway)
        self.history = HistoryLog(store, self.locks, self.config)
        self.preferences = PreferenceManager(store, self.locks, clock)
        self.dispatcher = Dispatcher(
            self.registry,
            self.history,
            gateway,
            self.config,
            preferences=self.preferences,
            sleep=sleep,
            clock=clock,
        )
        self.scheduler = NotificationScheduler(
            self.dispatcher,
            trigger_source or APSchedulerTriggerSource(self.config.scheduler_timezone),
            timezone=self.config.scheduler_timezone,
            clock=clock,
        )
        if default_jobs_enabled:
            register_default_jobs(self.scheduler, rng)

        self._initialized = False

    @property
    def simulated(self) -> bool:
        return self.dispatcher.simulated

    # ── Lifecycle ─────────────────────────────────────────────────────

    async def start(self) -> None:
        if self._initialized:
            logger.warning("Notification service already started")
            return

        members = self.topics.load(await self.store.all_users())
        if self.scheduler_enabled:
            self.scheduler.start()
        self._initialized = True
        logger.info(
            "Notification service started (%s mode, %d topic memberships)",
            "simulation" if self.simulated else "production",
            members,
        )

    async def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.stop()
        aclose = getattr(self.gateway, "aclose", None)
        if aclose is not None:
            await aclose()
        self._initialized = False
        logger.info("Notification service stopped")

    def get_status(self) -> dict:
        return {
            "initialized": self._initialized,
            "mode": "simulation" if self.simulated else "production",
            "scheduler": self.scheduler.status(),
            "features": {
                "push": not self.simulated,
                "topics": True,
                "scheduler": self.scheduler_enabled,
                "templates": len(TEMPLATES),
            },
        }

    # ── Channels & topics ─────────────────────────────────────────────

    async def register_channel(self, user_id: str, token: str, device_info: Optional[dict] = None) -> int:
        return await self.registry.register(user_id, token, device_info)

    async def unregister_channel(self, user_id: str, token: str) -> bool:
        return await self.registry.unregister(user_id, token)

    async def subscribe(self, user_id: str, topic: Any) -> SubscriptionResult:
        return await self.topics.subscribe(user_id, topic)

    async def unsubscribe(self, user_id: str, topic: Any) -> SubscriptionResult:
        return await self.topics.unsubscribe(user_id, topic)

    # ── Sending ───────────────────────────────────────────────────────

    async def send_to_user(
        self,
        user_id: str,
        notification: Notification,
        options: Optional[DispatchOptions] = None,
    ) -> DispatchResult:
        return await self.dispatcher.send_to_user(user_id, notification, options)

    async def send_to_users(
        self,
        user_ids: list[str],
        notification: Notification,
        options: Optional[DispatchOptions] = None,
    ) -> BulkResult:
        return await self.dispatcher.send_to_users(user_ids, notification, options)

    async def send_to_topic(
        self,
        topic: Any,
        notification: Notification,
        options: Optional[DispatchOptions] = None,
    ) -> TopicResult:
        return await self.dispatcher.send_to_topic(topic, notification, options)

    async def send_template(
        self,
        user_id: str,
        template_name: str,
        overrides: Optional[dict] = None,
        variables: Optional[dict] = None,
    ) -> DispatchResult:
        """Render a catalog template and send it to one user."""
        notification = render(template_name, overrides, variables)
        return await self.dispatcher.send_to_user(user_id, notification)

    async def send_test(self, user_id: str, message: Optional[str] = None) -> DispatchResult:
        return await self.dispatcher.send_test(user_id, message)

    async def schedule_notification(self, user_id: str, notification: Notification, at: datetime) -> DelayedSend:
        return await self.scheduler.schedule_notification(user_id, notification, at)

    def cancel_notification(self, send_id: str) -> bool:
        return self.scheduler.cancel_notification(send_id)

    # ── History, preferences, templates ───────────────────────────────

    async def get_history(self, user_id: str, limit: int = 20, offset: int = 0) -> HistoryPage:
        return await self.history.page(user_id, limit, offset)

    async def get_preferences(self, user_id: str) -> NotificationPreferences:
        return await self.preferences.get_preferences(user_id)

    async def update_preferences(self, user_id: str, **changes: Any) -> NotificationPreferences:
        return await self.preferences.update_preferences(user_id, **changes)

    def list_templates(self) -> dict[str, dict]:
        return list_templates()


def build_notification_service(
    settings: Optional["Settings"] = None,
    store: Optional[UserStore] = None,
    trigger_source: Optional[TriggerSource] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> NotificationService:
    """Build the service from settings; simulation mode without FCM credentials."""
    if settings is None:
        from src.settings import get_settings
        settings = get_settings()

    gateway = create_gateway(settings.gateway_config(), transport=transport)
    return NotificationService(
        store=store if store is not None else InMemoryUserStore(),
        gateway=gateway,
        config=settings.notification_config(),
        trigger_source=trigger_source,
        scheduler_enabled=settings.scheduler_enabled,
        default_jobs_enabled=settings.default_jobs_enabled,
    )
