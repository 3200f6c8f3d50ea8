"""Topic subscription bookkeeping."""

import asyncio
from collections import defaultdict
from typing import Any, Iterable
import logging

from src.notifications.channels import ChannelRegistry
from src.notifications.config import Topic
from src.notifications.errors import GatewayError, InvalidTopicError
from src.notifications.gateway import BatchOutcome, PushGateway
from src.notifications.models import SubscriptionResult, UserRecord

logger = logging.getLogger(__name__)


def parse_topic(topic: Any) -> Topic:
    """Coerce a topic name to ``Topic``, rejecting unknown names."""
    if isinstance(topic, Topic):
        return topic
    try:
        return Topic(topic)
    except ValueError:
        raise InvalidTopicError(topic, allowed=[t.value for t in Topic]) from None


class TopicIndex:
    """Tracks which users are subscribed to which broadcast topics.

    Membership lives on the user record; this index keeps the reverse
    mapping for ``members_of`` and mirrors changes to the gateway.
    """

    def __init__(self, registry: ChannelRegistry, gateway: PushGateway):
        self.registry = registry
        self.gateway = gateway
        self._members: dict[Topic, list[str]] = defaultdict(list)

    @property
    def store(self):
        return self.registry.store

    @property
    def locks(self):
        return self.registry.locks

    def load(self, users: Iterable[UserRecord]) -> int:
        """Rebuild the reverse index from stored user records."""
        self._members.clear()
        count = 0
        for user in users:
            for topic in user.topics:
                if user.user_id not in self._members[topic]:
                    self._members[topic].append(user.user_id)
                    count += 1
        return count

    async def subscribe(self, user_id: str, topic: Any) -> SubscriptionResult:
        """Subscribe a user (and all active channels) to a topic."""
        topic = parse_topic(topic)

        async with self.locks.for_user(user_id):
            user = await self.registry.get_user(user_id)
            changed = topic not in user.topics
            if changed:
                user.topics.append(topic)
                await self.store.save(user)

        if user_id not in self._members[topic]:
            self._members[topic].append(user_id)

        tokens = [c.token for c in await self.registry.list_active(user_id)]
        result = SubscriptionResult(
            user_id=user_id,
            topic=topic.value,
            action="subscribe",
            changed=changed,
            tokens=len(tokens),
            simulated=self.gateway.simulated,
        )
        await self._mirror(result, tokens, self.gateway.subscribe_tokens)

        logger.info(
            "User %s subscribed to '%s' (%d/%d tokens)",
            user_id,
            topic.value,
            result.success_count,
            result.tokens,
        )
        return result

    async def unsubscribe(self, user_id: str, topic: Any) -> SubscriptionResult:
        """Remove a subscription. Repeating it is a no-op."""
        topic = parse_topic(topic)

        async with self.locks.for_user(user_id):
            user = await self.registry.get_user(user_id)
            changed = topic in user.topics
            if changed:
                user.topics = [t for t in user.topics if t != topic]
                await self.store.save(user)

        if user_id in self._members[topic]:
            self._members[topic].remove(user_id)

        tokens = [c.token for c in await self.registry.list_active(user_id)]
        result = SubscriptionResult(
            user_id=user_id,
            topic=topic.value,
            action="unsubscribe",
            changed=changed,
            tokens=len(tokens),
            simulated=self.gateway.simulated,
        )
        await self._mirror(result, tokens, self.gateway.unsubscribe_tokens)

        logger.info("User %s unsubscribed from '%s'", user_id, topic.value)
        return result

    async def _mirror(self, result: SubscriptionResult, tokens: list[str], operation) -> None:
        """Push a membership change to the gateway; failures are reported, not raised."""
        if not tokens:
            return

        try:
            outcome: BatchOutcome = await asyncio.wait_for(
                operation(tokens, result.topic),
                timeout=self.registry.config.send_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.error("Gateway %s for '%s' timed out", result.action, result.topic)
            result.failure_count = len(tokens)
            result.error = "timeout"
            return
        except GatewayError as e:
            logger.error("Gateway %s for '%s' failed: %s", result.action, result.topic, e)
            result.failure_count = len(tokens)
            result.error = e.message
            return

        result.success_count = outcome.success_count
        result.failure_count = outcome.failure_count
        if outcome.errors:
            result.error = ", ".join(sorted(set(outcome.errors)))

    def members_of(self, topic: Any) -> list[str]:
        return list(self._members.get(parse_topic(topic), []))

    async def topics_of(self, user_id: str) -> list[Topic]:
        user = await self.registry.get_user(user_id)
        return list(user.topics)

    def get_stats(self) -> dict:
        return {topic.value: len(self._members.get(topic, [])) for topic in Topic}
