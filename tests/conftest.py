"""Pytest configuration and shared fixtures."""

import asyncio
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from src.notifications.channels import ChannelRegistry  # noqa: E402
from src.notifications.config import NotificationConfig  # noqa: E402
from src.notifications.dispatcher import Dispatcher  # noqa: E402
from src.notifications.gateway import BatchOutcome, SendOutcome, TopicSendOutcome  # noqa: E402
from src.notifications.history import HistoryLog  # noqa: E402
from src.notifications.models import Channel  # noqa: E402
from src.notifications.preferences import PreferenceManager  # noqa: E402
from src.notifications.store import InMemoryUserStore, UserLocks  # noqa: E402
from src.notifications.topics import TopicIndex  # noqa: E402


class FakeClock:
    """Settable clock; each call returns the current value."""

    def __init__(self, start: datetime = datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeGateway:
    """Scriptable push gateway recording every call.

    ``outcomes`` maps a token to a ``SendOutcome`` or an exception to raise;
    unscripted tokens succeed.
    """

    def __init__(self, simulated: bool = False):
        self._simulated = simulated
        self.outcomes: dict = {}
        self.sent: list[tuple[str, dict]] = []
        self.topic_sends: list[tuple[str, dict]] = []
        self.subscribed: list[tuple[list[str], str]] = []
        self.unsubscribed: list[tuple[list[str], str]] = []
        self.topic_error = None
        self.batch_error = None
        self.batch_failures = 0
        self.delay = 0.0

    @property
    def simulated(self) -> bool:
        return self._simulated

    async def send_to_token(self, token: str, payload: dict) -> SendOutcome:
        self.sent.append((token, payload))
        if self.delay:
            await asyncio.sleep(self.delay)
        outcome = self.outcomes.get(token)
        if isinstance(outcome, BaseException):
            raise outcome
        if outcome is None:
            return SendOutcome(success=True, message_id=f"msg-{token}-{len(self.sent)}")
        return outcome

    async def send_to_topic(self, topic: str, payload: dict) -> TopicSendOutcome:
        self.topic_sends.append((topic, payload))
        if self.topic_error is not None:
            raise self.topic_error
        return TopicSendOutcome(message_id=f"projects/test/messages/{len(self.topic_sends)}")

    async def subscribe_tokens(self, tokens: list[str], topic: str) -> BatchOutcome:
        self.subscribed.append((list(tokens), topic))
        return self._batch(tokens)

    async def unsubscribe_tokens(self, tokens: list[str], topic: str) -> BatchOutcome:
        self.unsubscribed.append((list(tokens), topic))
        return self._batch(tokens)

    def _batch(self, tokens: list[str]) -> BatchOutcome:
        if self.batch_error is not None:
            raise self.batch_error
        failed = min(self.batch_failures, len(tokens))
        return BatchOutcome(
            success_count=len(tokens) - failed,
            failure_count=failed,
            errors=["NOT_FOUND"] * failed or None,
        )

    def fail(self, token: str, permanent: bool = False, error: str = "INTERNAL") -> None:
        self.outcomes[token] = SendOutcome(success=False, error=error, permanent=permanent)

    def raise_for(self, token: str, exc: BaseException) -> None:
        self.outcomes[token] = exc


class ManualTriggerSource:
    """Trigger source whose ticks are fired by the test."""

    def __init__(self):
        self.callbacks: dict = {}
        self.triggers: dict = {}
        self.started = False
        self.start_calls = 0
        self.shutdown_calls = 0

    def add(self, name, trigger, callback) -> None:
        self.callbacks[name] = callback
        self.triggers[name] = trigger

    def remove(self, name) -> None:
        self.callbacks.pop(name, None)
        self.triggers.pop(name, None)

    def start(self) -> None:
        self.started = True
        self.start_calls += 1

    def shutdown(self) -> None:
        self.started = False
        self.shutdown_calls += 1
        self.callbacks.clear()
        self.triggers.clear()

    async def tick(self, name: str) -> None:
        """Simulate a cron tick; a removed timer does nothing."""
        callback = self.callbacks.get(name)
        if callback is not None:
            await callback()

    async def tick_all(self) -> None:
        for name in list(self.callbacks):
            await self.tick(name)


class SleepRecorder:
    """Stands in for asyncio.sleep, recording requested delays."""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    return NotificationConfig()


@pytest.fixture
def store():
    return InMemoryUserStore()


@pytest.fixture
def locks():
    return UserLocks()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture
def registry(store, locks, config, clock):
    return ChannelRegistry(store, locks, config, clock)


@pytest.fixture
def history(store, locks, config):
    return HistoryLog(store, locks, config)


@pytest.fixture
def preferences(store, locks, clock):
    return PreferenceManager(store, locks, clock)


@pytest.fixture
def topics(registry, gateway):
    return TopicIndex(registry, gateway)


@pytest.fixture
def dispatcher(registry, history, gateway, config, preferences, sleeper, clock):
    return Dispatcher(
        registry,
        history,
        gateway,
        config,
        preferences=preferences,
        sleep=sleeper,
        clock=clock,
    )


@pytest.fixture
def trigger_source():
    return ManualTriggerSource()


@pytest.fixture
def simulated_gateway():
    return FakeGateway(simulated=True)


@pytest.fixture
def add_user(store, clock):
    """Create a user with the given channel tokens, oldest first."""

    def _add(user_id: str, *tokens: str, display_name: str = ""):
        user = store.add_user(user_id, display_name)
        for i, token in enumerate(tokens):
            at = clock.now - timedelta(minutes=len(tokens) - i)
            user.channels.append(Channel(token=token, registered_at=at, last_used_at=at))
        return user

    return _add
