"""User store interface and in-memory implementation."""

import asyncio
import weakref
from typing import Iterable, Optional, Protocol, runtime_checkable

from src.notifications.models import UserRecord


@runtime_checkable
class UserStore(Protocol):
    """Keyed access to user records."""

    async def find_by_id(self, user_id: str) -> Optional[UserRecord]: ...

    async def save(self, user: UserRecord) -> None: ...

    async def all_users(self) -> list[UserRecord]: ...


class InMemoryUserStore:
    """Dictionary-backed user store for development and tests."""

    def __init__(self, users: Optional[Iterable[UserRecord]] = None):
        self._users: dict[str, UserRecord] = {}
        for user in users or []:
            self._users[user.user_id] = user

    def add_user(self, user_id: str, display_name: str = "") -> UserRecord:
        """Create (or return) a user record synchronously."""
        user = self._users.get(user_id)
        if user is None:
            user = UserRecord(user_id=user_id, display_name=display_name)
            self._users[user_id] = user
        return user

    async def find_by_id(self, user_id: str) -> Optional[UserRecord]:
        return self._users.get(user_id)

    async def save(self, user: UserRecord) -> None:
        self._users[user.user_id] = user

    async def all_users(self) -> list[UserRecord]:
        return list(self._users.values())

    def __len__(self) -> int:
        return len(self._users)


class UserLocks:
    """One asyncio lock per user.

    Serializes read-modify-save cycles on a single user record; different
    users never wait on each other. Locks are held weakly and dropped once
    no holder or waiter references them.
    """

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def for_user(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    def __len__(self) -> int:
        return len(self._locks)
