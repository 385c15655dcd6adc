"""
Keyed mutual exclusion.

Two uses:
- one writer per (tenant, user) conversation, so a burst of photos or a double
  "ya" cannot both read step N and both advance;
- one allocator per (tenant, prefix) display-code space inside a process.

Cross-user and cross-prefix work stays fully parallel.
"""
import asyncio
import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Hashable

import redis.asyncio as aioredis

from autoleads.core.config import settings
from autoleads.core.exceptions import ConversationBusyError
from autoleads.core.logging import get_logger
from autoleads.core.redis_client import get_redis

logger = get_logger(__name__)


class KeyedLock:
    """In-process asyncio lock per key. Entries are dropped once nobody holds or waits."""

    def __init__(self) -> None:
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._users: dict[Hashable, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def locked(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]


class ConversationLock:
    """
    Serializes message handling per conversation key.

    Always takes the in-process KeyedLock. When a Redis getter is supplied it also takes
    a SET NX EX lease so that several workers behind one webhook serialize too.
    The lease is released only by the token that acquired it.
    """

    KEY_PREFIX = "autoleads:conversation-lock"

    def __init__(
        self,
        redis_getter: Callable[[], Awaitable[aioredis.Redis]] | None = None,
        *,
        ttl_seconds: int = 60,
        wait_seconds: float = 30.0,
        poll_interval: float = 0.05,
    ) -> None:
        self._local = KeyedLock()
        self._redis_getter = redis_getter
        self._ttl_seconds = ttl_seconds
        self._wait_seconds = wait_seconds
        self._poll_interval = poll_interval

    @staticmethod
    def conversation_key(tenant_id: int, user_handle: str) -> str:
        return f"{tenant_id}:{user_handle}"

    @asynccontextmanager
    async def hold(self, tenant_id: int, user_handle: str) -> AsyncIterator[None]:
        key = self.conversation_key(tenant_id, user_handle)
        async with self._local.hold(key):
            if self._redis_getter is None:
                yield
                return

            redis = await self._redis_getter()
            name = f"{self.KEY_PREFIX}:{key}"
            token = uuid.uuid4().hex
            await self._acquire_lease(redis, name, token, key)
            try:
                yield
            finally:
                await self._release_lease(redis, name, token)

    async def _acquire_lease(self, redis: aioredis.Redis, name: str, token: str, key: str) -> None:
        started = time.monotonic()
        while not await redis.set(name, token, nx=True, ex=self._ttl_seconds):
            waited = time.monotonic() - started
            if waited >= self._wait_seconds:
                logger.warning(
                    "Conversation lease wait exceeded",
                    extra_data={"waited_seconds": round(waited, 3)}
                )
                raise ConversationBusyError(key, waited)
            await asyncio.sleep(self._poll_interval)

    async def _release_lease(self, redis: aioredis.Redis, name: str, token: str) -> None:
        # lease may have expired and been taken by another worker
        if await redis.get(name) == token:
            await redis.delete(name)


def create_conversation_lock() -> ConversationLock:
    """Build the conversation lock configured by CONVERSATION_LOCK_BACKEND"""
    redis_getter = get_redis if settings.CONVERSATION_LOCK_BACKEND == "redis" else None
    return ConversationLock(
        redis_getter,
        ttl_seconds=settings.CONVERSATION_LOCK_TTL_SECONDS,
        wait_seconds=settings.CONVERSATION_LOCK_WAIT_SECONDS,
    )
