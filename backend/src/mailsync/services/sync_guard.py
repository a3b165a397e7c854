"""Per-user, fail-fast sync guard.

At most one sync may run per user at a time. A second attempt while one is in
flight fails immediately with ``SyncAlreadyRunningError`` rather than queueing.
Syncs for different users never contend.

Two backends implement the ``SyncGuard`` protocol:

- ``InMemorySyncGuard``: process-local set of held users.
- ``RedisSyncGuard``: ``SET key token NX PX ttl`` with a compare-and-delete
  release, so the guard holds across workers. The TTL bounds how long a
  crashed worker can keep a user locked.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, Protocol, runtime_checkable

import redis.asyncio as redis

from ..core.config import Settings, get_settings_instance
from ..core.exceptions import SyncAlreadyRunningError
from ..core.logging import get_logger

logger = get_logger(__name__)

LOCK_KEY_PREFIX = "mailsync:sync-lock:"

# Delete the key only if it still holds our token
RELEASE_LUA = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""


@runtime_checkable
class SyncGuard(Protocol):
    """Protocol for the per-user sync guard."""

    def hold(self, user_id: str) -> Any:
        """Async context manager holding the guard for ``user_id``.

        Raises:
            SyncAlreadyRunningError: the guard is already held for ``user_id``.
        """
        ...

    async def is_held(self, user_id: str) -> bool: ...


class InMemorySyncGuard:
    """Single-process guard backed by a set of held user IDs."""

    def __init__(self) -> None:
        self._held: set[str] = set()
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def hold(self, user_id: str) -> AsyncIterator[None]:
        async with self._lock:
            if user_id in self._held:
                logger.info("Rejecting concurrent sync", extra={"user_id": user_id})
                raise SyncAlreadyRunningError(user_id)
            self._held.add(user_id)
        try:
            yield
        finally:
            self._held.discard(user_id)

    async def is_held(self, user_id: str) -> bool:
        return user_id in self._held


class RedisSyncGuard:
    """Cross-worker guard backed by a Redis key per user."""

    def __init__(self, client: Any, ttl_seconds: int = 300, key_prefix: str = LOCK_KEY_PREFIX) -> None:
        self._client = client
        self.ttl_seconds = ttl_seconds
        self.key_prefix = key_prefix

    def _key(self, user_id: str) -> str:
        return f"{self.key_prefix}{user_id}"

    @asynccontextmanager
    async def hold(self, user_id: str) -> AsyncIterator[None]:
        key = self._key(user_id)
        token = uuid.uuid4().hex
        acquired = await self._client.set(key, token, nx=True, px=self.ttl_seconds * 1000)
        if not acquired:
            logger.info("Rejecting concurrent sync (held in another worker)", extra={"user_id": user_id})
            raise SyncAlreadyRunningError(user_id)
        try:
            yield
        finally:
            try:
                await self._client.eval(RELEASE_LUA, 1, key, token)
            except redis.RedisError as e:
                # The TTL reclaims the key if the release cannot reach Redis
                logger.warning(f"Failed to release sync guard: {e}", extra={"user_id": user_id})

    async def is_held(self, user_id: str) -> bool:
        return bool(await self._client.exists(self._key(user_id)))

    async def close(self) -> None:
        await self._client.aclose()


def create_redis_client(settings: Settings) -> Any:
    return redis.from_url(
        settings.redis_url,
        decode_responses=True,
        socket_timeout=settings.redis_socket_timeout,
        socket_connect_timeout=settings.redis_connection_timeout,
    )


def build_sync_guard(settings: Settings | None = None, redis_client: Any = None) -> SyncGuard:
    """Pick the guard backend from settings: Redis when configured, in-memory otherwise."""
    settings = settings or get_settings_instance()
    if redis_client is None and not settings.redis_enabled:
        logger.info("Using in-memory sync guard")
        return InMemorySyncGuard()
    client = redis_client or create_redis_client(settings)
    logger.info("Using Redis sync guard", extra={"ttl_seconds": settings.sync_lock_ttl_seconds})
    return RedisSyncGuard(client, ttl_seconds=settings.sync_lock_ttl_seconds)
