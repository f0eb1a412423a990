"""
Session Store - the keyed, expiring store bridging start() and stream().

Two backends share one contract:
- RedisSessionStore for multi-instance deployments (REDIS_URL set)
- InMemorySessionStore backed by utils.cache.TTLCache otherwise

Neither backend raises on a storage failure. ``get`` returns None, ``put``
returns False, ``delete`` is a no-op; the failure is logged and counted.
"""

from __future__ import annotations

import json
import time

from typing import Any, Protocol

import redis.asyncio as aioredis

from redis.exceptions import RedisError

from core.constants import SESSION_PURGE_INTERVAL, TURN_KEY_PREFIX
from utils.cache import TTLCache
from utils.logger import logger
from utils.metrics import session_store_errors_total, session_store_misses_total


class SessionStore(Protocol):
    """Key/value store with per-entry expiry."""

    backend: str

    async def put(self, key: str, value: dict[str, Any], ttl: int) -> bool: ...

    async def get(self, key: str) -> dict[str, Any] | None: ...

    async def delete(self, key: str) -> None: ...

    async def ping(self) -> bool: ...

    async def close(self) -> None: ...


def turn_key(turn_id: str) -> str:
    return f"{TURN_KEY_PREFIX}{turn_id}"


class InMemorySessionStore:
    """Process-local store. Entries vanish on restart and are not shared between workers.

    Expired entries are dropped lazily on read. Turns that are started but never
    streamed are swept by a purge that runs from ``put`` at most once per
    ``purge_interval`` seconds.
    """

    backend = "memory"

    def __init__(
        self,
        max_entries: int = 10_000,
        default_ttl: float = 3600.0,
        purge_interval: float = SESSION_PURGE_INTERVAL,
    ) -> None:
        self._cache = TTLCache(max_size=max_entries, default_ttl=default_ttl)
        self._purge_interval = purge_interval
        self._next_purge = time.monotonic() + purge_interval

    async def _purge_if_due(self) -> None:
        now = time.monotonic()
        if now < self._next_purge:
            return
        self._next_purge = now + self._purge_interval
        removed = await self._cache.purge_expired()
        if removed:
            logger.debug(f"Purged {removed} expired session entries")

    async def put(self, key: str, value: dict[str, Any], ttl: int) -> bool:
        await self._purge_if_due()
        await self._cache.set(key, value, ttl=ttl)
        return True

    async def get(self, key: str) -> dict[str, Any] | None:
        value: dict[str, Any] | None = await self._cache.get(key)
        if value is None:
            session_store_misses_total.inc()
        return value

    async def delete(self, key: str) -> None:
        await self._cache.delete(key)

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        await self._cache.clear()

    def stats(self) -> dict[str, Any]:
        return self._cache.stats()


class RedisSessionStore:
    """Redis-backed store. Values are JSON strings written with SETEX."""

    backend = "redis"

    def __init__(self, client: aioredis.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, redis_url: str, *, socket_timeout: float = 5.0) -> RedisSessionStore:
        client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        return cls(client)

    @staticmethod
    def _failed(operation: str, key: str, error: Exception) -> None:
        session_store_errors_total.labels(operation=operation).inc()
        logger.warning(f"Session store {operation} failed for {key}: {error}", store_key=key)

    async def put(self, key: str, value: dict[str, Any], ttl: int) -> bool:
        try:
            await self._client.setex(key, ttl, json.dumps(value, default=str))
        except (RedisError, OSError) as e:
            self._failed("put", key, e)
            return False
        return True

    async def get(self, key: str) -> dict[str, Any] | None:
        try:
            data = await self._client.get(key)
        except (RedisError, OSError) as e:
            self._failed("get", key, e)
            session_store_misses_total.inc()
            return None

        if not data:
            session_store_misses_total.inc()
            return None

        try:
            value = json.loads(data)
        except json.JSONDecodeError as e:
            self._failed("get", key, e)
            session_store_misses_total.inc()
            return None
        return value if isinstance(value, dict) else None

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(key)
        except (RedisError, OSError) as e:
            self._failed("delete", key, e)

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except (RedisError, OSError) as e:
            logger.warning(f"Session store ping failed: {e}")
            return False

    async def close(self) -> None:
        await self._client.aclose()


def create_session_store(
    redis_url: str | None,
    *,
    max_entries: int = 10_000,
    default_ttl: float = 3600.0,
) -> SessionStore:
    """Redis when a URL is configured, otherwise the in-memory store."""
    if redis_url:
        logger.info("Session store: redis")
        return RedisSessionStore.from_url(redis_url)
    logger.info("Session store: in-memory (single instance only)")
    return InMemorySessionStore(max_entries=max_entries, default_ttl=default_ttl)
