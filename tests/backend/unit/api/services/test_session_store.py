"""Tests for the session store backends."""

from __future__ import annotations

import asyncio
import json

from unittest.mock import AsyncMock, patch

import pytest

from redis.exceptions import ConnectionError as RedisConnectionError

from api.services.session_store import (
    InMemorySessionStore,
    RedisSessionStore,
    create_session_store,
    turn_key,
)


def test_turn_key() -> None:
    assert turn_key("abc") == "turn:abc"


class TestInMemorySessionStore:
    @pytest.mark.asyncio
    async def test_put_get_delete(self) -> None:
        store = InMemorySessionStore()

        assert await store.put("turn:1", {"prompt": "hi"}, ttl=60) is True
        assert await store.get("turn:1") == {"prompt": "hi"}

        await store.delete("turn:1")
        assert await store.get("turn:1") is None

    @pytest.mark.asyncio
    async def test_entry_expires(self) -> None:
        store = InMemorySessionStore()
        await store.put("turn:1", {"prompt": "hi"}, ttl=0)

        await asyncio.sleep(0.01)

        assert await store.get("turn:1") is None

    @pytest.mark.asyncio
    async def test_bounded(self) -> None:
        store = InMemorySessionStore(max_entries=2)
        for i in range(3):
            await store.put(f"turn:{i}", {"i": i}, ttl=60)

        assert await store.get("turn:0") is None
        assert store.stats()["size"] == 2

    @pytest.mark.asyncio
    async def test_ping_and_close(self) -> None:
        store = InMemorySessionStore()
        await store.put("turn:1", {}, ttl=60)

        assert await store.ping() is True
        await store.close()
        assert store.stats()["size"] == 0

    @pytest.mark.asyncio
    async def test_put_sweeps_abandoned_turns(self) -> None:
        store = InMemorySessionStore(purge_interval=0.0)
        await store.put("turn:abandoned", {"prompt": "hi"}, ttl=0)
        await asyncio.sleep(0.01)

        await store.put("turn:2", {"prompt": "again"}, ttl=60)

        assert store.stats()["size"] == 1

    @pytest.mark.asyncio
    async def test_sweep_waits_for_interval(self) -> None:
        store = InMemorySessionStore(purge_interval=3600.0)
        await store.put("turn:abandoned", {"prompt": "hi"}, ttl=0)
        await asyncio.sleep(0.01)

        await store.put("turn:2", {"prompt": "again"}, ttl=60)

        assert store.stats()["size"] == 2


@pytest.fixture
def redis_client() -> AsyncMock:
    client = AsyncMock()
    client.ping.return_value = True
    return client


class TestRedisSessionStore:
    @pytest.mark.asyncio
    async def test_put_uses_setex(self, redis_client: AsyncMock) -> None:
        store = RedisSessionStore(redis_client)

        assert await store.put("turn:1", {"prompt": "hi"}, ttl=3600) is True

        key, ttl, data = redis_client.setex.call_args.args
        assert (key, ttl) == ("turn:1", 3600)
        assert json.loads(data) == {"prompt": "hi"}

    @pytest.mark.asyncio
    async def test_get_decodes_json(self, redis_client: AsyncMock) -> None:
        redis_client.get.return_value = '{"prompt": "hi", "user_id": "u1"}'
        store = RedisSessionStore(redis_client)

        assert await store.get("turn:1") == {"prompt": "hi", "user_id": "u1"}

    @pytest.mark.asyncio
    async def test_get_missing(self, redis_client: AsyncMock) -> None:
        redis_client.get.return_value = None
        assert await RedisSessionStore(redis_client).get("turn:1") is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", ["not json", "[1, 2]"])
    async def test_get_malformed_value_is_a_miss(self, redis_client: AsyncMock, raw: str) -> None:
        redis_client.get.return_value = raw
        assert await RedisSessionStore(redis_client).get("turn:1") is None

    @pytest.mark.asyncio
    async def test_failures_do_not_raise(self, redis_client: AsyncMock) -> None:
        redis_client.setex.side_effect = RedisConnectionError("down")
        redis_client.get.side_effect = RedisConnectionError("down")
        redis_client.delete.side_effect = RedisConnectionError("down")
        redis_client.ping.side_effect = RedisConnectionError("down")
        store = RedisSessionStore(redis_client)

        assert await store.put("turn:1", {}, ttl=60) is False
        assert await store.get("turn:1") is None
        await store.delete("turn:1")
        assert await store.ping() is False

    @pytest.mark.asyncio
    async def test_close(self, redis_client: AsyncMock) -> None:
        await RedisSessionStore(redis_client).close()
        redis_client.aclose.assert_awaited_once()


class TestCreateSessionStore:
    def test_memory_without_url(self) -> None:
        store = create_session_store(None, max_entries=5)
        assert store.backend == "memory"

    def test_redis_with_url(self) -> None:
        with patch("api.services.session_store.aioredis.from_url") as from_url:
            store = create_session_store("redis://localhost:6379/0")

        assert store.backend == "redis"
        assert from_url.call_args.args == ("redis://localhost:6379/0",)
        assert from_url.call_args.kwargs["decode_responses"] is True
