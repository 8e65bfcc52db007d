"""Tests for the Redis and in-memory session stores."""

import json
from unittest.mock import AsyncMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from authgate.storage.errors import SessionStoreError
from authgate.storage.models import SessionRecord
from authgate.storage.sessions import MemorySessionStore, RedisSessionStore


@pytest.fixture
def redis_store():
    store = RedisSessionStore(
        "redis://localhost:6379/0", prefix="singleton-server:", ttl_seconds=120
    )
    store.client = AsyncMock()
    return store


class TestRedisSessionStore:
    @pytest.mark.asyncio
    async def test_set_writes_prefixed_json_with_ttl(self, redis_store):
        await redis_store.set("abc", SessionRecord(user_id=1, username="alice"))

        redis_store.client.set.assert_awaited_once()
        args, kwargs = redis_store.client.set.call_args
        assert args[0] == "singleton-server:abc"
        payload = json.loads(args[1])
        assert payload["userId"] == 1
        assert payload["username"] == "alice"
        assert "createdAt" in payload
        assert kwargs["ex"] == 120

    @pytest.mark.asyncio
    async def test_get_decodes_record(self, redis_store):
        redis_store.client.get.return_value = json.dumps(
            {"userId": 4, "username": "dave", "createdAt": "2024-01-01T00:00:00+00:00"}
        )

        record = await redis_store.get("abc")

        redis_store.client.get.assert_awaited_once_with("singleton-server:abc")
        assert record.user_id == 4
        assert record.username == "dave"

    @pytest.mark.asyncio
    async def test_get_missing_key(self, redis_store):
        redis_store.client.get.return_value = None
        assert await redis_store.get("abc") is None

    @pytest.mark.asyncio
    async def test_get_corrupt_payload_is_missing(self, redis_store):
        redis_store.client.get.return_value = "{not json"
        assert await redis_store.get("abc") is None

    @pytest.mark.asyncio
    async def test_destroy_deletes_prefixed_key(self, redis_store):
        await redis_store.destroy("abc")
        redis_store.client.delete.assert_awaited_once_with("singleton-server:abc")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("operation", ["get", "set", "destroy"])
    async def test_redis_errors_become_session_store_errors(self, redis_store, operation):
        redis_store.client.get.side_effect = RedisConnectionError("down")
        redis_store.client.set.side_effect = RedisConnectionError("down")
        redis_store.client.delete.side_effect = RedisConnectionError("down")

        with pytest.raises(SessionStoreError) as excinfo:
            if operation == "set":
                await redis_store.set("abc", SessionRecord(user_id=1))
            else:
                await getattr(redis_store, operation)("abc")
        assert excinfo.value.operation == operation

    def test_generated_keys_are_unique(self, redis_store):
        keys = {redis_store.generate_key() for _ in range(100)}
        assert len(keys) == 100


class TestMemorySessionStore:
    @pytest.mark.asyncio
    async def test_set_get_destroy(self):
        store = MemorySessionStore(ttl_seconds=60)
        await store.set("k", SessionRecord(user_id=1, username="alice"))
        assert (await store.get("k")).username == "alice"

        await store.destroy("k")
        assert await store.get("k") is None
        # Destroying twice is not an error
        await store.destroy("k")

    @pytest.mark.asyncio
    async def test_records_expire(self):
        store = MemorySessionStore(ttl_seconds=10)
        with patch("authgate.storage.sessions.time.monotonic", return_value=1000.0):
            await store.set("k", SessionRecord(user_id=1))
        with patch("authgate.storage.sessions.time.monotonic", return_value=1009.0):
            assert await store.get("k") is not None
        with patch("authgate.storage.sessions.time.monotonic", return_value=1010.0):
            assert await store.get("k") is None
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_set_refreshes_ttl(self):
        store = MemorySessionStore(ttl_seconds=10)
        with patch("authgate.storage.sessions.time.monotonic", return_value=1000.0):
            await store.set("k", SessionRecord(user_id=1))
        with patch("authgate.storage.sessions.time.monotonic", return_value=1008.0):
            await store.set("k", SessionRecord(user_id=1, username="alice"))
        with patch("authgate.storage.sessions.time.monotonic", return_value=1015.0):
            assert (await store.get("k")).username == "alice"


def test_session_record_rejects_boolean_user_id():
    record = SessionRecord.from_payload({"userId": True, "username": "x"})
    assert record.user_id is None
