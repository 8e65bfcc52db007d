from __future__ import annotations

import json
import secrets
import threading
import time
from typing import Dict, Optional, Tuple

import redis.asyncio as aioredis
from redis import Redis
from redis.exceptions import RedisError

from authgate.logging import get_logger
from authgate.storage.errors import SessionStoreError
from authgate.storage.models import SessionRecord

logger = get_logger(__name__)

# Bytes of randomness in a generated session key
SESSION_KEY_BYTES = 24


def generate_session_key() -> str:
    return secrets.token_urlsafe(SESSION_KEY_BYTES)


def _decode_record(key: str, raw: Optional[str]) -> Optional[SessionRecord]:
    if raw is None:
        return None
    try:
        payload = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        logger.warning("session_record_undecodable", session_key=key)
        return None
    if not isinstance(payload, dict):
        logger.warning("session_record_not_object", session_key=key)
        return None
    return SessionRecord.from_payload(payload)


class RedisSessionStore:
    """Session records in a shared Redis, one JSON string per key.

    Keys are namespaced with ``prefix`` so several services can share one
    Redis. Every ``set`` rewrites the payload and restarts the TTL.
    """

    def __init__(
        self,
        redis_url: str,
        *,
        prefix: str = "authgate:",
        ttl_seconds: int = 60 * 60 * 24,
        socket_timeout: float = 5.0,
    ) -> None:
        self.redis_url = redis_url
        self.prefix = prefix
        self.ttl_seconds = ttl_seconds
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def _key(self, session_key: str) -> str:
        return f"{self.prefix}{session_key}"

    def generate_key(self) -> str:
        return generate_session_key()

    def verify_connection(self) -> None:
        """Assert Redis connectivity before serving requests."""
        # Short-lived sync client so the async client is not bound to a
        # temporary event loop during startup checks.
        sync_client = Redis.from_url(self.redis_url, decode_responses=True)
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    async def get(self, session_key: str) -> Optional[SessionRecord]:
        try:
            raw = await self.client.get(self._key(session_key))
        except RedisError as exc:
            raise SessionStoreError("get", exc) from exc
        return _decode_record(session_key, raw)

    async def set(self, session_key: str, record: SessionRecord) -> None:
        try:
            await self.client.set(
                self._key(session_key),
                json.dumps(record.to_payload()),
                ex=self.ttl_seconds,
            )
        except RedisError as exc:
            raise SessionStoreError("set", exc) from exc

    async def destroy(self, session_key: str) -> None:
        try:
            await self.client.delete(self._key(session_key))
        except RedisError as exc:
            raise SessionStoreError("destroy", exc) from exc

    async def close(self) -> None:
        await self.client.aclose()


class MemorySessionStore:
    """Process-local session store with the same contract as Redis.

    Only suitable for tests and single-process development; records are not
    shared between instances.
    """

    def __init__(self, *, ttl_seconds: int = 60 * 60 * 24) -> None:
        self.ttl_seconds = ttl_seconds
        self._records: Dict[str, Tuple[str, float]] = {}
        self._lock = threading.Lock()

    def generate_key(self) -> str:
        return generate_session_key()

    def verify_connection(self) -> None:
        return None

    async def get(self, session_key: str) -> Optional[SessionRecord]:
        with self._lock:
            entry = self._records.get(session_key)
            if entry is None:
                return None
            raw, expires_at = entry
            if expires_at <= time.monotonic():
                self._records.pop(session_key, None)
                return None
        return _decode_record(session_key, raw)

    async def set(self, session_key: str, record: SessionRecord) -> None:
        raw = json.dumps(record.to_payload())
        with self._lock:
            self._records[session_key] = (raw, time.monotonic() + self.ttl_seconds)

    async def destroy(self, session_key: str) -> None:
        with self._lock:
            self._records.pop(session_key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    async def close(self) -> None:
        with self._lock:
            self._records.clear()
