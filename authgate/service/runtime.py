from __future__ import annotations

import asyncio
import threading
from typing import Optional, Union
from urllib.parse import urlparse, urlunparse

from authgate.config import Settings, get_settings, reset_settings_cache
from authgate.logging import get_logger
from authgate.service.apps import AppsService
from authgate.service.auth import AuthService
from authgate.service.passwords import PasswordHasher
from authgate.storage.memory import MemoryStore
from authgate.storage.postgres import PostgresStore
from authgate.storage.sessions import MemorySessionStore, RedisSessionStore

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password component of a URL for logging.

    Example: redis://:mypassword@localhost:6379 -> redis://:***@localhost:6379
    """
    if not url:
        return url
    try:
        parsed = urlparse(url)
        if parsed.password:
            netloc = parsed.hostname or ""
            if parsed.port:
                netloc = f"{netloc}:{parsed.port}"
            if parsed.username:
                netloc = f"{parsed.username}:***@{netloc}"
            else:
                netloc = f":***@{netloc}"
            return urlunparse((
                parsed.scheme,
                netloc,
                parsed.path,
                parsed.params,
                parsed.query,
                parsed.fragment,
            ))
        return url
    except ValueError:
        return "***url_parse_error***"


class Runtime:
    """Holds the service instances shared by all requests."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        logger.info(
            "runtime_init_started",
            use_memory_store=self.settings.use_memory_store,
            test_mode=self.settings.test_mode,
        )

        self.store: Union[MemoryStore, PostgresStore]
        if self.settings.use_memory_store:
            self.store = MemoryStore()
        else:
            self.store = PostgresStore(
                self.settings.database_url,
                min_size=self.settings.db_pool_min_size,
                max_size=self.settings.db_pool_max_size,
            )
        logger.info(
            "runtime_store_initialized",
            store_type="memory" if self.settings.use_memory_store else "postgres",
            database_url=None
            if self.settings.use_memory_store
            else _mask_url_password(self.settings.database_url),
        )

        self.sessions = self._build_session_store()
        self.hasher = PasswordHasher()
        self.auth = AuthService(
            self.store, self.sessions, self.settings, hasher=self.hasher
        )
        self.apps = AppsService(self.store)

    def _build_session_store(self) -> Union[RedisSessionStore, MemorySessionStore]:
        redis_error: Exception | None = None
        if self.settings.redis_url:
            try:
                store = RedisSessionStore(
                    self.settings.redis_url,
                    prefix=self.settings.session_key_prefix,
                    ttl_seconds=self.settings.session_ttl_seconds,
                )
                store.verify_connection()
                logger.info(
                    "runtime_session_store_initialized",
                    store_type="redis",
                    redis_url=_mask_url_password(self.settings.redis_url),
                    prefix=self.settings.session_key_prefix,
                )
                return store
            except Exception as exc:
                redis_error = exc

        if not self.settings.test_mode and not self.settings.allow_redis_fallback_dev:
            raise RuntimeError(
                "Redis is required for shared sessions; start Redis or set "
                "TEST_MODE=true/ALLOW_REDIS_FALLBACK_DEV=true for a process-local store."
            ) from redis_error

        logger.warning(
            "redis_disabled_fallback",
            redis_url=_mask_url_password(self.settings.redis_url),
            error=str(redis_error) if redis_error else "redis_url_missing",
            message="Sessions are process-local and not shared with other instances.",
        )
        return MemorySessionStore(ttl_seconds=self.settings.session_ttl_seconds)

    async def startup(self) -> None:
        await self.store.open()
        logger.info("runtime_started")

    async def close(self) -> None:
        await self.sessions.close()
        await self.store.close()
        logger.info("runtime_closed")


runtime: Runtime | None = None
_runtime_lock = threading.Lock()
# Close tasks scheduled on a running loop by reset_runtime_for_tests
_pending_close_tasks: set[asyncio.Task] = set()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton.

    Double-checked locking: the unlocked read is the fast path, the locked
    re-check prevents two threads from building a runtime at once.
    """
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Rebuild the runtime singleton for isolated test runs."""
    global runtime

    with _runtime_lock:
        if runtime is not None and isinstance(runtime.sessions, RedisSessionStore):
            try:
                loop = asyncio.get_running_loop()
                task = loop.create_task(runtime.sessions.close())
                _pending_close_tasks.add(task)
                task.add_done_callback(_pending_close_tasks.discard)
            except RuntimeError:
                asyncio.run(runtime.sessions.close())

        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime(settings)
        return runtime
