from __future__ import annotations

import asyncio

from argon2 import PasswordHasher as _Argon2Hasher
from argon2 import Type
from argon2.exceptions import InvalidHash, VerificationError

from authgate.logging import get_logger

logger = get_logger(__name__)


class PasswordHasher:
    """argon2id hashing, executed in worker threads to keep the loop free."""

    def __init__(self) -> None:
        self._hasher = _Argon2Hasher(type=Type.ID)
        # Verified against when the username is unknown so that both login
        # failure paths cost one verification.
        self._dummy_hash = self._hasher.hash("authgate-dummy-password")

    async def hash(self, password: str) -> str:
        return await asyncio.to_thread(self._hasher.hash, password)

    def _verify_sync(self, stored_hash: str, password: str) -> bool:
        try:
            return self._hasher.verify(stored_hash, password)
        except VerificationError:
            return False
        except InvalidHash:
            logger.warning("password_hash_unreadable")
            return False

    async def verify(self, stored_hash: str, password: str) -> bool:
        return await asyncio.to_thread(self._verify_sync, stored_hash, password)

    async def verify_dummy(self, password: str) -> bool:
        await asyncio.to_thread(self._verify_sync, self._dummy_hash, password)
        return False
