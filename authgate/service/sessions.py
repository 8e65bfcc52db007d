"""Identity resolution for cookie-bound and bearer-keyed sessions.

A caller proves who they are in one of two ways:

* a browser sends the signed session cookie; the transport has already
  loaded the matching record into a :class:`CookieSession`;
* an API client sends ``Authorization: Bearer <key>`` where ``<key>`` is
  the raw session-store key returned at login.

Both variants read the same shared store. :class:`SessionResolver` tries the
cookie first and falls back to the bearer key.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Optional, Protocol, Sequence

from authgate.logging import get_logger
from authgate.storage.errors import SessionStoreError
from authgate.storage.models import SessionRecord

logger = get_logger(__name__)

_BEARER_PREFIX = re.compile(r"^\s*bearer\s+", re.IGNORECASE)


class SessionStore(Protocol):
    def generate_key(self) -> str: ...

    async def get(self, session_key: str) -> Optional[SessionRecord]: ...

    async def set(self, session_key: str, record: SessionRecord) -> None: ...

    async def destroy(self, session_key: str) -> None: ...


@dataclass
class Identity:
    user_id: int
    username: Optional[str] = None


@dataclass
class CookieSession:
    """Session bound to the request's cookie, as loaded by the transport.

    ``load_error`` is set when the store could not be read for this key; it is
    raised only once something asks the cookie for an identity.
    """

    key: str
    record: SessionRecord = field(default_factory=SessionRecord)
    is_new: bool = False
    load_error: Optional[SessionStoreError] = None

    def loaded_record(self) -> SessionRecord:
        if self.load_error is not None:
            raise self.load_error
        return self.record


def extract_bearer_key(authorization: Optional[str]) -> Optional[str]:
    """Return the raw session key carried by an Authorization header.

    A leading ``Bearer`` scheme is stripped when present; a header without a
    scheme is taken as the key itself.
    """
    if not authorization:
        return None
    key = _BEARER_PREFIX.sub("", authorization).strip()
    return key or None


class IdentitySource(Protocol):
    async def resolve_user_id(self) -> Optional[int]: ...

    async def resolve_username(self) -> Optional[str]: ...


class CookieBoundSource:
    """Reads the identity cached in the cookie session; never hits the store."""

    def __init__(self, session: Optional[CookieSession]) -> None:
        self.session = session

    async def resolve_user_id(self) -> Optional[int]:
        if self.session is None:
            return None
        return self.session.loaded_record().user_id

    async def resolve_username(self) -> Optional[str]:
        if self.session is None:
            return None
        return self.session.loaded_record().username


class BearerKeyedSource:
    """Looks the bearer key up in the session store, at most once."""

    def __init__(self, key: Optional[str], store: SessionStore) -> None:
        self.key = key
        self.store = store
        self._loaded = False
        self._record: Optional[SessionRecord] = None

    async def _load(self) -> Optional[SessionRecord]:
        if self._loaded:
            return self._record
        self._loaded = True
        if not self.key:
            return None
        try:
            self._record = await self.store.get(self.key)
        except SessionStoreError as exc:
            # Unreachable store reads as "unauthenticated" on this path
            logger.warning(
                "bearer_session_lookup_failed",
                operation=exc.operation,
                error=str(exc.cause or exc),
            )
            self._record = None
        return self._record

    async def resolve_user_id(self) -> Optional[int]:
        record = await self._load()
        return record.user_id if record else None

    async def resolve_username(self) -> Optional[str]:
        record = await self._load()
        return record.username if record else None


class SessionResolver:
    """Resolves the caller's identity from a prioritized list of sources."""

    def __init__(self, sources: Sequence[IdentitySource]) -> None:
        self.sources = list(sources)

    @classmethod
    def for_request(
        cls,
        store: SessionStore,
        cookie_session: Optional[CookieSession],
        authorization: Optional[str],
    ) -> "SessionResolver":
        return cls(
            [
                CookieBoundSource(cookie_session),
                BearerKeyedSource(extract_bearer_key(authorization), store),
            ]
        )

    async def resolve_user_id(self) -> Optional[int]:
        for source in self.sources:
            user_id = await source.resolve_user_id()
            if user_id is not None:
                return user_id
        return None

    async def resolve_username(self) -> Optional[str]:
        primary, fallbacks = self.sources[0], self.sources[1:]
        username = await primary.resolve_username()
        if username is not None:
            return username
        # Fallback sources only count once some source has proven an identity
        if await self.resolve_user_id() is None:
            return None
        for source in fallbacks:
            username = await source.resolve_username()
            if username is not None:
                return username
        return None

    async def resolve(self) -> Optional[Identity]:
        user_id = await self.resolve_user_id()
        if user_id is None:
            return None
        return Identity(user_id=user_id, username=await self.resolve_username())
