from __future__ import annotations

import base64
import hashlib
import hmac
from typing import Optional

from fastapi import Request, Response

from authgate.config import Settings
from authgate.logging import get_logger
from authgate.service.runtime import get_runtime
from authgate.service.sessions import CookieSession
from authgate.storage.errors import SessionStoreError

logger = get_logger(__name__)


def _signature(session_key: str, secret: str) -> str:
    digest = hmac.new(secret.encode(), session_key.encode(), hashlib.sha256).digest()
    return base64.urlsafe_b64encode(digest).decode().rstrip("=")


def sign_session_key(session_key: str, secret: str) -> str:
    return f"{session_key}.{_signature(session_key, secret)}"


def unsign_session_cookie(value: Optional[str], secret: str) -> Optional[str]:
    """Return the session key of a signed cookie value, or None if tampered."""
    if not value or "." not in value:
        return None
    session_key, signature = value.rsplit(".", 1)
    if not session_key:
        return None
    if not hmac.compare_digest(signature, _signature(session_key, secret)):
        return None
    return session_key


async def load_cookie_session(request: Request) -> Optional[CookieSession]:
    """Dependency: the session record bound to the request's cookie, if any.

    Missing, unsigned or unknown cookies all yield None; the caller is then
    anonymous on the cookie path. A store failure is attached to the returned
    session so that only operations reading the cookie identity fail.
    """
    runtime = get_runtime()
    settings = runtime.settings
    raw = request.cookies.get(settings.session_cookie_name)
    session_key = unsign_session_cookie(raw, settings.session_secret)
    if raw and session_key is None:
        logger.info("session_cookie_rejected", path=request.url.path)
    if session_key is None:
        return None
    try:
        record = await runtime.sessions.get(session_key)
    except SessionStoreError as exc:
        logger.error(
            "cookie_session_load_failed",
            operation=exc.operation,
            error=str(exc.cause or exc),
        )
        return CookieSession(key=session_key, load_error=exc)
    if record is None:
        return None
    return CookieSession(key=session_key, record=record)


def set_session_cookie(response: Response, session_key: str, settings: Settings) -> None:
    response.set_cookie(
        settings.session_cookie_name,
        sign_session_key(session_key, settings.session_secret),
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
        domain=settings.session_cookie_domain,
        path="/",
    )


def clear_session_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(
        settings.session_cookie_name,
        path="/",
        domain=settings.session_cookie_domain,
        secure=settings.session_cookie_secure,
        httponly=True,
        samesite="lax",
    )
