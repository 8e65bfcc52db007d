from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

from authgate.config import Settings
from authgate.logging import get_logger
from authgate.service.errors import (
    AuthenticationError,
    BadRequestError,
    ConflictError,
    DependencyError,
    NotFoundError,
    ServiceError,
    ValidationError,
)
from authgate.service.passwords import PasswordHasher
from authgate.service.sessions import (
    CookieSession,
    SessionResolver,
    SessionStore,
    extract_bearer_key,
)
from authgate.storage.errors import ConstraintViolation
from authgate.storage.models import SessionRecord, User

logger = get_logger(__name__)

# Checked in this order; the first colliding field is the one reported
_CONFLICT_MESSAGES = (
    ("username", "Username already taken"),
    ("email", "Email already taken"),
    ("phone", "Phone number already taken"),
)


class UserStore(Protocol):
    async def find_users_by_identity(
        self, username: str, email: str, phone: str
    ) -> List[User]: ...

    async def get_user(self, user_id: int) -> Optional[User]: ...

    async def get_user_by_username(self, username: str) -> Optional[User]: ...

    async def create_user(
        self, username: str, email: str, phone: str, password_hash: str
    ) -> User: ...


@dataclass
class AuthResult:
    user: User
    session: CookieSession


@dataclass
class LogoutResult:
    clear_cookie: bool


def validate_registration(
    username: Optional[str],
    email: Optional[str],
    phone: Optional[str],
    password: Optional[str],
) -> List[str]:
    """Return every violated registration rule, in field order."""
    errors: List[str] = []
    if not username or len(username.strip()) < 3:
        errors.append("Username must be at least 3 characters")
    if not email or "@" not in email:
        errors.append("Valid email is required")
    if not phone or len(phone) < 10:
        errors.append("Valid phone number is required")
    if not password or len(password) < 8:
        errors.append("Password must be at least 8 characters")
    return errors


def conflict_message(
    existing: List[User], username: str, email: str, phone: str
) -> Optional[str]:
    """Name the highest-priority field any existing user already holds."""
    candidate = {"username": username, "email": email, "phone": phone}
    for field_name, message in _CONFLICT_MESSAGES:
        if any(getattr(user, field_name) == candidate[field_name] for user in existing):
            return message
    return None


class AuthService:
    """Registration, login, logout and identity checks over shared sessions."""

    def __init__(
        self,
        users: UserStore,
        sessions: SessionStore,
        settings: Settings,
        *,
        hasher: Optional[PasswordHasher] = None,
    ) -> None:
        self.users = users
        self.sessions = sessions
        self.settings = settings
        self.hasher = hasher or PasswordHasher()
        self.logger = logger

    def resolver(
        self, cookie_session: Optional[CookieSession], authorization: Optional[str]
    ) -> SessionResolver:
        return SessionResolver.for_request(self.sessions, cookie_session, authorization)

    async def _establish_session(
        self, cookie_session: Optional[CookieSession], user: User
    ) -> CookieSession:
        """Write the user into the caller's session and persist it.

        Raises whatever the session store raises; the caller must not report
        success unless this returns.
        """
        session = cookie_session
        if session is not None and self.settings.session_rotate_on_login:
            await self.sessions.destroy(session.key)
            session = None
        if session is None:
            session = CookieSession(key=self.sessions.generate_key(), is_new=True)
        session.record = SessionRecord(
            user_id=user.id,
            username=user.username,
            created_at=session.record.created_at,
        )
        await self.sessions.set(session.key, session.record)
        return session

    async def register(
        self,
        username: Optional[str],
        email: Optional[str],
        phone: Optional[str],
        password: Optional[str],
        *,
        cookie_session: Optional[CookieSession] = None,
    ) -> AuthResult:
        errors = validate_registration(username, email, phone, password)
        if errors:
            raise ValidationError("Validation failed", errors=errors)

        try:
            existing = await self.users.find_users_by_identity(username, email, phone)
            message = conflict_message(existing, username, email, phone)
            if message:
                raise ConflictError(message)

            password_hash = await self.hasher.hash(password)
            user = await self.users.create_user(username, email, phone, password_hash)
            # Only reached once the insert has committed
            session = await self._establish_session(cookie_session, user)
        except ServiceError:
            raise
        except ConstraintViolation as exc:
            self.logger.warning(
                "register_duplicate_key", username=username, detail=exc.detail
            )
            raise ConflictError("User information already exists") from exc
        except Exception as exc:
            self.logger.error(
                "register_failed",
                username=username,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise DependencyError("Registration failed. Please try again.") from exc

        self.logger.info("user_registered", user_id=user.id, username=user.username)
        return AuthResult(user=user, session=session)

    async def login(
        self,
        username: Optional[str],
        password: Optional[str],
        *,
        cookie_session: Optional[CookieSession] = None,
    ) -> AuthResult:
        if not username or not password:
            raise BadRequestError("Username and password are required")

        try:
            user = await self.users.get_user_by_username(username)
            if user is None:
                await self.hasher.verify_dummy(password)
                verified = False
            else:
                verified = await self.hasher.verify(user.password_hash, password)
            if not user or not verified:
                self.logger.info("login_rejected", username=username)
                raise AuthenticationError("Invalid username or password")
            session = await self._establish_session(cookie_session, user)
        except ServiceError:
            raise
        except Exception as exc:
            self.logger.error(
                "login_failed",
                username=username,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise DependencyError("Login failed. Please try again.") from exc

        self.logger.info("user_logged_in", user_id=user.id, is_new_session=session.is_new)
        return AuthResult(user=user, session=session)

    async def logout(
        self,
        *,
        cookie_session: Optional[CookieSession] = None,
        authorization: Optional[str] = None,
    ) -> LogoutResult:
        bearer_key = extract_bearer_key(authorization)
        try:
            if bearer_key:
                # Bearer clients own their key; the cookie is left alone
                await self.sessions.destroy(bearer_key)
                self.logger.info("session_destroyed", mode="bearer")
                return LogoutResult(clear_cookie=False)
            if cookie_session is not None:
                await self.sessions.destroy(cookie_session.key)
                self.logger.info("session_destroyed", mode="cookie")
        except Exception as exc:
            self.logger.error(
                "logout_failed", error_type=type(exc).__name__, error=str(exc)
            )
            raise DependencyError("Logout failed. Please try again.") from exc
        return LogoutResult(clear_cookie=True)

    async def profile(
        self,
        *,
        cookie_session: Optional[CookieSession] = None,
        authorization: Optional[str] = None,
    ) -> User:
        resolver = self.resolver(cookie_session, authorization)
        try:
            identity = await resolver.resolve()
            if identity is None:
                raise AuthenticationError("Not authenticated")
            user = await self.users.get_user(identity.user_id)
            if user is None:
                # Session outlived its user; drop it so the cookie stops resolving
                if cookie_session is not None:
                    await self.sessions.destroy(cookie_session.key)
                self.logger.warning("profile_user_missing", user_id=identity.user_id)
                raise NotFoundError("User not found")
        except ServiceError:
            raise
        except Exception as exc:
            self.logger.error(
                "profile_failed", error_type=type(exc).__name__, error=str(exc)
            )
            raise DependencyError("Failed to load profile") from exc
        return user

    async def check(
        self,
        *,
        cookie_session: Optional[CookieSession] = None,
        authorization: Optional[str] = None,
    ) -> Dict[str, Any]:
        resolver = self.resolver(cookie_session, authorization)
        try:
            user_id = await resolver.resolve_user_id()
            username = await resolver.resolve_username()
        except Exception as exc:
            self.logger.error(
                "auth_check_failed", error_type=type(exc).__name__, error=str(exc)
            )
            raise DependencyError("Authentication check failed") from exc
        return {
            "authenticated": user_id is not None,
            "userId": user_id,
            "username": username,
        }
