from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Column widths of the users and apps tables
USERNAME_MAX_LENGTH = 256
EMAIL_MAX_LENGTH = 256
PHONE_MAX_LENGTH = 32
APP_NAME_MAX_LENGTH = 256


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class User:
    id: int
    username: str
    email: str
    phone: str
    password_hash: str = field(repr=False, default="")
    created_at: datetime = field(default_factory=_utcnow)
    role: int = 0

    def public(self) -> Dict[str, Any]:
        """Fields returned to the client after register/login."""
        return {"id": self.id, "username": self.username, "email": self.email}

    def profile(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "phone": self.phone,
            "createdAt": self.created_at.isoformat(),
        }


@dataclass
class App:
    id: int
    name: str
    path: str

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "path": self.path}


@dataclass
class SessionRecord:
    """Payload kept in the shared session store under an opaque key.

    Serialized with camelCase keys so other services reading the same store
    see ``userId``/``username``.
    """

    user_id: Optional[int] = None
    username: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"createdAt": self.created_at.isoformat()}
        if self.user_id is not None:
            payload["userId"] = self.user_id
        if self.username is not None:
            payload["username"] = self.username
        return payload

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "SessionRecord":
        created_at = _utcnow()
        created_raw = payload.get("createdAt")
        if isinstance(created_raw, str):
            try:
                created_at = datetime.fromisoformat(created_raw)
            except ValueError:
                pass
        user_id = payload.get("userId")
        username = payload.get("username")
        return cls(
            # bool is an int subclass; never treat it as an id
            user_id=user_id if isinstance(user_id, int) and not isinstance(user_id, bool) else None,
            username=username if isinstance(username, str) else None,
            created_at=created_at,
        )
