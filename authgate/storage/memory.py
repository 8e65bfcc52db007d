from __future__ import annotations

import threading
from typing import Dict, List, Optional

from authgate.logging import get_logger
from authgate.storage.errors import ConstraintViolation
from authgate.storage.models import App, User


class MemoryStore:
    """In-process stand-in for the relational store.

    Mirrors the unique constraints of the ``users`` table so duplicate-key
    handling can be exercised without a database.
    """

    def __init__(self) -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[int, User] = {}
        self.apps: Dict[int, App] = {}
        self._user_id_seq: int = 1
        self._app_id_seq: int = 1
        # RLock for all data operations; no awaits happen while it is held
        self._data_lock = threading.RLock()

    async def open(self) -> None:
        return None

    async def close(self) -> None:
        return None

    # users
    async def find_users_by_identity(
        self, username: str, email: str, phone: str
    ) -> List[User]:
        with self._data_lock:
            return [
                u
                for u in sorted(self.users.values(), key=lambda u: u.id)
                if u.username == username or u.email == email or u.phone == phone
            ]

    async def get_user(self, user_id: int) -> Optional[User]:
        with self._data_lock:
            return self.users.get(user_id)

    async def get_user_by_username(self, username: str) -> Optional[User]:
        with self._data_lock:
            return next(
                (u for u in self.users.values() if u.username == username), None
            )

    async def create_user(
        self, username: str, email: str, phone: str, password_hash: str
    ) -> User:
        candidate = {"username": username, "email": email, "phone": phone}
        with self._data_lock:
            for existing in self.users.values():
                for field_name, value in candidate.items():
                    if getattr(existing, field_name) == value:
                        raise ConstraintViolation(
                            f"{field_name} already exists", {"field": field_name}
                        )
            user = User(
                id=self._user_id_seq,
                username=username,
                email=email,
                phone=phone,
                password_hash=password_hash,
            )
            self._user_id_seq += 1
            self.users[user.id] = user
            return user

    async def delete_user(self, user_id: int) -> bool:
        with self._data_lock:
            return self.users.pop(user_id, None) is not None

    # apps
    async def list_apps(self) -> List[App]:
        with self._data_lock:
            return sorted(self.apps.values(), key=lambda a: a.id)

    async def get_app(self, app_id: int) -> Optional[App]:
        with self._data_lock:
            return self.apps.get(app_id)

    async def get_app_by_name(self, name: str) -> Optional[App]:
        with self._data_lock:
            return next((a for a in self.apps.values() if a.name == name), None)

    async def create_app(self, name: str, path: str) -> App:
        with self._data_lock:
            app = App(id=self._app_id_seq, name=name, path=path)
            self._app_id_seq += 1
            self.apps[app.id] = app
            return app

    async def delete_app(self, app_id: int) -> bool:
        with self._data_lock:
            return self.apps.pop(app_id, None) is not None
