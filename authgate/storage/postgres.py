from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from authgate.logging import get_logger
from authgate.storage.errors import ConstraintViolation
from authgate.storage.models import (
    APP_NAME_MAX_LENGTH,
    EMAIL_MAX_LENGTH,
    PHONE_MAX_LENGTH,
    USERNAME_MAX_LENGTH,
    App,
    User,
)

SCHEMA_SQL = (
    f"""
    CREATE TABLE IF NOT EXISTS users (
        id SERIAL PRIMARY KEY,
        username VARCHAR({USERNAME_MAX_LENGTH}) NOT NULL,
        email VARCHAR({EMAIL_MAX_LENGTH}) NOT NULL,
        phone VARCHAR({PHONE_MAX_LENGTH}) NOT NULL,
        password VARCHAR(256) NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        role INTEGER NOT NULL DEFAULT 0,
        CONSTRAINT users_username_key UNIQUE (username),
        CONSTRAINT users_email_key UNIQUE (email),
        CONSTRAINT users_phone_key UNIQUE (phone)
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS apps (
        id SERIAL PRIMARY KEY,
        name VARCHAR({APP_NAME_MAX_LENGTH}) NOT NULL,
        path TEXT NOT NULL
    )
    """,
)

_REQUIRED_TABLES = ("users", "apps")

_USER_COLUMNS = "id, username, email, phone, password, created_at, role"


def _field_for_constraint(constraint: Optional[str]) -> Optional[str]:
    if not constraint:
        return None
    for field_name in ("username", "email", "phone"):
        if field_name in constraint:
            return field_name
    return None


class PostgresStore:
    """Postgres-backed credential and app store on an async psycopg pool."""

    def __init__(self, dsn: str, *, min_size: int = 1, max_size: int = 10) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = AsyncConnectionPool(
            self.dsn,
            min_size=min_size,
            max_size=max_size,
            kwargs={"row_factory": dict_row, "autocommit": False},
            open=False,
        )

    def _connect(self):
        return self.pool.connection()

    async def open(self) -> None:
        await self.pool.open(wait=True)
        await self._verify_required_schema()

    async def close(self) -> None:
        await self.pool.close()

    async def ensure_schema(self) -> None:
        """Create the ``users`` and ``apps`` tables if they are missing."""

        async with self._connect() as conn:
            for statement in SCHEMA_SQL:
                await conn.execute(statement)

    async def _verify_required_schema(self) -> None:
        async with self._connect() as conn:
            cur = await conn.execute(
                "SELECT table_name FROM information_schema.tables WHERE table_name = ANY(%s)",
                (list(_REQUIRED_TABLES),),
            )
            rows = await cur.fetchall()
        present = {row["table_name"] for row in rows}
        missing = [name for name in _REQUIRED_TABLES if name not in present]
        if missing:
            raise RuntimeError(
                f"database schema incomplete, missing tables: {', '.join(missing)}; "
                "run scripts/init_db.py"
            )

    @staticmethod
    def _row_to_user(row: Dict[str, Any]) -> User:
        created_at = row.get("created_at") or datetime.now(timezone.utc)
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return User(
            id=int(row["id"]),
            username=row["username"],
            email=row["email"],
            phone=row["phone"],
            password_hash=row["password"],
            created_at=created_at,
            role=int(row.get("role") or 0),
        )

    # users
    async def find_users_by_identity(
        self, username: str, email: str, phone: str
    ) -> List[User]:
        async with self._connect() as conn:
            cur = await conn.execute(
                f"SELECT {_USER_COLUMNS} FROM users "
                "WHERE username = %s OR email = %s OR phone = %s ORDER BY id",
                (username, email, phone),
            )
            rows = await cur.fetchall()
        return [self._row_to_user(row) for row in rows]

    async def get_user(self, user_id: int) -> Optional[User]:
        async with self._connect() as conn:
            cur = await conn.execute(
                f"SELECT {_USER_COLUMNS} FROM users WHERE id = %s LIMIT 1", (user_id,)
            )
            row = await cur.fetchone()
        return self._row_to_user(row) if row else None

    async def get_user_by_username(self, username: str) -> Optional[User]:
        async with self._connect() as conn:
            cur = await conn.execute(
                f"SELECT {_USER_COLUMNS} FROM users WHERE username = %s LIMIT 1",
                (username,),
            )
            row = await cur.fetchone()
        return self._row_to_user(row) if row else None

    async def create_user(
        self, username: str, email: str, phone: str, password_hash: str
    ) -> User:
        """Insert a user and read it back inside one transaction."""
        try:
            async with self._connect() as conn:
                async with conn.transaction():
                    cur = await conn.execute(
                        """
                        INSERT INTO users (username, email, phone, password)
                        VALUES (%s, %s, %s, %s)
                        RETURNING id
                        """,
                        (username, email, phone, password_hash),
                    )
                    inserted = await cur.fetchone()
                    cur = await conn.execute(
                        f"SELECT {_USER_COLUMNS} FROM users WHERE id = %s LIMIT 1",
                        (inserted["id"],),
                    )
                    row = await cur.fetchone()
        except errors.UniqueViolation as exc:
            constraint = getattr(exc.diag, "constraint_name", None)
            field_name = _field_for_constraint(constraint)
            raise ConstraintViolation(
                "user already exists",
                {"field": field_name, "constraint": constraint},
            ) from exc
        if not row:
            raise RuntimeError("inserted user row not visible inside its transaction")
        return self._row_to_user(row)

    async def delete_user(self, user_id: int) -> bool:
        async with self._connect() as conn:
            cur = await conn.execute("DELETE FROM users WHERE id = %s", (user_id,))
            return cur.rowcount > 0

    # apps
    async def list_apps(self) -> List[App]:
        async with self._connect() as conn:
            cur = await conn.execute("SELECT id, name, path FROM apps ORDER BY id")
            rows = await cur.fetchall()
        return [App(id=int(r["id"]), name=r["name"], path=r["path"]) for r in rows]

    async def get_app(self, app_id: int) -> Optional[App]:
        async with self._connect() as conn:
            cur = await conn.execute(
                "SELECT id, name, path FROM apps WHERE id = %s LIMIT 1", (app_id,)
            )
            row = await cur.fetchone()
        if not row:
            return None
        return App(id=int(row["id"]), name=row["name"], path=row["path"])

    async def get_app_by_name(self, name: str) -> Optional[App]:
        async with self._connect() as conn:
            cur = await conn.execute(
                "SELECT id, name, path FROM apps WHERE name = %s LIMIT 1", (name,)
            )
            row = await cur.fetchone()
        if not row:
            return None
        return App(id=int(row["id"]), name=row["name"], path=row["path"])

    async def create_app(self, name: str, path: str) -> App:
        async with self._connect() as conn:
            async with conn.transaction():
                cur = await conn.execute(
                    "INSERT INTO apps (name, path) VALUES (%s, %s) RETURNING id",
                    (name, path),
                )
                inserted = await cur.fetchone()
                cur = await conn.execute(
                    "SELECT id, name, path FROM apps WHERE id = %s LIMIT 1",
                    (inserted["id"],),
                )
                row = await cur.fetchone()
        return App(id=int(row["id"]), name=row["name"], path=row["path"])

    async def delete_app(self, app_id: int) -> bool:
        async with self._connect() as conn:
            cur = await conn.execute("DELETE FROM apps WHERE id = %s", (app_id,))
            return cur.rowcount > 0
