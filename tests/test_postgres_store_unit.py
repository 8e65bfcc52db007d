from contextlib import asynccontextmanager
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from psycopg import errors

from authgate.storage.errors import ConstraintViolation
from authgate.storage.postgres import PostgresStore, _field_for_constraint


class DummyCursor:
    def __init__(self, rows=None, rowcount=0):
        self.rows = list(rows or [])
        self.rowcount = rowcount

    async def fetchone(self):
        return self.rows[0] if self.rows else None

    async def fetchall(self):
        return self.rows


class DummyConnection:
    def __init__(self, results):
        self.results = list(results)
        self.statements = []
        self.transactions = 0

    async def execute(self, sql, params=None):
        self.statements.append((" ".join(sql.split()), params))
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    @asynccontextmanager
    async def transaction(self):
        self.transactions += 1
        yield


class DummyPool:
    def __init__(self, conn):
        self.conn = conn

    @asynccontextmanager
    async def connection(self):
        yield self.conn


class EmailUniqueViolation(errors.UniqueViolation):
    @property
    def diag(self):
        return SimpleNamespace(constraint_name="users_email_key")


def _store(conn) -> PostgresStore:
    store: PostgresStore = PostgresStore.__new__(PostgresStore)
    store.pool = DummyPool(conn)
    store.dsn = "postgresql://unit-test"
    return store


def _user_row(**overrides):
    row = {
        "id": 1,
        "username": "alice",
        "email": "alice@example.com",
        "phone": "5551234567",
        "password": "$argon2id$stub",
        "created_at": datetime(2024, 1, 1),
        "role": 0,
    }
    row.update(overrides)
    return row


@pytest.mark.parametrize(
    "constraint, expected",
    [
        ("users_username_key", "username"),
        ("users_email_key", "email"),
        ("users_phone_key", "phone"),
        ("users_pkey", None),
        (None, None),
    ],
)
def test_field_for_constraint(constraint, expected):
    assert _field_for_constraint(constraint) == expected


@pytest.mark.asyncio
async def test_create_user_inserts_and_reads_back_in_one_transaction():
    conn = DummyConnection([DummyCursor([{"id": 1}]), DummyCursor([_user_row()])])
    store = _store(conn)

    user = await store.create_user("alice", "alice@example.com", "5551234567", "hash")

    assert conn.transactions == 1
    assert conn.statements[0][0].startswith("INSERT INTO users")
    assert conn.statements[1][1] == (1,)
    assert user.id == 1
    assert user.password_hash == "$argon2id$stub"
    # Naive timestamps from the driver are read as UTC
    assert user.created_at.tzinfo == timezone.utc


@pytest.mark.asyncio
async def test_create_user_unique_violation_maps_to_constraint_violation():
    conn = DummyConnection([EmailUniqueViolation("duplicate key")])
    store = _store(conn)

    with pytest.raises(ConstraintViolation) as excinfo:
        await store.create_user("alice", "alice@example.com", "5551234567", "hash")

    assert excinfo.value.detail == {"field": "email", "constraint": "users_email_key"}


@pytest.mark.asyncio
async def test_get_user_missing_returns_none():
    store = _store(DummyConnection([DummyCursor([])]))
    assert await store.get_user(42) is None


@pytest.mark.asyncio
async def test_find_users_by_identity_queries_all_three_fields():
    conn = DummyConnection([DummyCursor([_user_row(), _user_row(id=2, username="bob")])])
    store = _store(conn)

    users = await store.find_users_by_identity("alice", "x@example.com", "5550000000")

    assert [u.id for u in users] == [1, 2]
    assert conn.statements[0][1] == ("alice", "x@example.com", "5550000000")


@pytest.mark.asyncio
async def test_delete_app_reports_whether_a_row_was_removed():
    store = _store(DummyConnection([DummyCursor(rowcount=1), DummyCursor(rowcount=0)]))
    assert await store.delete_app(1) is True
    assert await store.delete_app(1) is False


@pytest.mark.asyncio
async def test_open_rejects_missing_tables():
    conn = DummyConnection([DummyCursor([{"table_name": "users"}])])
    store = _store(conn)

    with pytest.raises(RuntimeError, match="apps"):
        await store._verify_required_schema()
