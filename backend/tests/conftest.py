"""Shared fixtures for backend tests.

Every test gets its own file-backed SQLite database; the application's
``get_db`` dependency is overridden to use it, so guards and handlers share a
session exactly as they do in production.
"""

from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone

# Settings are read at import time
os.environ.setdefault("SEED_DEFAULT_ADMIN", "false")
os.environ.setdefault("LOGIN_RATE_LIMIT_PER_MINUTE", "5")
os.environ.setdefault("AUTH_SECRET_KEY", "test-secret-key-with-enough-length-32b")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from mentalspace.auth.deps import Principal, issue_token, revoked_tokens
from mentalspace.db.engine import get_db
from mentalspace.db.models import Base, Client, TherapySession, User
from mentalspace.main import app
from mentalspace.services.user_service import hash_password
from mentalspace.utils.token_bucket import reset_bucket

PASSWORD = "password123"

# (fixture key, username, role)
_STAFF = [
    ("admin", "admin", "administrator"),
    ("practice_admin", "pa", "practice_administrator"),
    ("supervisor", "super", "supervisor"),
    ("clinician", "clin", "clinician"),
    ("clinician2", "clin2", "clinician"),
    ("intern", "intern", "intern"),
    ("biller", "biller", "biller"),
]

_password_hash: str | None = None


def _hashed_password() -> str:
    global _password_hash
    if _password_hash is None:
        _password_hash = hash_password(PASSWORD)
    return _password_hash


@pytest.fixture(autouse=True)
def _reset_process_state():
    reset_bucket()
    revoked_tokens.clear()
    yield
    reset_bucket()
    revoked_tokens.clear()


@pytest.fixture
async def db_factory(tmp_path):
    """File-backed SQLite with all tables; returns an async session factory."""
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False, future=True)

    @event.listens_for(eng.sync_engine, "connect")
    def _fk_on(dbapi_conn, _conn_rec):  # type: ignore[misc]
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(eng, class_=AsyncSession, expire_on_commit=False)
    yield factory
    await eng.dispose()


@pytest.fixture
async def client(db_factory):
    """Async HTTP client bound to the app, backed by the per-test database."""

    async def _get_test_db():
        async with db_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _get_test_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.pop(get_db, None)


@pytest.fixture
async def users(db_factory) -> dict[str, User]:
    """One staff account per role, keyed by a short name."""
    created: dict[str, User] = {}
    async with db_factory() as db:
        for key, username, role in _STAFF:
            user = User(
                username=username,
                email=f"{username}@example.com",
                password_hash=_hashed_password(),
                first_name=key.title(),
                last_name="Staff",
                role=role,
                status="active",
            )
            db.add(user)
            created[key] = user
        await db.commit()
    return created


@pytest.fixture
def tokens(users) -> dict[str, str]:
    return {
        key: issue_token(Principal(id=u.id, role=u.role, username=u.username))[0]
        for key, u in users.items()
    }


@pytest.fixture
def headers(tokens) -> dict[str, dict[str, str]]:
    """Authorization headers per staff key."""
    return {key: {"Authorization": f"Bearer {token}"} for key, token in tokens.items()}


@pytest.fixture
def make_client(db_factory):
    async def _make(therapist_id: int | None, **fields) -> Client:
        values = {"first_name": "Jane", "last_name": "Doe", "status": "active"}
        values.update(fields)
        async with db_factory() as db:
            record = Client(primary_therapist_id=therapist_id, **values)
            db.add(record)
            await db.commit()
            await db.refresh(record)
            return record

    return _make


@pytest.fixture
def make_session(db_factory):
    async def _make(client_id: int, therapist_id: int, status: str = "scheduled", **fields) -> TherapySession:
        start = datetime.now(timezone.utc) + timedelta(days=1)
        values = {
            "start_time": start,
            "end_time": start + timedelta(minutes=50),
            "session_type": "individual",
            "medium": "in-person",
        }
        values.update(fields)
        async with db_factory() as db:
            record = TherapySession(client_id=client_id, therapist_id=therapist_id, status=status, **values)
            db.add(record)
            await db.commit()
            await db.refresh(record)
            return record

    return _make
