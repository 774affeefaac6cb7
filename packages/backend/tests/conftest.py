"""Test fixtures — in-memory SQLite per test, real JWTs, a fresh hub per test.

Learn: Testing pattern for async SQLAlchemy + FastAPI:

1. Each test gets its own in-memory SQLite engine with create_all, so no
   PostgreSQL or Redis is needed and nothing leaks between tests.
2. get_db is overridden to yield that session; every Depends(get_db) in a
   request shares it.
3. Auth is real: clients carry a genuine access token for a seeded user,
   so ownership checks run exactly as in production.
4. app.state.hub is replaced per test. FakeSocket connections registered
   in its registry record every frame the broadcaster sends.
"""

import json
import os
import uuid

# Must be set before todolive.config is imported.
os.environ.setdefault("TODOLIVE_ENVIRONMENT", "test")
os.environ.setdefault("TODOLIVE_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("TODOLIVE_SMTP_HOST", "")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from todolive.auth.jwt import create_access_token
from todolive.auth.password import hash_password
from todolive.config import settings
from todolive.db.engine import get_db
from todolive.db.models import Base, User
from todolive.main import app
from todolive.realtime.hub import RealtimeHub
from todolive.realtime.registry import Connection


# ═══════════════════════════════════════════════════════════
# Fake sockets
# ═══════════════════════════════════════════════════════════


class FakeSocket:
    """Stands in for a WebSocket: records decoded frames, can be made to fail."""

    def __init__(self, fail: bool = False):
        self.frames: list[dict] = []
        self.fail = fail
        self.closed = False

    async def send(self, text: str) -> None:
        if self.fail:
            raise ConnectionResetError("socket gone")
        self.frames.append(json.loads(text))

    async def close(self, *args, **kwargs) -> None:
        self.closed = True

    def events(self) -> list[str]:
        return [f["type"] for f in self.frames]

    def of_type(self, event: str) -> list[dict]:
        return [f["data"] for f in self.frames if f["type"] == event]


# ═══════════════════════════════════════════════════════════
# Database
# ═══════════════════════════════════════════════════════════


@pytest_asyncio.fixture()
async def db_session():
    """Fresh in-memory SQLite database for each test."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session

    await engine.dispose()


@pytest_asyncio.fixture()
async def user(db_session):
    u = User(
        email="alice@example.com",
        username="alice",
        password_hash=hash_password("alice-password", rounds=4),
    )
    db_session.add(u)
    await db_session.commit()
    return u


@pytest_asyncio.fixture()
async def other_user(db_session):
    u = User(
        email="bob@example.com",
        username="bob",
        password_hash=hash_password("bob-password", rounds=4),
    )
    db_session.add(u)
    await db_session.commit()
    return u


@pytest.fixture(autouse=True)
def upload_dir(tmp_path, monkeypatch):
    """Attachments land in a per-test temp dir."""
    path = tmp_path / "uploads"
    monkeypatch.setattr(settings, "upload_dir", str(path))
    return path


# ═══════════════════════════════════════════════════════════
# Realtime
# ═══════════════════════════════════════════════════════════


@pytest.fixture()
def hub():
    """A fresh RealtimeHub on app.state (no background loops, no Redis)."""
    previous = app.state.hub
    fresh = RealtimeHub()
    app.state.hub = fresh
    yield fresh
    app.state.hub = previous


@pytest.fixture()
def connect(hub):
    """Register a FakeSocket for a user: connect(user_id) -> FakeSocket."""

    def _connect(user_id, fail: bool = False) -> FakeSocket:
        socket = FakeSocket(fail=fail)
        hub.registry.register(Connection(
            user_id=str(user_id),
            socket_id=uuid.uuid4().hex,
            send=socket.send,
            close=socket.close,
        ))
        return socket

    return _connect


# ═══════════════════════════════════════════════════════════
# HTTP clients
# ═══════════════════════════════════════════════════════════


def _override_db(db_session):
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db


@pytest_asyncio.fixture()
async def client(db_session, user, hub):
    """HTTP client authenticated as `user` with a real access token."""
    _override_db(db_session)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        ac.headers["Authorization"] = f"Bearer {create_access_token(str(user.id))}"
        yield ac
    app.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def other_client(db_session, other_user, hub):
    """HTTP client authenticated as `other_user`."""
    _override_db(db_session)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        ac.headers["Authorization"] = f"Bearer {create_access_token(str(other_user.id))}"
        yield ac
    app.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def unauthenticated_client(db_session, hub):
    """HTTP client with no token — for auth flows and 401 checks."""
    _override_db(db_session)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
