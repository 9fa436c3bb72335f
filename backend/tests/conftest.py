"""Pytest configuration and fixtures for Atomity tests.

Provides reusable test fixtures for database, authentication, Redis, etc.
Each test gets its own SQLite file database and an in-memory fake Redis, so
no external services are needed.
"""

import os

# Settings are read at import time; point them at test backends first
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ["SMTP_HOST"] = ""
os.environ["DEBUG"] = "false"

from typing import AsyncGenerator, Callable  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from fakeredis import aioredis  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.auth.jwt import create_access_token  # noqa: E402
from app.database import Base, get_db  # noqa: E402
from app.main import app  # noqa: E402
from app.models.user import User  # noqa: E402
from app.utils import cache  # noqa: E402


# ── Test Database Setup ──────────────────────────────────────────

@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """Create a throwaway SQLite database with all tables."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'atomity_test.db'}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(test_engine) -> async_sessionmaker:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Database session for service-level tests."""
    async with session_factory() as session:
        yield session


# ── Redis Fixtures ───────────────────────────────────────────────

@pytest_asyncio.fixture
async def redis_client(monkeypatch):
    """Fake Redis installed as the shared client returned by get_redis()."""
    client = aioredis.FakeRedis(decode_responses=True)
    monkeypatch.setattr(cache, "_redis_client", client)

    yield client

    await client.flushall()
    await client.aclose()


# ── App / HTTP Fixtures ──────────────────────────────────────────

@pytest_asyncio.fixture
async def api_app(session_factory, redis_client):
    """The FastAPI app wired to the test database (fresh session per request)."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    yield app
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(api_app) -> AsyncGenerator[AsyncClient, None]:
    """Create test client with overridden database dependency."""
    async with AsyncClient(transport=ASGITransport(app=api_app), base_url="http://test") as client:
        yield client


# ── Test Data Fixtures ───────────────────────────────────────────

@pytest_asyncio.fixture
async def make_user(session_factory) -> Callable:
    """Factory: create (and commit) a user with the given email."""

    async def _make_user(email: str, is_active: bool = True) -> User:
        async with session_factory() as session:
            user = User(email=email, is_active=is_active, email_verified=True)
            session.add(user)
            await session.commit()
            return user

    return _make_user


@pytest_asyncio.fixture
async def test_user(make_user) -> User:
    return await make_user("researcher@example.com")


@pytest_asyncio.fixture
async def other_user(make_user) -> User:
    return await make_user("rival@example.com")


def bearer(user: User) -> dict:
    """Authorization headers for a user."""
    token = create_access_token(user_id=user.id, email=user.email)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers(test_user: User) -> dict:
    return bearer(test_user)


@pytest.fixture
def other_headers(other_user: User) -> dict:
    return bearer(other_user)


# ── Test Markers ─────────────────────────────────────────────────

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "auth: Session gate and auth endpoint tests")
    config.addinivalue_line("markers", "reservations: Reservation manager tests")
    config.addinivalue_line("markers", "research: Research wizard tests")
    config.addinivalue_line("markers", "slow: Slow tests")
