"""
Test infrastructure for the Blog API.

Strategy
--------
- SQLite in-memory via aiosqlite eliminates the need for a running Postgres
  instance in CI, keeping the suite fast and self-contained.
- ``build_engine`` gives an in-memory SQLite URL a StaticPool, so every
  session shares the one connection that holds the database.
- A fresh engine (and therefore a fresh database) is built for every test
  and the app's get_db dependency is overridden to use it, so each test
  starts from an empty schema.
- bcrypt work factor is lowered so creating users stays cheap.
"""
import itertools

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from blog_api.auth import create_access_token, hash_password
from blog_api.config import settings
from blog_api.database import Base, build_engine, build_session_factory, get_db, transactional_session
from blog_api.main import app
from blog_api.models import User, UserRole, UserStatus

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
TEST_PASSWORD = "password123"

settings.BCRYPT_ROUNDS = 4


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user)}"}


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def engine_test():
    engine = build_engine(TEST_DATABASE_URL)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine_test):
    """
    Session factory bound to the test engine; also replaces the app's
    get_db dependency for the duration of the test.
    """
    factory = build_session_factory(engine_test)

    async def override_get_db():
        async with transactional_session(factory) as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    yield factory
    app.dependency_overrides.pop(get_db, None)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncSession:
    """
    Yield a live AsyncSession for tests that call the service layer
    directly.  Do not mix it with ``async_client`` in one test: both would
    share the single StaticPool connection.
    """
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def async_client(session_factory) -> AsyncClient:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest_asyncio.fixture
async def user_factory(session_factory):
    """
    Return ``create(role=..., status=...) -> (user, headers)`` which commits a
    user in its own short-lived session and returns a bearer header for it.
    """
    counter = itertools.count(1)

    async def create(
        role: UserRole = UserRole.USER,
        status: UserStatus = UserStatus.ACTIVE,
    ) -> tuple[User, dict[str, str]]:
        n = next(counter)
        async with session_factory() as session:
            user = User(
                name=f"{role.value.title()} {n}",
                email=f"{role.value.lower()}{n}@example.com",
                password_hash=hash_password(TEST_PASSWORD),
                role=role,
                status=status,
            )
            session.add(user)
            await session.commit()
        return user, auth_headers(user)

    return create
