"""
Test fixtures for the bike-share ledger test suite.

This module provides shared fixtures used across all test files:

  - db_engine / db_session: Fresh in-memory SQLite database for each test
  - client: Async HTTP test client (unauthenticated)
  - authenticated_client: Its own client with a pre-registered RIDER and JWT
  - second_authenticated_client: A second RIDER for cross-user tests
  - admin_client: Its own client with a pre-registered ADMIN and JWT
  - rider / admin_user: Users created directly through the services, for
    service-level tests
  - pricing: An active pricing configuration with one plan (hourly 200)

Key design decisions:
  - In-memory SQLite (sqlite+aiosqlite://) is used for speed and isolation.
    Each test gets a completely fresh database.
  - get_db is overridden with a session factory bound to the test engine
    that follows the production commit policy, so failed-payment records
    and audit rows persist exactly as they do in production.
  - Each authenticated fixture owns a separate AsyncClient, so a test can
    act as a rider and as an admin without the Authorization headers of
    one overwriting the other.
  - Admins are created by signing up normally and then updating user_type
    in the DB, the way an operator provisions them.
"""

import os

os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")

import uuid

import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import update
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from bikeshare.database import Base, get_db
from bikeshare.exceptions import BikeShareError, ConcurrencyConflictError
from bikeshare.main import app
from bikeshare.models.user import User, UserType
from bikeshare.services import auth_service, bike_service, pricing_service


# In-memory SQLite for fast, isolated tests
TEST_DATABASE_URL = "sqlite+aiosqlite://"


def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_engine():
    """Create a fresh async engine with all tables for each test."""
    engine = create_async_engine(TEST_DATABASE_URL)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine):
    """Provide an async session bound to the test engine."""
    async with session_factory(db_engine)() as session:
        yield session


@pytest_asyncio.fixture
async def api(db_engine):
    """
    Install the test database into the app and hand out HTTP clients.

    Yields a factory: ``await api()`` returns a new unauthenticated client.
    """
    async_session = session_factory(db_engine)

    async def override_get_db():
        async with async_session() as session:
            try:
                yield session
                await session.commit()
            except ConcurrencyConflictError:
                await session.rollback()
                raise
            except BikeShareError:
                await session.commit()
                raise
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    clients = []

    async def make_client() -> AsyncClient:
        ac = AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
        clients.append(ac)
        return ac

    yield make_client

    for ac in clients:
        await ac.aclose()
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(api):
    """Async HTTP test client with the test database injected."""
    return await api()


async def _signup(ac: AsyncClient, email: str, password: str, first_name: str) -> dict:
    response = await ac.post(
        "/auth/signup",
        json={
            "email": email,
            "password": password,
            "first_name": first_name,
            "last_name": "User",
        },
    )
    assert response.status_code == 201, f"Signup failed: {response.text}"
    return response.json()


@pytest_asyncio.fixture
async def authenticated_client(api):
    """Client signed in as a freshly registered rider."""
    ac = await api()
    body = await _signup(ac, "testuser@example.com", "SecurePass123!", "Test")
    ac.headers["Authorization"] = f"Bearer {body['token']}"
    ac.user_id = uuid.UUID(body["user_id"])
    return ac


@pytest_asyncio.fixture
async def second_authenticated_client(api):
    """
    A second authenticated rider for cross-user authorization tests.

    Use this alongside authenticated_client to verify that rider A
    cannot see or move rider B's money or rides.
    """
    ac = await api()
    body = await _signup(ac, "seconduser@example.com", "SecurePass456!", "Second")
    ac.headers["Authorization"] = f"Bearer {body['token']}"
    ac.user_id = uuid.UUID(body["user_id"])
    return ac


@pytest_asyncio.fixture
async def admin_client(api, db_engine):
    """
    Client signed in as an ADMIN.

    Signs up normally, then promotes the user directly in the database,
    simulating an operator-provisioned admin account.
    """
    ac = await api()
    body = await _signup(ac, "admin@example.com", "AdminPass123!", "Admin")
    user_id = uuid.UUID(body["user_id"])

    async with session_factory(db_engine)() as session:
        await session.execute(
            update(User).where(User.id == user_id).values(user_type=UserType.ADMIN)
        )
        await session.commit()

    login_response = await ac.post(
        "/auth/login",
        json={"email": "admin@example.com", "password": "AdminPass123!"},
    )
    ac.headers["Authorization"] = f"Bearer {login_response.json()['token']}"
    ac.user_id = user_id
    return ac


# ---------------------------------------------------------------------------
# Service-level fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def rider(db_session) -> User:
    """A rider with an empty wallet, committed."""
    user, _ = await auth_service.signup(
        db_session,
        email="rider@example.com",
        password="RiderPass123!",
        first_name="Rider",
        last_name="One",
    )
    await db_session.commit()
    return user


@pytest_asyncio.fixture
async def admin_user(db_session) -> User:
    user, _ = await auth_service.signup(
        db_session,
        email="staff@example.com",
        password="StaffPass123!",
        first_name="Staff",
        last_name="Admin",
    )
    user.user_type = UserType.ADMIN
    await db_session.commit()
    return user


@pytest_asyncio.fixture
async def pricing(db_session, admin_user):
    """
    Active configuration with a single "Standard" plan:
    hourly 200, daily 2 000, weekly 10 000, monthly 30 000, minimum 1 hour.
    """
    config = await pricing_service.create_config(
        db_session, admin_user.id, name="default", unlock_fee=100, base_hourly_rate=200
    )
    plan = await pricing_service.create_plan(
        db_session,
        admin_user.id,
        name="Standard",
        hourly_rate=200,
        daily_rate=2000,
        weekly_rate=10000,
        monthly_rate=30000,
        minimum_hours=1,
    )
    await db_session.commit()
    return config, plan


@pytest_asyncio.fixture
async def bike(db_session, pricing):
    _, plan = pricing
    bike = await bike_service.create_bike(db_session, code="BK-001", model="City", pricing_plan_id=plan.id)
    await db_session.commit()
    return bike
