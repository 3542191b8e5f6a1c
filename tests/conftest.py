"""Shared pytest fixtures and configuration.

This module provides common fixtures used across all test types.
"""

import os
import tempfile
from collections.abc import AsyncGenerator, Callable

import pytest
import httpx
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from werkzeug.security import generate_password_hash

os.environ.setdefault("JWT_SECRET", "test-jwt-secret")

# Import models to register them with Base.metadata
import salesdesk.models  # noqa: E402,F401
from salesdesk.api.main import app  # noqa: E402
from salesdesk.api.middleware.auth import TOKEN_COOKIE, create_access_token  # noqa: E402
from salesdesk.api.middleware.rate_limiter import auth_rate_limiter  # noqa: E402
from salesdesk.api.routes.attendance import get_http_client  # noqa: E402
from salesdesk.models.base import Base  # noqa: E402
from salesdesk.models.user import UserDB  # noqa: E402
from salesdesk.services.analytics_cache import analytics_cache  # noqa: E402
from salesdesk.services.database import get_db_session  # noqa: E402

TEST_PASSWORD = "s3cret-pass"


def reachable_timeline(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, request=request)


@pytest.fixture(scope="session")
def test_database_url() -> str:
    """Provide test database URL.

    Uses file-based SQLite for testing to avoid in-memory connection issues,
    or PostgreSQL if configured.
    """
    db_url = os.getenv("TEST_DATABASE_URL")

    if db_url:
        return db_url
    return f"sqlite+aiosqlite:///{tempfile.gettempdir()}/test_salesdesk.db"


@pytest.fixture(scope="function")
async def db_engine(test_database_url: str) -> AsyncGenerator[AsyncEngine, None]:
    """Provide an engine with a fresh schema.

    Creates tables before each test and drops them after.
    """
    engine = create_async_engine(test_database_url, echo=False)

    if engine.dialect.name == "sqlite":
        # pysqlite defers BEGIN; emit it ourselves so SAVEPOINTs nest properly
        @event.listens_for(engine.sync_engine, "connect")
        def _disable_pysqlite_begin(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine.sync_engine, "begin")
        def _emit_begin(conn):
            conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
def session_factory(db_engine: AsyncEngine) -> sessionmaker:
    return sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture(scope="function")
async def async_db_session(session_factory: sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    """Provide an async database session for seeding and assertions.

    Commit after seeding so request sessions see the rows.
    """
    async with session_factory() as session:
        yield session


@pytest.fixture(autouse=True)
def reset_shared_state():
    """Clear process-wide limiter and cache state between tests."""
    auth_rate_limiter.reset()
    analytics_cache.clear()
    yield
    auth_rate_limiter.reset()
    analytics_cache.clear()


@pytest.fixture(scope="function")
async def api_client(session_factory: sessionmaker) -> AsyncGenerator[AsyncClient, None]:
    """Provide an HTTP client bound to the app and the test database."""

    async def override_get_db_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def override_get_http_client() -> AsyncGenerator[httpx.AsyncClient, None]:
        async with httpx.AsyncClient(transport=httpx.MockTransport(reachable_timeline)) as client:
            yield client

    app.dependency_overrides[get_db_session] = override_get_db_session
    app.dependency_overrides[get_http_client] = override_get_http_client
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.pop(get_db_session, None)
    app.dependency_overrides.pop(get_http_client, None)


async def _create_user(session: AsyncSession, **fields) -> UserDB:
    fields.setdefault("password", generate_password_hash(TEST_PASSWORD))
    fields.setdefault("verified", True)
    user = UserDB(**fields)
    session.add(user)
    await session.commit()
    return user


@pytest.fixture
async def admin_user(async_db_session: AsyncSession) -> UserDB:
    return await _create_user(
        async_db_session,
        name="Priya Admin",
        email="admin@example.com",
        role="admin",
        employee_code="ADM001",
    )


@pytest.fixture
async def sales_user(async_db_session: AsyncSession) -> UserDB:
    return await _create_user(
        async_db_session,
        name="Rahul Sales",
        email="rahul@example.com",
        role="user",
        employee_code="EMP042",
        location="Pune",
    )


@pytest.fixture
async def other_user(async_db_session: AsyncSession) -> UserDB:
    return await _create_user(
        async_db_session,
        name="Meera Field",
        email="meera@example.com",
        role="user",
        employee_code="EMP043",
    )


@pytest.fixture
def login(api_client: AsyncClient) -> Callable[[UserDB], AsyncClient]:
    """Return a helper that authenticates the client as a given user."""

    def _login(user: UserDB) -> AsyncClient:
        api_client.cookies.set(TOKEN_COOKIE, create_access_token(user.email, user.role))
        return api_client

    return _login


@pytest.fixture(scope="session")
def anyio_backend():
    """Configure anyio backend for async tests."""
    return "asyncio"


pytest_plugins = ("pytest_asyncio",)
