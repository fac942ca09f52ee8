"""Shared test fixtures for the TrustDesk test suite.

Provides test settings, a file-backed SQLite database (via aiosqlite) with
the full schema, seeded principals and contacts, mock sessions, and a
FastAPI test client wired to the test database.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

import trustdesk.core.models  # noqa: F401 - registers all models with Base.metadata
from trustdesk.core.config import Settings, get_settings
from trustdesk.core.database import Base
from trustdesk.core.models import BusinessRecord, User, UserRole
from trustdesk.core.principals import Principal

TEST_JWT_SECRET = "test-secret-key-for-tests"


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings that don't connect to real services."""
    return Settings(
        debug=False,
        database_url="sqlite+aiosqlite://",
        jwt_secret_key=TEST_JWT_SECRET,
        jwt_secret_keys="",
        session_cookie_secure=False,
        cors_origins=["http://localhost:5173"],
        dsr_dual_control=True,
    )


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture
async def db_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite so separate sessions see each other's commits."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'trustdesk.db'}",
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


MakeUser = Callable[..., Awaitable[Principal]]


@pytest.fixture
def make_user(session_factory: async_sessionmaker[AsyncSession]) -> MakeUser:
    """Factory that persists a User and returns its Principal."""

    async def _make(
        role: UserRole = UserRole.ADMIN,
        *,
        email: str | None = None,
        password_hash: str | None = None,
        is_active: bool = True,
    ) -> Principal:
        user = User(
            id=uuid.uuid4(),
            email=email or f"{role.value.lower()}-{uuid.uuid4().hex[:8]}@trustdesk.test",
            first_name=role.value.title(),
            last_name="Tester",
            hashed_password=password_hash,
            role=role,
            department="Testing",
            is_active=is_active,
        )
        async with session_factory() as session:
            session.add(user)
            await session.commit()
        return Principal.from_user(user)

    return _make


@pytest.fixture
async def principals(make_user: MakeUser) -> dict[UserRole, Principal]:
    """One persisted principal per role."""
    return {role: await make_user(role) for role in UserRole}


@pytest.fixture
def make_contact(session_factory: async_sessionmaker[AsyncSession]) -> Callable[..., Awaitable[uuid.UUID]]:
    """Factory that persists a contact record and returns its id."""

    async def _make(email: str = "jane.doe@example.com", **fields: Any) -> uuid.UUID:
        payload = {"first_name": "Jane", "last_name": "Doe", "email": email, "status": "customer", **fields}
        record = BusinessRecord(id=uuid.uuid4(), resource="contact", payload=payload)
        async with session_factory() as session:
            session.add(record)
            await session.commit()
        return record.id

    return _make


@pytest.fixture
async def contact_id(make_contact: Callable[..., Awaitable[uuid.UUID]]) -> uuid.UUID:
    return await make_contact()


# ---------------------------------------------------------------------------
# Mocks
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_db_session() -> AsyncMock:
    """Create a mock async database session.

    Note: session.add() is synchronous in SQLAlchemy, so we use
    MagicMock for it. All async methods (execute, commit, flush,
    refresh, rollback, close) use AsyncMock.
    """
    session = AsyncMock()
    mock_result = MagicMock()
    mock_result.scalar_one_or_none.return_value = None
    mock_result.scalars.return_value.all.return_value = []
    session.execute = AsyncMock(return_value=mock_result)
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.close = AsyncMock()
    session.flush = AsyncMock()
    session.delete = AsyncMock()
    session.add = MagicMock()
    return session


class MockSessionFactory:
    """A callable that returns an async context manager yielding a mock session.

    This mimics the behavior of `async_sessionmaker()` which produces
    sessions via `async with session_factory() as session:`.
    """

    def __init__(self, session: AsyncMock) -> None:
        self._session = session

    def __call__(self) -> MockSessionFactory:
        return self

    async def __aenter__(self) -> AsyncMock:
        return self._session

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        pass


@pytest.fixture
def mock_session_factory(mock_db_session: AsyncMock) -> MockSessionFactory:
    return MockSessionFactory(mock_db_session)


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------


@pytest.fixture
async def test_app(
    session_factory: async_sessionmaker[AsyncSession],
    test_settings: Settings,
) -> AsyncGenerator[Any, None]:
    """The real application with app.state pointing at the test database.

    The lifespan is not run by ASGITransport, so state is set manually.
    Tests that don't want real sessions override get_current_principal.
    """
    from trustdesk.api.main import create_app
    from trustdesk.api.routes.auth import limiter

    app = create_app()
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.state.db_session_factory = session_factory
    app.state.db_engine = MagicMock()
    limiter.reset()

    yield app

    app.dependency_overrides.clear()


@pytest.fixture
async def client(test_app: Any) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP test client."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def login_as(test_app: Any) -> Callable[[Principal], None]:
    """Make every request run as the given principal."""
    from trustdesk.core.auth import get_current_principal

    def _login(principal: Principal) -> None:
        test_app.dependency_overrides[get_current_principal] = lambda: principal

    return _login
