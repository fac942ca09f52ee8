"""SQLAlchemy 2.x async engine and session factory.

Provides the async engine, session maker, and the declarative base shared
by every ORM model.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy.exc import OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from trustdesk.core.config import Settings

# Storage failures a caller may retry; surfaced as StorageUnavailable.
TRANSIENT_STORAGE_ERRORS = (OperationalError, PoolTimeoutError, TimeoutError)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models."""

    pass


def utcnow() -> datetime:
    """Timezone-aware current time used for column defaults."""
    return datetime.now(UTC)


def create_engine(
    settings: Settings,
) -> tuple[
    AsyncEngine,
    async_sessionmaker[AsyncSession],
]:
    """Create async engine and session factory from settings.

    Returns:
        Tuple of (engine, async_session_factory).
    """
    url = settings.database_url or ""
    engine_kwargs: dict[str, Any] = {"echo": settings.debug, "pool_pre_ping": True}
    if url.startswith("postgresql"):
        engine_kwargs.update(
            pool_size=settings.database_pool_size,
            max_overflow=10,
            pool_recycle=300,
        )

    engine = create_async_engine(url, **engine_kwargs)

    session_factory = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    return engine, session_factory
