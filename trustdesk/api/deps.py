"""Shared FastAPI dependencies.

Provides the database session and the compliance façade used by every
route module.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from trustdesk.core.audit import AuditTrail
from trustdesk.core.compliance import ComplianceFacade
from trustdesk.core.config import Settings, get_settings


async def get_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Get database session from app state via FastAPI dependency injection.

    Yields a session from the async session factory stored in app.state.
    The session is scoped to the request lifecycle.
    """
    session_factory = request.app.state.db_session_factory
    async with session_factory() as session:
        yield session


def get_audit_trail(request: Request) -> AuditTrail:
    """Audit writer using its own sessions from the app's session factory."""
    return AuditTrail(request.app.state.db_session_factory)


def get_facade(
    session: AsyncSession = Depends(get_session),
    audit: AuditTrail = Depends(get_audit_trail),
    settings: Settings = Depends(get_settings),
) -> ComplianceFacade:
    return ComplianceFacade(session, audit, settings)
