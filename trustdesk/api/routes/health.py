"""Health check endpoint.

Returns overall service health and the database status.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from trustdesk.api.version import API_VERSION

router = APIRouter(tags=["health"])
logger = logging.getLogger(__name__)


@router.get("/api/v1/health")
async def health_check(request: Request) -> dict[str, Any]:
    """Check the database connection.

    Returns:
        {"status": "healthy" | "unhealthy", "services": {"database": "up" | "down"},
         "version": ..., "timestamp": ...}
    """
    services: dict[str, str] = {}

    try:
        db_session_factory = request.app.state.db_session_factory
        async with db_session_factory() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()
            services["database"] = "up"
    except (SQLAlchemyError, ConnectionError, OSError):
        logger.warning("Database health check failed")
        services["database"] = "down"

    return {
        "status": "healthy" if services["database"] == "up" else "unhealthy",
        "services": services,
        "version": API_VERSION,
        "timestamp": datetime.now(UTC).isoformat(),
    }
