"""TrustDesk FastAPI application entry point.

Configures the FastAPI app with:
- CORS, request-ID and security-header middleware
- slowapi rate limiting (login)
- Lifespan events for the database connection pool
- Route registration (auth, records, consent, DSR, health)
- Error mapping for the compliance error taxonomy
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from trustdesk.api.middleware import RequestIDMiddleware, SecurityHeadersMiddleware
from trustdesk.api.routes import auth as auth_routes
from trustdesk.api.routes import consent, contacts, dsr, health, records
from trustdesk.api.routes.auth import limiter
from trustdesk.api.version import API_VERSION
from trustdesk.core.config import get_settings
from trustdesk.core.database import create_engine
from trustdesk.core.errors import ComplianceError, Unauthenticated

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Open the database pool on startup and dispose it on shutdown."""
    settings = get_settings()
    logging.basicConfig(level=settings.log_level.upper())

    engine, session_factory = create_engine(settings)
    app.state.db_engine = engine
    app.state.db_session_factory = session_factory
    logger.info("Database connection pool initialized")

    yield

    await engine.dispose()
    logger.info("All connections closed")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Relationship management with role-based access control and privacy compliance",
        version=API_VERSION,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    # -- Rate Limiter (slowapi) ---
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # -- Middleware ---
    # Applied in reverse order (last added = first executed).
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID", "Accept"],
    )
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(SlowAPIMiddleware)

    # -- Routes ---
    app.include_router(health.router)
    app.include_router(auth_routes.router)
    app.include_router(contacts.router)
    for router in records.routers:
        app.include_router(router)
    app.include_router(consent.router)
    app.include_router(dsr.router)

    # -- Error Handlers ---
    @app.exception_handler(ComplianceError)
    async def compliance_error_handler(request: Request, exc: ComplianceError) -> JSONResponse:
        request_id = getattr(request.state, "request_id", "unknown")
        headers: dict[str, str] = {}
        if isinstance(exc, Unauthenticated):
            headers["WWW-Authenticate"] = "Bearer"
        if exc.retryable:
            headers["Retry-After"] = "1"
        logger.info("%s [%s]: %s", type(exc).__name__, request_id, exc.reason or exc.detail)
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail, "request_id": request_id},
            headers=headers,
        )

    @app.exception_handler(Exception)  # Intentionally broad: top-level global error handler
    async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
        request_id = getattr(request.state, "request_id", "unknown")
        logger.exception("Unhandled error [%s]: %s", request_id, exc)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error", "request_id": request_id},
        )

    return app


# Application instance used by uvicorn
app = create_app()
