"""FastAPI middleware for the TrustDesk API."""

from trustdesk.api.middleware.security import (
    RequestIDMiddleware,
    SecurityHeadersMiddleware,
)

__all__ = [
    "RequestIDMiddleware",
    "SecurityHeadersMiddleware",
]
