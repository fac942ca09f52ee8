"""Error taxonomy for the access-control and compliance layer.

Every failure a caller can observe maps to one of these classes. Each
carries a fixed public ``detail`` so that authentication and authorization
failures never reveal which check rejected the request; the internal
reason, when given, is kept on ``reason`` for logging only.
"""

from __future__ import annotations


class ComplianceError(Exception):
    """Base class for failures surfaced to API callers."""

    status_code: int = 500
    detail: str = "Request failed"
    retryable: bool = False

    def __init__(self, reason: str | None = None) -> None:
        self.reason = reason
        super().__init__(reason or self.detail)


class Unauthenticated(ComplianceError):
    """No session, or the session could not be verified."""

    status_code = 401
    detail = "Authentication required"


class Forbidden(ComplianceError):
    """Authenticated, but the principal's role lacks the permission."""

    status_code = 403
    detail = "Insufficient permissions"


class NotFound(ComplianceError):
    """A referenced contact or record does not exist."""

    status_code = 404
    detail = "Resource not found"

    def __init__(self, resource: str, resource_id: object) -> None:
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} {resource_id} not found")
        self.detail = f"{resource.capitalize()} not found"


class InvalidTransition(ComplianceError):
    """A DSR state-machine guard was violated."""

    status_code = 409

    def __init__(self, from_status: str, to_status: str, reason: str | None = None) -> None:
        self.from_status = from_status
        self.to_status = to_status
        message = f"Invalid transition: {from_status} -> {to_status}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)
        self.detail = message


class ValidationFailed(ComplianceError):
    """Malformed payload, e.g. a consent withdrawal request without a purpose."""

    status_code = 422

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.detail = reason


class StorageUnavailable(ComplianceError):
    """Transient storage failure; safe for the caller to retry."""

    status_code = 503
    detail = "Storage temporarily unavailable"
    retryable = True
