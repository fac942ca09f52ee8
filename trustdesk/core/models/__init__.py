"""SQLAlchemy models for the TrustDesk platform.

This package re-exports all models and enums from domain-specific modules
so that code can use ``from trustdesk.core.models import X``.
"""

from trustdesk.core.models.audit import AuditAction, AuditEntry
from trustdesk.core.models.auth import User, UserRole
from trustdesk.core.models.consent import USER_AGENT_MAX_LENGTH, ConsentPurpose, ConsentRecord, ConsentState
from trustdesk.core.models.dsr import (
    DSRRequest,
    DSRStatus,
    DSRType,
    ErasureTask,
    ErasureTaskStatus,
)
from trustdesk.core.models.records import BusinessRecord

__all__ = [
    "USER_AGENT_MAX_LENGTH",
    "AuditAction",
    "AuditEntry",
    "BusinessRecord",
    "ConsentPurpose",
    "ConsentRecord",
    "ConsentState",
    "DSRRequest",
    "DSRStatus",
    "DSRType",
    "ErasureTask",
    "ErasureTaskStatus",
    "User",
    "UserRole",
]
