"""Audit models: AuditAction enum, AuditEntry."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Enum, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from trustdesk.core.database import Base, utcnow


class AuditAction(enum.StrEnum):
    """Audit action types for regulated state changes."""

    CONTACT_CREATED = "contact_created"
    CONTACT_UPDATED = "contact_updated"
    CONTACT_DELETED = "contact_deleted"
    CONTACT_ANONYMIZED = "contact_anonymized"
    CONSENT_GRANTED = "consent_granted"
    CONSENT_WITHDRAWN = "consent_withdrawn"
    DSR_CREATED = "dsr_created"
    DSR_ASSIGNED = "dsr_assigned"
    DSR_COMPLETED = "dsr_completed"
    DSR_REJECTED = "dsr_rejected"


class AuditEntry(Base):
    """Write-once audit record for a change to a contact, consent or DSR.

    Never read back by the compliance layer; consumed by external reporting.
    """

    __tablename__ = "audit_entries"
    __table_args__ = (
        Index("ix_audit_entries_resource", "resource_type", "resource_id"),
        Index("ix_audit_entries_actor_id", "actor_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    actor_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    action: Mapped[AuditAction] = mapped_column(
        Enum(AuditAction, values_callable=lambda e: [x.value for x in e]), nullable=False
    )
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False)
    resource_id: Mapped[str] = mapped_column(String(64), nullable=False)
    outcome: Mapped[str] = mapped_column(String(20), nullable=False, default="success")
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<AuditEntry(id={self.id}, action={self.action}, resource={self.resource_type}/{self.resource_id})>"
