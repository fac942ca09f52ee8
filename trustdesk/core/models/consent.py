"""Consent ledger models.

One row per consent event. Rows are never updated except for the PII scrub
performed under a completed erasure request; a withdrawal is a new row with
``granted=False``. The ``sequence`` primary key is the ordering key for the
current state and for history.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Enum, Index, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from trustdesk.core.database import Base, utcnow

USER_AGENT_MAX_LENGTH = 512


class ConsentPurpose(enum.StrEnum):
    """Processing purposes a contact can consent to."""

    MARKETING = "marketing"
    SALES = "sales"
    SUPPORT = "support"
    ANALYTICS = "analytics"


class ConsentState(enum.StrEnum):
    """Current consent state for a (contact, purpose) pair."""

    GRANTED = "granted"
    WITHDRAWN = "withdrawn"
    UNKNOWN = "unknown"

    @property
    def allows_processing(self) -> bool:
        # UNKNOWN is never an implicit grant.
        return self is ConsentState.GRANTED


class ConsentRecord(Base):
    """Immutable consent grant or withdrawal event for a contact."""

    __tablename__ = "consent_records"
    __table_args__ = (Index("ix_consent_records_contact_purpose", "contact_id", "purpose"),)

    sequence: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[uuid.UUID] = mapped_column(Uuid, unique=True, nullable=False, default=uuid.uuid4)
    contact_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    purpose: Mapped[ConsentPurpose] = mapped_column(
        Enum(ConsentPurpose, values_callable=lambda e: [x.value for x in e]), nullable=False
    )
    granted: Mapped[bool] = mapped_column(Boolean, nullable=False)
    granted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    withdrawn_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    source: Mapped[str] = mapped_column(String(100), nullable=False)
    recorded_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(USER_AGENT_MAX_LENGTH), nullable=True)
    dsr_request_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<ConsentRecord(contact_id={self.contact_id}, purpose='{self.purpose}', granted={self.granted})>"
