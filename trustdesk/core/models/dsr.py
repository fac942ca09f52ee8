"""Data subject request models: DSRRequest and the erasure task queue."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Enum, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from trustdesk.core.database import Base, utcnow


class DSRType(enum.StrEnum):
    """Statutory right being exercised."""

    ACCESS = "access"
    RECTIFY = "rectify"
    DELETE = "delete"
    RESTRICT = "restrict"
    WITHDRAW_CONSENT = "withdraw_consent"


class DSRStatus(enum.StrEnum):
    """Workflow state of a data subject request."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    REJECTED = "rejected"


class ErasureTaskStatus(enum.StrEnum):
    PENDING = "pending"
    DONE = "done"


class DSRRequest(Base):
    """A data subject request, mutated only through the DSR workflow.

    ``version`` is bumped on every transition and is part of the
    compare-and-swap predicate, so two racing transitions cannot both apply.
    """

    __tablename__ = "dsr_requests"
    __table_args__ = (
        Index("ix_dsr_requests_contact_id", "contact_id"),
        Index("ix_dsr_requests_status", "status"),
    )

    sequence: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[uuid.UUID] = mapped_column(Uuid, unique=True, nullable=False, default=uuid.uuid4)
    # Derived from sequence right after the insert flush; immutable afterwards.
    request_number: Mapped[str | None] = mapped_column(String(32), unique=True, nullable=True)
    contact_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    type: Mapped[DSRType] = mapped_column(
        Enum(DSRType, values_callable=lambda e: [x.value for x in e]), nullable=False
    )
    status: Mapped[DSRStatus] = mapped_column(
        Enum(DSRStatus, values_callable=lambda e: [x.value for x in e]),
        nullable=False,
        default=DSRStatus.PENDING,
    )
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    assigned_to: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    assigned_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    verified_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<DSRRequest(number={self.request_number}, type={self.type}, status={self.status})>"


class ErasureTask(Base):
    """Queued contact anonymisation for a completed delete request.

    The unique ``dsr_request_id`` guarantees a request enqueues at most one task.
    """

    __tablename__ = "erasure_tasks"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    dsr_request_id: Mapped[uuid.UUID] = mapped_column(Uuid, unique=True, nullable=False)
    contact_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    status: Mapped[ErasureTaskStatus] = mapped_column(
        Enum(ErasureTaskStatus, values_callable=lambda e: [x.value for x in e]),
        nullable=False,
        default=ErasureTaskStatus.PENDING,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<ErasureTask(dsr_request_id={self.dsr_request_id}, status={self.status})>"
