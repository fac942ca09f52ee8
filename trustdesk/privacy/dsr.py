"""Data subject request (DSR) workflow.

State machine:
  PENDING → IN_PROGRESS → COMPLETED
                        → REJECTED

``plan_transition`` is a pure function holding every guard. ``DsrWorkflow``
persists a plan with a compare-and-swap update on ``(id, version, status)``
so that of two racing transitions exactly one applies, and only that one
runs the completion side effects.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from trustdesk.core.config import Settings, get_settings
from trustdesk.core.errors import InvalidTransition, NotFound, ValidationFailed
from trustdesk.core.models import (
    ConsentPurpose,
    ConsentRecord,
    DSRRequest,
    DSRStatus,
    DSRType,
    ErasureTask,
    UserRole,
)
from trustdesk.core.principals import Principal
from trustdesk.privacy.consent import ConsentLedger

logger = logging.getLogger(__name__)

# Valid state transitions: from_status → set of allowed to_statuses
ALLOWED_TRANSITIONS: dict[DSRStatus, set[DSRStatus]] = {
    DSRStatus.PENDING: {DSRStatus.IN_PROGRESS},
    DSRStatus.IN_PROGRESS: {DSRStatus.COMPLETED, DSRStatus.REJECTED},
    DSRStatus.COMPLETED: set(),  # Terminal state
    DSRStatus.REJECTED: set(),  # Terminal state
}

DSR_HANDLER_ROLES = frozenset({UserRole.ADMIN, UserRole.QA, UserRole.MANAGER})

# Types whose completion needs a verifier other than whoever assigned or
# took the request when dual control is enabled.
DUAL_CONTROL_TYPES = frozenset({DSRType.DELETE, DSRType.RESTRICT})

CONSENT_SOURCE = "dsr"


@dataclass(frozen=True)
class DsrSnapshot:
    """The fields of a request the transition guards look at."""

    status: DSRStatus
    type: DSRType
    assigned_to: uuid.UUID | None = None
    assigned_by: uuid.UUID | None = None

    @classmethod
    def of(cls, request: DSRRequest) -> DsrSnapshot:
        return cls(
            status=request.status,
            type=request.type,
            assigned_to=request.assigned_to,
            assigned_by=request.assigned_by,
        )


@dataclass(frozen=True)
class TransitionPlan:
    """Column changes for one transition; ``applied=False`` means no-op."""

    target: DSRStatus
    applied: bool
    changes: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TransitionResult:
    request: DSRRequest
    applied: bool
    # Consent withdrawals appended by the completion side effects.
    withdrawals: tuple[ConsentRecord, ...] = ()


def purpose_from_notes(notes: str | None) -> ConsentPurpose | None:
    """Read the consent purpose a ``withdraw_consent`` request names in its notes."""
    if not notes:
        return None
    try:
        return ConsentPurpose(notes.strip().lower())
    except ValueError:
        return None


def plan_transition(
    snapshot: DsrSnapshot,
    target: DSRStatus,
    *,
    assignee: Principal | None = None,
    assigned_by: Principal | None = None,
    verifier: Principal | None = None,
    reason: str | None = None,
    dual_control: bool = True,
) -> TransitionPlan:
    """Validate a transition and compute the columns it sets.

    Args:
        snapshot: Current state of the request.
        target: Requested status.
        assignee: Handler taking the request (``in_progress``).
        assigned_by: Principal handing the request to ``assignee``; defaults
            to the assignee (self-assignment).
        verifier: Principal signing off completion (``completed``).
        reason: Rejection note (``rejected``).
        dual_control: For delete/restrict, the verifier must be neither the
            assignee nor whoever made the assignment.

    Returns:
        The plan; a request already in ``target`` yields ``applied=False``.

    Raises:
        InvalidTransition: If the edge does not exist or a guard fails.
    """
    current = snapshot.status
    if target == current:
        return TransitionPlan(target=target, applied=False)

    if target not in ALLOWED_TRANSITIONS.get(current, set()):
        raise InvalidTransition(current.value, target.value)

    now = datetime.now(UTC)

    if target == DSRStatus.IN_PROGRESS:
        if assignee is None or assignee.role not in DSR_HANDLER_ROLES:
            raise InvalidTransition(current.value, target.value, "assignee lacks a DSR handler role")
        assigner = assigned_by or assignee
        return TransitionPlan(
            target=target,
            applied=True,
            changes={"assigned_to": assignee.id, "assigned_by": assigner.id},
        )

    if target == DSRStatus.COMPLETED:
        if verifier is None:
            raise InvalidTransition(current.value, target.value, "verifier required")
        dual = dual_control and snapshot.type in DUAL_CONTROL_TYPES
        if dual and verifier.id in (snapshot.assigned_to, snapshot.assigned_by):
            raise InvalidTransition(current.value, target.value, "verifier must differ from assignee and assigner")
        return TransitionPlan(
            target=target,
            applied=True,
            changes={"verified_by": verifier.id, "completed_at": now},
        )

    # DSRStatus.REJECTED
    if not reason or not reason.strip():
        raise InvalidTransition(current.value, target.value, "rejection reason required")
    return TransitionPlan(target=target, applied=True, changes={"rejection_reason": reason.strip()})


def dsr_to_dict(request: DSRRequest) -> dict[str, Any]:
    return {
        "id": str(request.id),
        "request_number": request.request_number,
        "contact_id": str(request.contact_id),
        "type": request.type.value,
        "status": request.status.value,
        "description": request.description,
        "notes": request.notes,
        "assigned_to": str(request.assigned_to) if request.assigned_to else None,
        "assigned_by": str(request.assigned_by) if request.assigned_by else None,
        "verified_by": str(request.verified_by) if request.verified_by else None,
        "rejection_reason": request.rejection_reason,
        "created_by": str(request.created_by) if request.created_by else None,
        "requested_at": request.requested_at.isoformat() if request.requested_at else None,
        "completed_at": request.completed_at.isoformat() if request.completed_at else None,
        "version": request.version,
    }


class DsrWorkflow:
    """Creates, reads and transitions DSR requests. Caller manages commit."""

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings | None = None,
        ledger: ConsentLedger | None = None,
    ) -> None:
        self._session = session
        self._settings = settings or get_settings()
        self._ledger = ledger or ConsentLedger(session)

    async def create(
        self,
        *,
        contact_id: uuid.UUID,
        dsr_type: DSRType,
        actor_id: uuid.UUID | None,
        description: str | None = None,
        notes: str | None = None,
    ) -> DSRRequest:
        """Open a request in ``pending`` and issue its request number.

        Raises:
            ValidationFailed: A ``withdraw_consent`` request without a known purpose in ``notes``.
        """
        if dsr_type == DSRType.WITHDRAW_CONSENT and purpose_from_notes(notes) is None:
            allowed = ", ".join(p.value for p in ConsentPurpose)
            raise ValidationFailed(f"withdraw_consent requests must name a purpose in notes ({allowed})")

        request = DSRRequest(
            contact_id=contact_id,
            type=dsr_type,
            status=DSRStatus.PENDING,
            description=description,
            notes=notes,
            created_by=actor_id,
        )
        self._session.add(request)
        await self._session.flush()

        request.request_number = f"DSR-{request.sequence:06d}"
        await self._session.flush()

        logger.info(
            "DSR created: number=%s, type=%s, contact=%s",
            request.request_number,
            dsr_type.value,
            contact_id,
        )
        return request

    async def get(self, request_id: uuid.UUID) -> DSRRequest:
        result = await self._session.execute(select(DSRRequest).where(DSRRequest.id == request_id))
        request = result.scalar_one_or_none()
        if request is None:
            raise NotFound("dsr request", request_id)
        return request

    async def list(
        self,
        *,
        status: DSRStatus | None = None,
        contact_id: uuid.UUID | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[DSRRequest], int]:
        """Return a page of requests (newest first) and the unpaged total."""
        conditions = []
        if status is not None:
            conditions.append(DSRRequest.status == status)
        if contact_id is not None:
            conditions.append(DSRRequest.contact_id == contact_id)

        total = await self._session.execute(select(func.count()).select_from(DSRRequest).where(*conditions))
        result = await self._session.execute(
            select(DSRRequest)
            .where(*conditions)
            .order_by(DSRRequest.sequence.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all()), total.scalar_one()

    async def transition(
        self,
        request_id: uuid.UUID,
        target: DSRStatus,
        *,
        assignee: Principal | None = None,
        assigned_by: Principal | None = None,
        verifier: Principal | None = None,
        reason: str | None = None,
    ) -> TransitionResult:
        """Apply a transition atomically.

        Raises:
            NotFound: Unknown request id.
            InvalidTransition: Guard failure, or a concurrent caller moved the
                request to a different state first.
        """
        request = await self.get(request_id)
        plan = plan_transition(
            DsrSnapshot.of(request),
            target,
            assignee=assignee,
            assigned_by=assigned_by,
            verifier=verifier,
            reason=reason,
            dual_control=self._settings.dsr_dual_control,
        )
        if not plan.applied:
            logger.info("DSR %s already %s, nothing to do", request.request_number, target.value)
            return TransitionResult(request=request, applied=False)

        result = await self._session.execute(
            update(DSRRequest)
            .where(
                DSRRequest.id == request.id,
                DSRRequest.version == request.version,
                DSRRequest.status == request.status,
            )
            .values(
                status=target,
                version=DSRRequest.version + 1,
                updated_at=datetime.now(UTC),
                **plan.changes,
            )
            .execution_options(synchronize_session=False)
        )

        if result.rowcount != 1:
            current = await self._reload(request.id)
            if current.status == target:
                logger.info("DSR %s reached %s concurrently, treated as no-op", current.request_number, target.value)
                return TransitionResult(request=current, applied=False)
            logger.warning(
                "DSR %s transition lost race: wanted %s, now %s",
                current.request_number,
                target.value,
                current.status.value,
            )
            raise InvalidTransition(current.status.value, target.value, "concurrent update")

        request = await self._reload(request.id)
        logger.info("DSR %s transitioned to %s (version %d)", request.request_number, target.value, request.version)

        withdrawals: list[ConsentRecord] = []
        if target == DSRStatus.COMPLETED:
            withdrawals = await self._on_completed(request)
        return TransitionResult(request=request, applied=True, withdrawals=tuple(withdrawals))

    async def _reload(self, request_id: uuid.UUID) -> DSRRequest:
        result = await self._session.execute(
            select(DSRRequest).where(DSRRequest.id == request_id).execution_options(populate_existing=True)
        )
        return result.scalar_one()

    async def _on_completed(self, request: DSRRequest) -> list[ConsentRecord]:
        """Completion side effects. Runs only for the caller whose CAS applied.

        Returns the consent withdrawals appended on the contact's behalf.
        """
        withdrawals: list[ConsentRecord] = []
        if request.type == DSRType.DELETE:
            purposes = await self._ledger.purposes_on_record(request.contact_id)
            for purpose in purposes:
                record = await self._ledger.withdraw(
                    contact_id=request.contact_id,
                    purpose=purpose,
                    source=CONSENT_SOURCE,
                    actor_id=request.verified_by,
                    dsr_request_id=request.id,
                )
                withdrawals.append(record)
            self._session.add(ErasureTask(dsr_request_id=request.id, contact_id=request.contact_id))
            await self._session.flush()
            logger.info(
                "DSR %s: withdrew %d purpose(s) and queued erasure for contact %s",
                request.request_number,
                len(purposes),
                request.contact_id,
            )
        elif request.type == DSRType.WITHDRAW_CONSENT:
            purpose = purpose_from_notes(request.notes)
            if purpose is None:
                # Validated at creation; notes are not editable afterwards.
                raise ValidationFailed("withdraw_consent request does not name a purpose")
            record = await self._ledger.withdraw(
                contact_id=request.contact_id,
                purpose=purpose,
                source=CONSENT_SOURCE,
                actor_id=request.verified_by,
                dsr_request_id=request.id,
            )
            withdrawals.append(record)
        return withdrawals
