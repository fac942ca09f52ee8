"""Compliance façade: the only entry point HTTP handlers use.

Every public method takes the resolved Principal and runs the same
sequence: authorize → execute → commit → redact (reads) → audit (changes
to contacts, consent and DSRs). A deny stops before any storage access.
Audit failures never fail or roll back the committed operation.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from trustdesk.core.audit import AuditTrail
from trustdesk.core.config import Settings, get_settings
from trustdesk.core.database import TRANSIENT_STORAGE_ERRORS
from trustdesk.core.errors import Forbidden, NotFound, StorageUnavailable
from trustdesk.core.models import (
    AuditAction,
    ConsentPurpose,
    DSRRequest,
    DSRStatus,
    DSRType,
    ErasureTask,
    ErasureTaskStatus,
)
from trustdesk.core.permissions import Action, Decision, Resource, allowed_roles, apply_redaction, authorize
from trustdesk.core.principals import Principal, PrincipalStore
from trustdesk.core.records import RecordStore, SqlRecordStore
from trustdesk.privacy.consent import ConsentLedger, consent_to_dict, states_from_history
from trustdesk.privacy.dsr import DsrWorkflow, TransitionResult, dsr_to_dict
from trustdesk.privacy.erasure_job import process_erasure_task, run_erasure_job

logger = logging.getLogger(__name__)


class ComplianceFacade:
    """Composes RBAC, record store, consent ledger, DSR workflow and audit."""

    def __init__(
        self,
        session: AsyncSession,
        audit: AuditTrail,
        settings: Settings | None = None,
        store: RecordStore | None = None,
    ) -> None:
        self._session = session
        self._audit = audit
        self._settings = settings or get_settings()
        self._store = store or SqlRecordStore(session)
        self._ledger = ConsentLedger(session)
        self._workflow = DsrWorkflow(session, self._settings, self._ledger)

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _authorize(self, principal: Principal, resource: Resource, action: Action) -> Decision:
        decision = authorize(principal, resource, action)
        if not decision.allow:
            logger.warning(
                "PERMISSION_DENIED user=%s role=%s permission=%s:%s allowed=%s",
                principal.id,
                principal.role.value,
                resource.value,
                action.value,
                ",".join(r.value for r in allowed_roles(resource, action)) or "none",
            )
            raise Forbidden(f"{resource.value}:{action.value}")
        return decision

    @asynccontextmanager
    async def _storage(self) -> AsyncIterator[None]:
        """Roll back on any failure; map transient storage errors to StorageUnavailable."""
        try:
            yield
        except TRANSIENT_STORAGE_ERRORS as exc:
            await self._session.rollback()
            logger.warning("Storage unavailable, transaction rolled back: %s", exc)
            raise StorageUnavailable(str(exc)) from exc
        except Exception:
            await self._session.rollback()
            raise

    async def _require_contact(self, contact_id: uuid.UUID) -> dict[str, Any]:
        contact = await self._store.get(Resource.CONTACT.value, contact_id)
        if contact is None:
            raise NotFound("contact", contact_id)
        return contact

    # ------------------------------------------------------------------
    # Business records
    # ------------------------------------------------------------------

    async def list_records(
        self,
        principal: Principal,
        resource: Resource,
        filters: dict[str, Any] | None = None,
        *,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        decision = self._authorize(principal, resource, Action.READ)
        async with self._storage():
            records = await self._store.list(resource.value, filters, limit=limit, offset=offset)
        return [apply_redaction(record, decision.redact) for record in records]

    async def get_record(self, principal: Principal, resource: Resource, record_id: uuid.UUID) -> dict[str, Any]:
        decision = self._authorize(principal, resource, Action.READ)
        async with self._storage():
            record = await self._store.get(resource.value, record_id)
        if record is None:
            raise NotFound(resource.value, record_id)
        return apply_redaction(record, decision.redact)

    async def create_record(self, principal: Principal, resource: Resource, payload: dict[str, Any]) -> dict[str, Any]:
        self._authorize(principal, resource, Action.CREATE)
        async with self._storage():
            record = await self._store.create(resource.value, payload, principal.id)
            await self._session.commit()

        if resource == Resource.CONTACT:
            await self._audit.append(
                actor_id=principal.id,
                action=AuditAction.CONTACT_CREATED,
                resource_type=resource.value,
                resource_id=record["id"],
            )
        return record

    async def update_record(
        self,
        principal: Principal,
        resource: Resource,
        record_id: uuid.UUID,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        self._authorize(principal, resource, Action.UPDATE)
        async with self._storage():
            record = await self._store.update(resource.value, record_id, payload)
            if record is None:
                raise NotFound(resource.value, record_id)
            await self._session.commit()

        if resource == Resource.CONTACT:
            await self._audit.append(
                actor_id=principal.id,
                action=AuditAction.CONTACT_UPDATED,
                resource_type=resource.value,
                resource_id=record_id,
            )
        return record

    async def delete_record(self, principal: Principal, resource: Resource, record_id: uuid.UUID) -> None:
        """Hard-delete a record.

        A contact may only be deleted under a completed ``delete`` DSR for
        it; its consent records are scrubbed in the same transaction.
        """
        self._authorize(principal, resource, Action.DELETE)
        async with self._storage():
            if await self._store.get(resource.value, record_id) is None:
                raise NotFound(resource.value, record_id)

            if resource == Resource.CONTACT:
                dsr = await self._completed_delete_request(record_id)
                if dsr is None:
                    logger.warning("Contact %s deletion refused: no completed delete request", record_id)
                    raise Forbidden("contact deletion requires a completed delete request")
                await self._ledger.erase_for_contact(record_id, dsr)

            await self._store.delete(resource.value, record_id)
            await self._session.commit()

        if resource == Resource.CONTACT:
            await self._audit.append(
                actor_id=principal.id,
                action=AuditAction.CONTACT_DELETED,
                resource_type=resource.value,
                resource_id=record_id,
            )

    async def _completed_delete_request(self, contact_id: uuid.UUID) -> DSRRequest | None:
        result = await self._session.execute(
            select(DSRRequest)
            .where(
                DSRRequest.contact_id == contact_id,
                DSRRequest.type == DSRType.DELETE,
                DSRRequest.status == DSRStatus.COMPLETED,
            )
            .order_by(DSRRequest.sequence.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def approve_document(self, principal: Principal, document_id: uuid.UUID) -> dict[str, Any]:
        self._authorize(principal, Resource.DOCUMENT, Action.APPROVE)
        async with self._storage():
            record = await self._store.update(
                Resource.DOCUMENT.value,
                document_id,
                {
                    "status": "approved",
                    "approved_by": str(principal.id),
                    "approved_at": datetime.now(UTC).isoformat(),
                },
            )
            if record is None:
                raise NotFound(Resource.DOCUMENT.value, document_id)
            await self._session.commit()

        logger.info("Document %s approved by %s", document_id, principal.id)
        return record

    # ------------------------------------------------------------------
    # Consent
    # ------------------------------------------------------------------

    async def consent_overview(self, principal: Principal, contact_id: uuid.UUID) -> dict[str, Any]:
        """Current state per purpose plus the full history for one contact."""
        self._authorize(principal, Resource.CONSENT, Action.READ)
        async with self._storage():
            await self._require_contact(contact_id)
            history = await self._ledger.history(contact_id)

        states = states_from_history(history)
        return {
            "contact_id": str(contact_id),
            "states": {purpose.value: state.value for purpose, state in states.items()},
            "history": [consent_to_dict(record) for record in history],
        }

    async def record_consent(
        self,
        principal: Principal,
        *,
        contact_id: uuid.UUID,
        purpose: ConsentPurpose,
        granted: bool,
        source: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> dict[str, Any]:
        self._authorize(principal, Resource.CONSENT, Action.RECORD)
        async with self._storage():
            await self._require_contact(contact_id)
            record = await self._ledger.record_consent(
                contact_id=contact_id,
                purpose=purpose,
                granted=granted,
                source=source,
                actor_id=principal.id,
                ip_address=ip_address,
                user_agent=user_agent,
            )
            await self._session.commit()

        await self._audit.append(
            actor_id=principal.id,
            action=AuditAction.CONSENT_GRANTED if granted else AuditAction.CONSENT_WITHDRAWN,
            resource_type=Resource.CONSENT.value,
            resource_id=record.id,
        )
        return consent_to_dict(record)

    async def withdraw_consent(
        self,
        principal: Principal,
        *,
        contact_id: uuid.UUID,
        purpose: ConsentPurpose,
        source: str = "manual",
    ) -> dict[str, Any]:
        self._authorize(principal, Resource.CONSENT, Action.WITHDRAW)
        async with self._storage():
            await self._require_contact(contact_id)
            record = await self._ledger.withdraw(
                contact_id=contact_id,
                purpose=purpose,
                source=source,
                actor_id=principal.id,
            )
            await self._session.commit()

        await self._audit.append(
            actor_id=principal.id,
            action=AuditAction.CONSENT_WITHDRAWN,
            resource_type=Resource.CONSENT.value,
            resource_id=record.id,
        )
        return consent_to_dict(record)

    # ------------------------------------------------------------------
    # Data subject requests
    # ------------------------------------------------------------------

    async def list_dsr(
        self,
        principal: Principal,
        *,
        status: DSRStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> dict[str, Any]:
        self._authorize(principal, Resource.DSR, Action.READ)
        async with self._storage():
            items, total = await self._workflow.list(status=status, limit=limit, offset=offset)
        return {
            "items": [dsr_to_dict(item) for item in items],
            "total": total,
            "limit": limit,
            "offset": offset,
        }

    async def get_dsr(self, principal: Principal, request_id: uuid.UUID) -> dict[str, Any]:
        self._authorize(principal, Resource.DSR, Action.READ)
        async with self._storage():
            request = await self._workflow.get(request_id)
        return dsr_to_dict(request)

    async def create_dsr(
        self,
        principal: Principal,
        *,
        contact_id: uuid.UUID,
        dsr_type: DSRType,
        description: str | None = None,
        notes: str | None = None,
    ) -> dict[str, Any]:
        self._authorize(principal, Resource.DSR, Action.CREATE)
        async with self._storage():
            await self._require_contact(contact_id)
            request = await self._workflow.create(
                contact_id=contact_id,
                dsr_type=dsr_type,
                actor_id=principal.id,
                description=description,
                notes=notes,
            )
            await self._session.commit()

        await self._audit.append(
            actor_id=principal.id,
            action=AuditAction.DSR_CREATED,
            resource_type=Resource.DSR.value,
            resource_id=request.id,
        )
        return dsr_to_dict(request)

    async def assign_dsr(
        self,
        principal: Principal,
        request_id: uuid.UUID,
        assignee_id: uuid.UUID | None = None,
    ) -> dict[str, Any]:
        """Move a pending request to in_progress; defaults to self-assignment."""
        self._authorize(principal, Resource.DSR, Action.ASSIGN)
        async with self._storage():
            assignee = principal
            if assignee_id is not None and assignee_id != principal.id:
                found = await PrincipalStore(self._session).get(assignee_id)
                if found is None:
                    raise NotFound("user", assignee_id)
                assignee = found
            result = await self._workflow.transition(
                request_id, DSRStatus.IN_PROGRESS, assignee=assignee, assigned_by=principal
            )
            await self._session.commit()

        return await self._finish_transition(principal, result, AuditAction.DSR_ASSIGNED)

    async def complete_dsr(self, principal: Principal, request_id: uuid.UUID) -> dict[str, Any]:
        """Complete an in-progress request with the caller as verifier.

        A completed ``delete`` request's erasure task is executed right away;
        if that fails it stays pending for ``run_erasure``.
        """
        self._authorize(principal, Resource.DSR, Action.COMPLETE)
        async with self._storage():
            result = await self._workflow.transition(request_id, DSRStatus.COMPLETED, verifier=principal)
            await self._session.commit()

        response = await self._finish_transition(principal, result, AuditAction.DSR_COMPLETED)
        for record in result.withdrawals:
            await self._audit.append(
                actor_id=principal.id,
                action=AuditAction.CONSENT_WITHDRAWN,
                resource_type=Resource.CONSENT.value,
                resource_id=record.id,
            )
        if result.applied and result.request.type == DSRType.DELETE:
            await self._erase_now(result.request)
        return response

    async def reject_dsr(self, principal: Principal, request_id: uuid.UUID, reason: str) -> dict[str, Any]:
        self._authorize(principal, Resource.DSR, Action.REJECT)
        async with self._storage():
            result = await self._workflow.transition(request_id, DSRStatus.REJECTED, reason=reason)
            await self._session.commit()

        return await self._finish_transition(principal, result, AuditAction.DSR_REJECTED)

    async def _finish_transition(
        self,
        principal: Principal,
        result: TransitionResult,
        action: AuditAction,
    ) -> dict[str, Any]:
        if result.applied:
            await self._audit.append(
                actor_id=principal.id,
                action=action,
                resource_type=Resource.DSR.value,
                resource_id=result.request.id,
            )
        return {**dsr_to_dict(result.request), "applied": result.applied}

    async def _erase_now(self, request: DSRRequest) -> None:
        try:
            result = await self._session.execute(
                select(ErasureTask).where(
                    ErasureTask.dsr_request_id == request.id,
                    ErasureTask.status == ErasureTaskStatus.PENDING,
                )
            )
            task = result.scalar_one_or_none()
            if task is None:
                return
            claimed = await process_erasure_task(task, self._session, self._store)
            await self._session.commit()
        except Exception as e:  # Intentionally broad: the task stays queued for run_erasure
            await self._session.rollback()
            logger.warning("Inline erasure for DSR %s failed, task left pending: %s", request.request_number, e)
            return

        if not claimed:
            return
        await self._audit.append(
            actor_id=request.verified_by,
            action=AuditAction.CONTACT_ANONYMIZED,
            resource_type=Resource.CONTACT.value,
            resource_id=request.contact_id,
        )

    async def run_erasure(self, principal: Principal) -> dict[str, Any]:
        """Process every pending erasure task."""
        self._authorize(principal, Resource.DSR, Action.ERASE)
        async with self._storage():
            tasks = await run_erasure_job(self._session)

        for task in tasks:
            await self._audit.append(
                actor_id=principal.id,
                action=AuditAction.CONTACT_ANONYMIZED,
                resource_type=Resource.CONTACT.value,
                resource_id=task.contact_id,
            )
        return {"processed": len(tasks)}
