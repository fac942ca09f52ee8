"""Data subject request (DSR) API routes.

Provides:
- GET  /api/v1/dsr                 (list, newest first, optional status filter)
- POST /api/v1/dsr                 (open a request; always starts pending)
- GET  /api/v1/dsr/{id}
- POST /api/v1/dsr/{id}/assign     (pending -> in_progress)
- POST /api/v1/dsr/{id}/complete   (in_progress -> completed, caller verifies)
- POST /api/v1/dsr/{id}/reject     (in_progress -> rejected, reason required)
- POST /api/v1/dsr/erasure/run     (process queued contact erasures)

Transitions are idempotent: repeating one that already happened returns
200 with ``applied: false``.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from trustdesk.api.deps import get_facade
from trustdesk.core.auth import get_current_principal
from trustdesk.core.compliance import ComplianceFacade
from trustdesk.core.models import DSRStatus, DSRType
from trustdesk.core.principals import Principal

router = APIRouter(prefix="/api/v1/dsr", tags=["dsr"])


class CreateDSRPayload(BaseModel):
    contact_id: UUID
    type: DSRType
    description: str | None = Field(default=None, max_length=2000)
    notes: str | None = Field(default=None, max_length=2000)


class AssignDSRPayload(BaseModel):
    """Assignee defaults to the caller."""

    assignee_id: UUID | None = None


class RejectDSRPayload(BaseModel):
    reason: str = Field(..., max_length=2000)


@router.get("")
async def list_dsr(
    dsr_status: DSRStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    facade: ComplianceFacade = Depends(get_facade),
    principal: Principal = Depends(get_current_principal),
) -> dict[str, Any]:
    return await facade.list_dsr(principal, status=dsr_status, limit=limit, offset=offset)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_dsr(
    payload: CreateDSRPayload,
    facade: ComplianceFacade = Depends(get_facade),
    principal: Principal = Depends(get_current_principal),
) -> dict[str, Any]:
    """Open a request for a contact.

    ``withdraw_consent`` requests must name the purpose (e.g. "marketing")
    in ``notes``.
    """
    return await facade.create_dsr(
        principal,
        contact_id=payload.contact_id,
        dsr_type=payload.type,
        description=payload.description,
        notes=payload.notes,
    )


@router.post("/erasure/run")
async def run_erasure(
    facade: ComplianceFacade = Depends(get_facade),
    principal: Principal = Depends(get_current_principal),
) -> dict[str, Any]:
    """Process pending erasure tasks left by completed delete requests."""
    return await facade.run_erasure(principal)


@router.get("/{request_id}")
async def get_dsr(
    request_id: UUID,
    facade: ComplianceFacade = Depends(get_facade),
    principal: Principal = Depends(get_current_principal),
) -> dict[str, Any]:
    return await facade.get_dsr(principal, request_id)


@router.post("/{request_id}/assign")
async def assign_dsr(
    request_id: UUID,
    payload: AssignDSRPayload | None = None,
    facade: ComplianceFacade = Depends(get_facade),
    principal: Principal = Depends(get_current_principal),
) -> dict[str, Any]:
    assignee_id = payload.assignee_id if payload else None
    return await facade.assign_dsr(principal, request_id, assignee_id)


@router.post("/{request_id}/complete")
async def complete_dsr(
    request_id: UUID,
    facade: ComplianceFacade = Depends(get_facade),
    principal: Principal = Depends(get_current_principal),
) -> dict[str, Any]:
    """Complete the request with the caller recorded as verifier."""
    return await facade.complete_dsr(principal, request_id)


@router.post("/{request_id}/reject")
async def reject_dsr(
    request_id: UUID,
    payload: RejectDSRPayload,
    facade: ComplianceFacade = Depends(get_facade),
    principal: Principal = Depends(get_current_principal),
) -> dict[str, Any]:
    return await facade.reject_dsr(principal, request_id, payload.reason)
