"""Consent API routes.

Provides endpoints for recording and withdrawing consent per contact and
purpose, and for reading a contact's current consent state and history.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel, Field

from trustdesk.api.deps import get_facade
from trustdesk.core.auth import get_current_principal
from trustdesk.core.compliance import ComplianceFacade
from trustdesk.core.models import ConsentPurpose
from trustdesk.core.principals import Principal

router = APIRouter(prefix="/api/v1/consent", tags=["consent"])


class RecordConsentPayload(BaseModel):
    """Request body for recording a consent grant or withdrawal."""

    contact_id: UUID
    purpose: ConsentPurpose
    granted: bool = True
    source: str = Field(default="manual", min_length=1, max_length=100)


class WithdrawConsentPayload(BaseModel):
    contact_id: UUID
    purpose: ConsentPurpose
    source: str = Field(default="manual", min_length=1, max_length=100)


@router.get("/contact/{contact_id}")
async def get_contact_consent(
    contact_id: UUID,
    facade: ComplianceFacade = Depends(get_facade),
    principal: Principal = Depends(get_current_principal),
) -> dict[str, Any]:
    """Current state per purpose plus the full, oldest-first history."""
    return await facade.consent_overview(principal, contact_id)


@router.post("", status_code=status.HTTP_201_CREATED)
async def record_consent(
    request: Request,
    payload: RecordConsentPayload,
    facade: ComplianceFacade = Depends(get_facade),
    principal: Principal = Depends(get_current_principal),
) -> dict[str, Any]:
    """Append a consent record. Prior records are never modified."""
    return await facade.record_consent(
        principal,
        contact_id=payload.contact_id,
        purpose=payload.purpose,
        granted=payload.granted,
        source=payload.source,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )


@router.post("/withdraw", status_code=status.HTTP_201_CREATED)
async def withdraw_consent(
    payload: WithdrawConsentPayload,
    facade: ComplianceFacade = Depends(get_facade),
    principal: Principal = Depends(get_current_principal),
) -> dict[str, Any]:
    """Append a withdrawal record for the contact and purpose."""
    return await facade.withdraw_consent(
        principal,
        contact_id=payload.contact_id,
        purpose=payload.purpose,
        source=payload.source,
    )
