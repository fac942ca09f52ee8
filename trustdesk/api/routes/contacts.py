"""Contact API routes.

Reads are redacted per role (VIEWER sees masked emails). Hard deletion
is only permitted once a delete data subject request has completed.
"""

from __future__ import annotations

from typing import Any, Literal
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, EmailStr, Field

from trustdesk.api.deps import get_facade
from trustdesk.core.auth import get_current_principal
from trustdesk.core.compliance import ComplianceFacade
from trustdesk.core.permissions import Resource
from trustdesk.core.principals import Principal

router = APIRouter(prefix="/api/v1/contacts", tags=["contacts"])

ContactStatus = Literal["lead", "prospect", "customer", "inactive"]


class ContactCreate(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    phone: str | None = Field(default=None, max_length=50)
    company: str | None = Field(default=None, max_length=200)
    position: str | None = Field(default=None, max_length=200)
    source: str | None = Field(default=None, max_length=100)
    status: ContactStatus = "lead"
    tags: str | None = None
    notes: str | None = None


class ContactUpdate(BaseModel):
    first_name: str | None = Field(default=None, min_length=1, max_length=100)
    last_name: str | None = Field(default=None, min_length=1, max_length=100)
    email: EmailStr | None = None
    phone: str | None = Field(default=None, max_length=50)
    company: str | None = Field(default=None, max_length=200)
    position: str | None = Field(default=None, max_length=200)
    source: str | None = Field(default=None, max_length=100)
    status: ContactStatus | None = None
    tags: str | None = None
    notes: str | None = None


@router.get("")
async def list_contacts(
    contact_status: ContactStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    facade: ComplianceFacade = Depends(get_facade),
    principal: Principal = Depends(get_current_principal),
) -> list[dict[str, Any]]:
    filters = {"status": contact_status} if contact_status else None
    return await facade.list_records(principal, Resource.CONTACT, filters, limit=limit, offset=offset)


@router.get("/{contact_id}")
async def get_contact(
    contact_id: UUID,
    facade: ComplianceFacade = Depends(get_facade),
    principal: Principal = Depends(get_current_principal),
) -> dict[str, Any]:
    return await facade.get_record(principal, Resource.CONTACT, contact_id)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_contact(
    payload: ContactCreate,
    facade: ComplianceFacade = Depends(get_facade),
    principal: Principal = Depends(get_current_principal),
) -> dict[str, Any]:
    return await facade.create_record(principal, Resource.CONTACT, payload.model_dump(mode="json"))


@router.put("/{contact_id}")
async def update_contact(
    contact_id: UUID,
    payload: ContactUpdate,
    facade: ComplianceFacade = Depends(get_facade),
    principal: Principal = Depends(get_current_principal),
) -> dict[str, Any]:
    return await facade.update_record(
        principal,
        Resource.CONTACT,
        contact_id,
        payload.model_dump(mode="json", exclude_unset=True),
    )


@router.delete("/{contact_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_contact(
    contact_id: UUID,
    facade: ComplianceFacade = Depends(get_facade),
    principal: Principal = Depends(get_current_principal),
) -> Response:
    """Hard-delete a contact covered by a completed delete request."""
    await facade.delete_record(principal, Resource.CONTACT, contact_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
