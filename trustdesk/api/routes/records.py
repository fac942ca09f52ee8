"""Routes for the plain business records: opportunities, activities,
NCRs, documents and suppliers.

Each resource gets list/get/create endpoints gated by the façade;
documents additionally expose an approve action.
"""

from typing import Any, Literal
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from trustdesk.api.deps import get_facade
from trustdesk.core.auth import get_current_principal
from trustdesk.core.compliance import ComplianceFacade
from trustdesk.core.permissions import Resource
from trustdesk.core.principals import Principal


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------


class OpportunityCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    contact_id: UUID
    value: float = Field(default=0, ge=0)
    stage: Literal["prospecting", "qualification", "proposal", "negotiation", "closed_won", "closed_lost"] = (
        "prospecting"
    )
    probability: int = Field(default=0, ge=0, le=100)
    expected_close_date: str | None = None
    description: str | None = None


class ActivityCreate(BaseModel):
    type: Literal["call", "email", "meeting", "task"]
    subject: str = Field(..., min_length=1, max_length=200)
    description: str | None = None
    contact_id: UUID | None = None
    opportunity_id: UUID | None = None
    due_date: str | None = None
    status: Literal["pending", "completed", "cancelled"] = "pending"


class NCRCreate(BaseModel):
    ncr_number: str = Field(..., min_length=1, max_length=50)
    title: str = Field(..., min_length=1, max_length=200)
    description: str
    severity: Literal["low", "medium", "high", "critical"]
    department: str
    status: Literal["open", "in_progress", "pending_verification", "closed"] = "open"
    root_cause: str | None = None
    corrective_action: str | None = None
    preventive_action: str | None = None
    due_date: str | None = None


class DocumentCreate(BaseModel):
    document_number: str = Field(..., min_length=1, max_length=50)
    title: str = Field(..., min_length=1, max_length=200)
    type: Literal["manual", "procedure", "form", "policy", "record"]
    version: str = "1.0"
    status: Literal["draft", "review"] = "draft"
    department: str
    owner: str
    review_date: str | None = None
    description: str | None = None


class SupplierCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    code: str = Field(..., min_length=1, max_length=50)
    category: str
    contact_person: str | None = None
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    status: Literal["active", "inactive", "suspended"] = "active"
    evaluation_score: float | None = Field(default=None, ge=0, le=100)
    notes: str | None = None


# ---------------------------------------------------------------------------
# Router factory
# ---------------------------------------------------------------------------


def build_record_router(path: str, resource: Resource, create_model: type[BaseModel]) -> APIRouter:
    """Build list/get/create routes for one record resource."""
    router = APIRouter(prefix=f"/api/v1/{path}", tags=[path])

    async def list_records(
        limit: int = Query(default=50, ge=1, le=200),
        offset: int = Query(default=0, ge=0),
        facade: ComplianceFacade = Depends(get_facade),
        principal: Principal = Depends(get_current_principal),
    ) -> list[dict[str, Any]]:
        return await facade.list_records(principal, resource, limit=limit, offset=offset)

    async def get_record(
        record_id: UUID,
        facade: ComplianceFacade = Depends(get_facade),
        principal: Principal = Depends(get_current_principal),
    ) -> dict[str, Any]:
        return await facade.get_record(principal, resource, record_id)

    async def create_record(
        payload: create_model,  # type: ignore[valid-type]
        facade: ComplianceFacade = Depends(get_facade),
        principal: Principal = Depends(get_current_principal),
    ) -> dict[str, Any]:
        return await facade.create_record(principal, resource, payload.model_dump(mode="json"))

    router.add_api_route("", list_records, methods=["GET"], name=f"list_{path}")
    router.add_api_route("/{record_id}", get_record, methods=["GET"], name=f"get_{path}")
    router.add_api_route(
        "",
        create_record,
        methods=["POST"],
        status_code=status.HTTP_201_CREATED,
        name=f"create_{path}",
    )
    return router


opportunities_router = build_record_router("opportunities", Resource.OPPORTUNITY, OpportunityCreate)
activities_router = build_record_router("activities", Resource.ACTIVITY, ActivityCreate)
ncr_router = build_record_router("ncr", Resource.NCR, NCRCreate)
documents_router = build_record_router("documents", Resource.DOCUMENT, DocumentCreate)
suppliers_router = build_record_router("suppliers", Resource.SUPPLIER, SupplierCreate)


@documents_router.post("/{record_id}/approve")
async def approve_document(
    record_id: UUID,
    facade: ComplianceFacade = Depends(get_facade),
    principal: Principal = Depends(get_current_principal),
) -> dict[str, Any]:
    """Mark a controlled document as approved by the caller."""
    return await facade.approve_document(principal, record_id)


routers = [opportunities_router, activities_router, ncr_router, documents_router, suppliers_router]
