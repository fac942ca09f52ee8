"""Record store for business records (contacts, NCRs, documents, ...).

The compliance layer only depends on the ``RecordStore`` protocol. The
SQL-backed implementation keeps every resource in one JSON payload table;
it has no business rules of its own.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any, Protocol

from sqlalchemy import ColumnElement, select
from sqlalchemy.ext.asyncio import AsyncSession

from trustdesk.core.models import BusinessRecord

# Keys owned by the store; payload updates cannot overwrite them.
_RESERVED_KEYS = frozenset({"id", "created_by", "created_at", "updated_at"})


class RecordStore(Protocol):
    """Minimal CRUD interface consumed by the compliance facade."""

    async def get(self, resource: str, record_id: uuid.UUID) -> dict[str, Any] | None: ...

    async def list(
        self,
        resource: str,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]: ...

    async def create(self, resource: str, payload: dict[str, Any], actor_id: uuid.UUID | None) -> dict[str, Any]: ...

    async def update(self, resource: str, record_id: uuid.UUID, payload: dict[str, Any]) -> dict[str, Any] | None: ...

    async def delete(self, resource: str, record_id: uuid.UUID) -> bool: ...


def _record_to_dict(record: BusinessRecord) -> dict[str, Any]:
    return {
        **record.payload,
        "id": str(record.id),
        "created_by": str(record.created_by) if record.created_by else None,
        "created_at": record.created_at.isoformat() if record.created_at else None,
        "updated_at": record.updated_at.isoformat() if record.updated_at else None,
    }


def _clean(payload: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in payload.items() if k not in _RESERVED_KEYS}


def _payload_equals(key: str, value: Any) -> ColumnElement[bool]:
    """SQL equality on one top-level payload key, typed by the filter value."""
    element = BusinessRecord.payload[key]
    if value is None:
        return element.as_string().is_(None)
    if isinstance(value, bool):
        return element.as_boolean() == value
    if isinstance(value, int):
        return element.as_integer() == value
    if isinstance(value, float):
        return element.as_float() == value
    return element.as_string() == str(value)


class SqlRecordStore:
    """RecordStore backed by the ``business_records`` table."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def _load(self, resource: str, record_id: uuid.UUID) -> BusinessRecord | None:
        result = await self._session.execute(
            select(BusinessRecord).where(
                BusinessRecord.id == record_id,
                BusinessRecord.resource == resource,
            )
        )
        return result.scalar_one_or_none()

    async def get(self, resource: str, record_id: uuid.UUID) -> dict[str, Any] | None:
        record = await self._load(resource, record_id)
        return _record_to_dict(record) if record else None

    async def list(
        self,
        resource: str,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """List records of a resource, newest first, matching payload equality filters."""
        conditions = [_payload_equals(k, v) for k, v in (filters or {}).items()]
        query = (
            select(BusinessRecord)
            .where(BusinessRecord.resource == resource, *conditions)
            .order_by(BusinessRecord.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        result = await self._session.execute(query)
        return [_record_to_dict(r) for r in result.scalars().all()]

    async def create(self, resource: str, payload: dict[str, Any], actor_id: uuid.UUID | None) -> dict[str, Any]:
        record = BusinessRecord(resource=resource, payload=_clean(payload), created_by=actor_id)
        self._session.add(record)
        await self._session.flush()
        return _record_to_dict(record)

    async def update(self, resource: str, record_id: uuid.UUID, payload: dict[str, Any]) -> dict[str, Any] | None:
        record = await self._load(resource, record_id)
        if record is None:
            return None
        # Reassign so the JSON column is flagged dirty.
        record.payload = {**record.payload, **_clean(payload)}
        record.updated_at = datetime.now(UTC)
        await self._session.flush()
        return _record_to_dict(record)

    async def delete(self, resource: str, record_id: uuid.UUID) -> bool:
        record = await self._load(resource, record_id)
        if record is None:
            return False
        await self._session.delete(record)
        await self._session.flush()
        return True
