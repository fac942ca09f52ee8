"""Audit trail for regulated state changes.

Entries are written in their own session after the business transaction has
committed, so an audit failure can never roll back the primary operation.
Failures are logged at WARNING and swallowed (degraded mode).
"""

from __future__ import annotations

import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from trustdesk.core.models import AuditAction, AuditEntry

logger = logging.getLogger(__name__)


class AuditTrail:
    """Append-only writer for AuditEntry rows."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None) -> None:
        self._session_factory = session_factory

    async def append(
        self,
        *,
        actor_id: uuid.UUID | None,
        action: AuditAction,
        resource_type: str,
        resource_id: object,
        outcome: str = "success",
    ) -> None:
        """Persist one audit entry; never raises.

        Args:
            actor_id: Principal that performed the change (None for system).
            action: The audit action type.
            resource_type: "contact", "consent" or "dsr".
            resource_id: Identifier of the changed entity.
            outcome: Result label, "success" for committed changes.
        """
        logger.info(
            "AUDIT action=%s actor=%s resource=%s/%s outcome=%s",
            action.value,
            actor_id or "system",
            resource_type,
            resource_id,
            outcome,
        )
        if self._session_factory is None:
            return

        try:
            async with self._session_factory() as session:
                session.add(
                    AuditEntry(
                        actor_id=actor_id,
                        action=action,
                        resource_type=resource_type,
                        resource_id=str(resource_id),
                        outcome=outcome,
                    )
                )
                await session.commit()
        except Exception as e:  # Intentionally broad: audit must not block business flows
            logger.warning(
                "Audit persistence failed (operation not rolled back): action=%s resource=%s/%s error=%s",
                action.value,
                resource_type,
                resource_id,
                e,
            )
