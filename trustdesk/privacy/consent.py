"""Consent ledger.

Append-only store of consent events per contact and purpose. The current
state of a (contact, purpose) pair is the ``granted`` flag of its latest
record, where "latest" is decided by the monotonic ``sequence`` key rather
than wall-clock timestamps so ordering survives clock skew.
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from trustdesk.core.errors import Forbidden
from trustdesk.core.models import (
    USER_AGENT_MAX_LENGTH,
    ConsentPurpose,
    ConsentRecord,
    ConsentState,
    DSRRequest,
    DSRStatus,
    DSRType,
)

logger = logging.getLogger(__name__)


def consent_to_dict(record: ConsentRecord) -> dict[str, Any]:
    return {
        "id": str(record.id),
        "sequence": record.sequence,
        "contact_id": str(record.contact_id),
        "purpose": record.purpose.value,
        "granted": record.granted,
        "granted_at": record.granted_at.isoformat() if record.granted_at else None,
        "withdrawn_at": record.withdrawn_at.isoformat() if record.withdrawn_at else None,
        "source": record.source,
        "recorded_by": str(record.recorded_by) if record.recorded_by else None,
        "dsr_request_id": str(record.dsr_request_id) if record.dsr_request_id else None,
    }


def states_from_history(history: list[ConsentRecord]) -> dict[ConsentPurpose, ConsentState]:
    """Replay an oldest-first history into the current state per purpose."""
    states = {purpose: ConsentState.UNKNOWN for purpose in ConsentPurpose}
    for record in history:
        states[record.purpose] = ConsentState.GRANTED if record.granted else ConsentState.WITHDRAWN
    return states


class ConsentLedger:
    """Records and evaluates consent for contacts."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record_consent(
        self,
        *,
        contact_id: uuid.UUID,
        purpose: ConsentPurpose,
        granted: bool,
        source: str,
        actor_id: uuid.UUID | None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        dsr_request_id: uuid.UUID | None = None,
    ) -> ConsentRecord:
        """Append a grant or withdrawal event. Never overwrites a prior record."""
        now = datetime.now(UTC)
        record = ConsentRecord(
            contact_id=contact_id,
            purpose=purpose,
            granted=granted,
            granted_at=now if granted else None,
            withdrawn_at=None if granted else now,
            source=source,
            recorded_by=actor_id,
            ip_address=ip_address,
            user_agent=user_agent[:USER_AGENT_MAX_LENGTH] if user_agent else user_agent,
            dsr_request_id=dsr_request_id,
        )
        self._session.add(record)
        await self._session.flush()

        logger.info(
            "Consent %s: contact=%s, purpose=%s, source=%s, sequence=%d",
            "granted" if granted else "withdrawn",
            contact_id,
            purpose.value,
            source,
            record.sequence,
        )
        return record

    async def withdraw(
        self,
        *,
        contact_id: uuid.UUID,
        purpose: ConsentPurpose,
        source: str,
        actor_id: uuid.UUID | None,
        dsr_request_id: uuid.UUID | None = None,
    ) -> ConsentRecord:
        return await self.record_consent(
            contact_id=contact_id,
            purpose=purpose,
            granted=False,
            source=source,
            actor_id=actor_id,
            dsr_request_id=dsr_request_id,
        )

    async def current_state(self, contact_id: uuid.UUID, purpose: ConsentPurpose) -> ConsentState:
        """Return the state set by the latest record, or UNKNOWN if none exists."""
        result = await self._session.execute(
            select(ConsentRecord.granted)
            .where(ConsentRecord.contact_id == contact_id, ConsentRecord.purpose == purpose)
            .order_by(ConsentRecord.sequence.desc())
            .limit(1)
        )
        granted = result.scalar_one_or_none()
        if granted is None:
            return ConsentState.UNKNOWN
        return ConsentState.GRANTED if granted else ConsentState.WITHDRAWN

    async def current_states(self, contact_id: uuid.UUID) -> dict[ConsentPurpose, ConsentState]:
        """Current state for every purpose, derived from one history read."""
        return states_from_history(await self.history(contact_id))

    async def history(self, contact_id: uuid.UUID) -> list[ConsentRecord]:
        """All records for a contact, oldest first."""
        result = await self._session.execute(
            select(ConsentRecord)
            .where(ConsentRecord.contact_id == contact_id)
            .order_by(ConsentRecord.sequence.asc())
        )
        return list(result.scalars().all())

    async def purposes_on_record(self, contact_id: uuid.UUID) -> list[ConsentPurpose]:
        """Purposes that have at least one record for the contact, in enum order."""
        result = await self._session.execute(
            select(ConsentRecord.purpose).where(ConsentRecord.contact_id == contact_id).distinct()
        )
        present = set(result.scalars().all())
        return [purpose for purpose in ConsentPurpose if purpose in present]

    async def erase_for_contact(self, contact_id: uuid.UUID, dsr: DSRRequest) -> int:
        """Scrub personal data from a contact's consent records.

        Only a completed ``delete`` request for the same contact authorises
        this. The grant/withdraw events themselves are kept as evidence.

        Returns:
            Number of records scrubbed.

        Raises:
            Forbidden: If ``dsr`` does not authorise erasure for this contact.
        """
        if dsr.type != DSRType.DELETE or dsr.status != DSRStatus.COMPLETED or dsr.contact_id != contact_id:
            logger.warning(
                "Consent erasure refused: contact=%s, dsr=%s type=%s status=%s",
                contact_id,
                dsr.request_number,
                dsr.type,
                dsr.status,
            )
            raise Forbidden("erasure requires a completed delete request for this contact")

        result = await self._session.execute(
            update(ConsentRecord)
            .where(ConsentRecord.contact_id == contact_id)
            .values(ip_address=None, user_agent=None)
            .execution_options(synchronize_session=False)
        )
        scrubbed = result.rowcount or 0
        logger.info("Consent records scrubbed: contact=%s, dsr=%s, count=%d", contact_id, dsr.request_number, scrubbed)
        return scrubbed
