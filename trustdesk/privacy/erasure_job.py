"""Contact erasure job.

Processes the erasure tasks queued by completed ``delete`` DSRs: the
contact record is anonymised in place and personal data is scrubbed from
its consent records. The consent events themselves are kept as evidence.
Can run inline right after completion or via the erasure endpoint.
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from trustdesk.core.models import DSRRequest, ErasureTask, ErasureTaskStatus
from trustdesk.core.records import RecordStore, SqlRecordStore
from trustdesk.privacy.consent import ConsentLedger

logger = logging.getLogger(__name__)

CONTACT_RESOURCE = "contact"

# Contact fields blanked on erasure.
CONTACT_PII_FIELDS = ("phone", "position", "notes", "tags", "assigned_to", "last_contact_date")


async def anonymize_contact(contact_id: uuid.UUID, store: RecordStore) -> bool:
    """Replace PII fields on a contact record with anonymised values.

    Preserves the record id so references from consent records and DSRs
    remain intact.

    Returns:
        False if the contact no longer exists.
    """
    anon_id = uuid.uuid4()
    payload: dict[str, object] = {field: None for field in CONTACT_PII_FIELDS}
    payload.update(
        first_name="Deleted",
        last_name="Contact",
        email=f"deleted-{anon_id}@anonymized.local",
        status="anonymized",
    )
    updated = await store.update(CONTACT_RESOURCE, contact_id, payload)
    if updated is None:
        logger.warning("Erasure: contact %s not found, skipping", contact_id)
        return False

    logger.info("Erasure: anonymised contact %s", contact_id)
    return True


async def process_erasure_task(task: ErasureTask, db: AsyncSession, store: RecordStore | None = None) -> bool:
    """Claim one queued erasure and execute it (caller manages commit).

    The claim is a conditional ``pending -> done`` update, so when two
    runners hold the same task only one of them gets to process it.

    Returns:
        False if the task was already claimed by another runner.
    """
    claim = await db.execute(
        update(ErasureTask)
        .where(ErasureTask.id == task.id, ErasureTask.status == ErasureTaskStatus.PENDING)
        .values(status=ErasureTaskStatus.DONE, processed_at=datetime.now(UTC))
        .execution_options(synchronize_session=False)
    )
    if claim.rowcount != 1:
        logger.info("Erasure: task for DSR %s already processed, skipping", task.dsr_request_id)
        return False

    result = await db.execute(select(DSRRequest).where(DSRRequest.id == task.dsr_request_id))
    dsr = result.scalar_one()

    await anonymize_contact(task.contact_id, store or SqlRecordStore(db))
    await ConsentLedger(db).erase_for_contact(task.contact_id, dsr)
    await db.flush()
    await db.refresh(task)
    return True


async def run_erasure_job(db: AsyncSession) -> list[ErasureTask]:
    """Process every pending erasure task, oldest first, and commit.

    Args:
        db: An active async database session.

    Returns:
        The tasks this run claimed and processed.
    """
    result = await db.execute(
        select(ErasureTask)
        .where(ErasureTask.status == ErasureTaskStatus.PENDING)
        .order_by(ErasureTask.created_at.asc())
    )
    tasks = list(result.scalars().all())

    if not tasks:
        logger.info("Erasure job: no pending erasure tasks")
        return []

    store = SqlRecordStore(db)
    processed: list[ErasureTask] = []
    for task in tasks:
        if await process_erasure_task(task, db, store):
            processed.append(task)

    await db.commit()
    logger.info("Erasure job: processed %d task(s)", len(processed))
    return processed
