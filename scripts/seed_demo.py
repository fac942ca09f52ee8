"""Seed script: creates one demo account per role plus a few contacts.

Usage:
    python -m scripts.seed_demo          # seed everything
    python -m scripts.seed_demo --reset  # wipe demo data and reseed

Every demo account uses the password "demo". Requires a migrated database
reachable through the application settings (DATABASE_URL or POSTGRES_*).
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import uuid
from datetime import UTC, datetime

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from trustdesk.core.auth import hash_password
from trustdesk.core.config import get_settings
from trustdesk.core.database import create_engine
from trustdesk.core.models import BusinessRecord, ConsentPurpose, ConsentRecord, User, UserRole

logging.basicConfig(level=logging.INFO, format="%(levelname)s  %(message)s")
logger = logging.getLogger(__name__)

DEMO_DOMAIN = "trustdesk-demo.com"

# Use uuid5 with a fixed namespace so IDs are stable across runs.
NS = uuid.UUID("5d0f3a2e-7c41-4b8e-9a6d-2f1e8c4b7a90")


def _uid(name: str) -> uuid.UUID:
    return uuid.uuid5(NS, name)


DEMO_USERS = [
    (UserRole.ADMIN, "Alex", "Admin", "Management"),
    (UserRole.QA, "Quinn", "Auditor", "Quality"),
    (UserRole.MANAGER, "Morgan", "Manager", "Sales"),
    (UserRole.AGENT, "Avery", "Agent", "Sales"),
    (UserRole.VIEWER, "Val", "Viewer", None),
]

DEMO_CONTACTS = [
    {"first_name": "Jane", "last_name": "Doe", "email": "jane.doe@example.com", "company": "Acme", "status": "customer"},
    {"first_name": "Sipho", "last_name": "Nkosi", "email": "sipho@example.org", "company": "Umoya", "status": "lead"},
]


async def reset_data(session: AsyncSession) -> None:
    """Remove all demo rows created by a previous run."""
    contact_ids = [_uid(f"contact-{c['email']}") for c in DEMO_CONTACTS]
    await session.execute(delete(ConsentRecord).where(ConsentRecord.contact_id.in_(contact_ids)))
    await session.execute(delete(BusinessRecord).where(BusinessRecord.id.in_(contact_ids)))
    await session.execute(delete(User).where(User.email.like(f"%@{DEMO_DOMAIN}")))
    await session.commit()
    logger.info("Demo data removed")


async def seed(session: AsyncSession) -> None:
    password_hash = hash_password("demo")
    admin_id = _uid("user-admin")

    for role, first_name, last_name, department in DEMO_USERS:
        session.add(
            User(
                id=_uid(f"user-{role.value.lower()}"),
                email=f"{role.value.lower()}@{DEMO_DOMAIN}",
                first_name=first_name,
                last_name=last_name,
                hashed_password=password_hash,
                role=role,
                department=department,
            )
        )

    for contact in DEMO_CONTACTS:
        contact_id = _uid(f"contact-{contact['email']}")
        session.add(BusinessRecord(id=contact_id, resource="contact", payload=dict(contact), created_by=admin_id))
        session.add(
            ConsentRecord(
                contact_id=contact_id,
                purpose=ConsentPurpose.MARKETING,
                granted=True,
                granted_at=datetime.now(UTC),
                source="seed",
                recorded_by=admin_id,
            )
        )

    await session.commit()
    logger.info("Seeded %d users and %d contacts", len(DEMO_USERS), len(DEMO_CONTACTS))


async def main(reset: bool = False) -> None:
    engine, session_factory = create_engine(get_settings())

    async with session_factory() as session:
        if reset:
            await reset_data(session)

        result = await session.execute(select(User.id).where(User.id == _uid("user-admin")))
        if result.first():
            logger.info("Demo data already present; use --reset to reseed")
        else:
            await seed(session)

    await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed TrustDesk demo data")
    parser.add_argument("--reset", action="store_true", help="Delete existing demo data before seeding")
    args = parser.parse_args()
    asyncio.run(main(reset=args.reset))
