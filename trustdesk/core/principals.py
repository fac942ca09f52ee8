"""Principal value object and the read-only Principal Store."""

from __future__ import annotations

import uuid
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from trustdesk.core.models import User, UserRole


@dataclass(frozen=True)
class Principal:
    """The authenticated identity making a request.

    Immutable for the lifetime of the request.
    """

    id: uuid.UUID
    email: str
    role: UserRole
    department: str | None = None

    @classmethod
    def from_user(cls, user: User) -> Principal:
        return cls(id=user.id, email=user.email, role=user.role, department=user.department)


class PrincipalStore:
    """Reads account records. This layer never writes to it."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, user_id: uuid.UUID) -> Principal | None:
        """Return the active principal with this id, or None."""
        result = await self._session.execute(select(User).where(User.id == user_id))
        user = result.scalar_one_or_none()
        if user is None or not user.is_active:
            return None
        return Principal.from_user(user)

    async def get_user_by_email(self, email: str) -> User | None:
        """Return the account row for a login email (case-insensitive)."""
        result = await self._session.execute(select(User).where(User.email == email.strip().lower()))
        return result.scalar_one_or_none()
