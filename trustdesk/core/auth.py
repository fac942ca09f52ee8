"""Session authentication.

Supports:
- bcrypt password hashing for the login endpoint
- Signed session token creation (JWT, key rotation aware)
- SessionVerifier: token -> Principal with a uniform failure outcome
- Session cookie helpers
- FastAPI dependency for extracting the current principal
"""

from __future__ import annotations

import functools
import logging
import secrets
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

import bcrypt
import jwt
from fastapi import Depends, Request, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWTError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from trustdesk.core.config import Settings, get_settings
from trustdesk.core.database import TRANSIENT_STORAGE_ERRORS
from trustdesk.core.errors import StorageUnavailable, Unauthenticated
from trustdesk.core.principals import Principal, PrincipalStore

logger = logging.getLogger(__name__)

# Bearer token scheme (auto_error=False so cookie sessions still work)
bearer_scheme = HTTPBearer(auto_error=False)


# ---------------------------------------------------------------------------
# Password helpers
# ---------------------------------------------------------------------------


def hash_password(password: str) -> str:
    """Hash a plaintext password using bcrypt."""
    salt = bcrypt.gensalt()
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Check a plaintext password against its bcrypt hash."""
    return bcrypt.checkpw(
        plain_password.encode("utf-8"),
        hashed_password.encode("utf-8"),
    )


@functools.lru_cache(maxsize=1)
def _dummy_password_hash() -> str:
    return hash_password(secrets.token_urlsafe(16))


def check_login_password(plain_password: str, hashed_password: str | None) -> bool:
    """Verify a login password, paying the bcrypt cost even without a stored hash.

    Unknown accounts and accounts without a password are checked against a
    throwaway hash so their failures take as long as a wrong password.
    """
    if not hashed_password:
        verify_password(plain_password, _dummy_password_hash())
        return False
    return verify_password(plain_password, hashed_password)


# ---------------------------------------------------------------------------
# Token helpers
# ---------------------------------------------------------------------------


def create_session_token(
    principal: Principal,
    settings: Settings | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a signed session token for a principal.

    Args:
        principal: The authenticated principal; its id becomes the subject.
        settings: Application settings. Defaults to get_settings().
        expires_delta: Custom expiry. Defaults to config value.

    Returns:
        Encoded JWT string signed with the first configured key.
    """
    if settings is None:
        settings = get_settings()

    expire = datetime.now(UTC) + (expires_delta or timedelta(minutes=settings.session_expire_minutes))
    claims: dict[str, Any] = {
        "sub": str(principal.id),
        "role": principal.role.value,
        "exp": expire,
        "type": "access",
    }
    return jwt.encode(claims, settings.jwt_verification_keys[0], algorithm=settings.jwt_algorithm)


def decode_session_token(token: str, settings: Settings) -> dict[str, Any]:
    """Decode and validate a session token against every verification key.

    Raises:
        Unauthenticated: If no key verifies the token or it has expired.
    """
    last_exc: PyJWTError | None = None
    for key in settings.jwt_verification_keys:
        try:
            return jwt.decode(token, key, algorithms=[settings.jwt_algorithm])
        except PyJWTError as exc:
            last_exc = exc
            continue

    raise Unauthenticated(f"token rejected: {type(last_exc).__name__}") from last_exc


# ---------------------------------------------------------------------------
# Session verifier
# ---------------------------------------------------------------------------


class SessionVerifier:
    """Resolves an opaque session credential to a Principal.

    Stateless: holds only settings and a session factory for the Principal
    Store lookup. Every failure raises the same ``Unauthenticated`` so a
    caller cannot tell a bad signature from an unknown account. A transient
    storage error during the lookup raises ``StorageUnavailable`` instead.
    """

    def __init__(
        self,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        self._settings = settings
        self._session_factory = session_factory

    async def resolve(self, credential: str | None) -> Principal:
        try:
            return await self._resolve(credential)
        except Unauthenticated as exc:
            logger.debug("Session rejected: %s", exc.reason)
            raise Unauthenticated() from None

    async def _resolve(self, credential: str | None) -> Principal:
        if not credential:
            raise Unauthenticated("missing credential")

        payload = decode_session_token(credential, self._settings)
        if payload.get("type") != "access":
            raise Unauthenticated("wrong token type")

        subject = payload.get("sub")
        if not subject:
            raise Unauthenticated("missing subject claim")
        try:
            user_id = uuid.UUID(str(subject))
        except ValueError as exc:
            raise Unauthenticated("malformed subject claim") from exc

        try:
            async with self._session_factory() as session:
                principal = await PrincipalStore(session).get(user_id)
        except TRANSIENT_STORAGE_ERRORS as exc:
            logger.warning("Principal lookup failed, storage unavailable: %s", exc)
            raise StorageUnavailable(str(exc)) from exc

        if principal is None:
            raise Unauthenticated("unknown or inactive subject")
        return principal


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookie(response: Response, token: str, settings: Settings) -> None:
    """Attach the session token as an HttpOnly cookie."""
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        max_age=settings.session_expire_minutes * 60,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite=settings.session_cookie_samesite,
        path="/",
    )


def clear_session_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(key=settings.session_cookie_name, path="/")


# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------


def extract_credential(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None,
    settings: Settings,
) -> str | None:
    """Return the session token from the Authorization header or the cookie."""
    if credentials is not None:
        return credentials.credentials
    return request.cookies.get(settings.session_cookie_name)


async def get_current_principal(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    settings: Settings = Depends(get_settings),
) -> Principal:
    """FastAPI dependency that resolves the caller's Principal.

    Raises:
        Unauthenticated: For any missing or unverifiable session.
    """
    verifier = SessionVerifier(settings, request.app.state.db_session_factory)
    principal = await verifier.resolve(extract_credential(request, credentials, settings))
    request.state.user = principal
    return principal
