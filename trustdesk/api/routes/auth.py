"""Authentication API routes.

Provides:
- POST /api/v1/auth/login    (cookie-based login, rate limited)
- POST /api/v1/auth/logout   (clear the session cookie)
- GET  /api/v1/auth/me       (current principal and its capabilities)
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession

from trustdesk.api.deps import get_session
from trustdesk.core.auth import (
    check_login_password,
    clear_session_cookie,
    create_session_token,
    get_current_principal,
    set_session_cookie,
)
from trustdesk.core.config import Settings, get_settings
from trustdesk.core.database import TRANSIENT_STORAGE_ERRORS
from trustdesk.core.errors import StorageUnavailable
from trustdesk.core.permissions import capabilities
from trustdesk.core.principals import Principal, PrincipalStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])
limiter = Limiter(key_func=get_remote_address, default_limits=["100/minute"])

_INVALID_LOGIN = "Invalid email or password"


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class LoginResponse(BaseModel):
    """Response for cookie-based login.

    Omits the raw token; it is only ever set as an HttpOnly cookie.
    """

    message: str
    user_id: str
    role: str


class PrincipalResponse(BaseModel):
    id: str
    email: str
    role: str
    department: str | None = None
    capabilities: list[str]


class LogoutResponse(BaseModel):
    message: str


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


def _login_rate_limit() -> str:
    return get_settings().login_rate_limit


@router.post("/login", response_model=LoginResponse)
@limiter.limit(_login_rate_limit)
async def login(
    request: Request,
    payload: LoginRequest,
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    """Validate email + password and set the session cookie.

    Unknown accounts, wrong passwords and disabled accounts all get the
    same 401 so the endpoint cannot be used to enumerate accounts.
    """
    try:
        user = await PrincipalStore(session).get_user_by_email(payload.email)
    except TRANSIENT_STORAGE_ERRORS as exc:
        logger.warning("Login lookup failed, storage unavailable: %s", exc)
        raise StorageUnavailable(str(exc)) from exc

    password_ok = check_login_password(payload.password, user.hashed_password if user else None)
    if user is None or not password_ok:
        logger.info("Login failed for %s", payload.email)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=_INVALID_LOGIN)

    if not user.is_active:
        logger.info("Login refused for disabled account %s", user.id)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=_INVALID_LOGIN)

    principal = Principal.from_user(user)
    token = create_session_token(principal, settings)

    response = JSONResponse(
        content={"message": "Login successful", "user_id": str(user.id), "role": user.role.value},
        status_code=status.HTTP_200_OK,
    )
    set_session_cookie(response, token, settings)
    logger.info("Login succeeded for user %s", user.id)
    return response


@router.get("/me", response_model=PrincipalResponse)
async def get_me(principal: Principal = Depends(get_current_principal)) -> dict[str, Any]:
    """Get the current principal and the resource:action pairs it may perform."""
    return {
        "id": str(principal.id),
        "email": principal.email,
        "role": principal.role.value,
        "department": principal.department,
        "capabilities": capabilities(principal),
    }


@router.post("/logout", response_model=LogoutResponse)
async def logout(settings: Settings = Depends(get_settings)) -> JSONResponse:
    """Clear the session cookie.

    Tokens are stateless; a copied token stays valid until it expires.
    """
    response = JSONResponse(content={"message": "Logged out"}, status_code=status.HTTP_200_OK)
    clear_session_cookie(response, settings)
    return response
