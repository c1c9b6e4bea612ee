"""Authentication API: login, identity and logout.

Endpoints
---------
POST /api/auth/login       username + password -> bearer JWT (rate limited per client address)
GET  /api/auth/me          current principal
POST /api/auth/logout      revoke the presented token
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from mentalspace.auth.deps import AuthContext, Principal, get_auth_context, issue_token, revoked_tokens
from mentalspace.auth.roles import is_authenticated
from mentalspace.config import settings
from mentalspace.db.engine import get_db
from mentalspace.errors import InvalidCredentialsError, ResourceNotFoundError
from mentalspace.schemas.users import LoginRequest, MeResponse, TokenResponse
from mentalspace.services import user_service
from mentalspace.utils.logger import audit_access
from mentalspace.utils.token_bucket import acquire_rate_limit

logger = logging.getLogger("mentalspace.api.auth")
router = APIRouter()


@router.post("/login", response_model=TokenResponse, summary="Login with username + password")
async def login(
    body: LoginRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> TokenResponse:
    client_ip = request.client.host if request.client else "unknown"
    await acquire_rate_limit(f"login:{client_ip}", settings.LOGIN_RATE_LIMIT_PER_MINUTE)

    user = await user_service.authenticate(db, body.username, body.password)
    if user is None:
        audit_access("login", body.username or "anonymous", request.url.path, False, ip=client_ip)
        raise InvalidCredentialsError(source="auth")

    principal = Principal(id=user.id, role=user.role, username=user.username)
    token, expires_in = issue_token(principal)
    audit_access("login", user.id, request.url.path, True, username=user.username, ip=client_ip)
    logger.info("Login: user='%s' role='%s'", user.username, user.role)
    return TokenResponse(
        access_token=token,
        expires_in=expires_in,
        user_id=user.id,
        username=user.username,
        role=user.role,
    )


@router.get("/me", response_model=MeResponse, summary="Return the current principal")
async def me(
    principal: Principal = Depends(is_authenticated),
    db: AsyncSession = Depends(get_db),
) -> MeResponse:
    user = await user_service.get_user_by_id(db, principal.id)
    if user is None:
        raise ResourceNotFoundError("User", principal.id)
    return MeResponse(
        id=user.id,
        username=user.username,
        role=user.role,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
    )


@router.post("/logout", summary="Revoke the presented bearer token")
async def logout(
    principal: Principal = Depends(is_authenticated),
    auth: AuthContext = Depends(get_auth_context),
) -> dict:
    if auth.token_id and auth.expires_at is not None:
        await revoked_tokens.revoke(auth.token_id, auth.expires_at)
    logger.info("Logout: user='%s'", principal.username)
    return {"message": "Logged out successfully"}
