"""FastAPI dependency: ``get_auth_context``.

Resolves the authentication state of the current request from an
``Authorization: Bearer <jwt>`` header.  The result answers two separate
questions, mirroring a session store:

- ``is_authenticated()``: did the request present a valid, unexpired,
  unrevoked token?
- ``user``: the :class:`Principal` the token belongs to, or ``None`` when the
  account no longer exists or has been disabled.

Guards in :mod:`mentalspace.auth.roles` require both.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import jwt
from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from mentalspace.config import settings
from mentalspace.db.engine import get_db
from mentalspace.utils.logger import ctx_user_id

logger = logging.getLogger("mentalspace.auth")

_ALGORITHM = "HS256"


@dataclass(frozen=True)
class Principal:
    """Authenticated identity for a request."""

    id: int
    role: str
    username: str
    enabled: bool = True


@dataclass(frozen=True)
class AuthContext:
    """Authentication state for one request."""

    token_valid: bool = False
    user: Principal | None = None
    token_id: str | None = None
    expires_at: float | None = None

    def is_authenticated(self) -> bool:
        return self.token_valid


ANONYMOUS = AuthContext()


# ── Token revocation ───────────────────────────────────────────


class TokenRevocationList:
    """Process-local set of revoked token ids (``jti``), pruned on expiry."""

    def __init__(self) -> None:
        self._revoked: dict[str, float] = {}
        self._lock = asyncio.Lock()

    async def revoke(self, token_id: str, expires_at: float) -> None:
        async with self._lock:
            self._prune(time.time())
            self._revoked[token_id] = expires_at

    def is_revoked(self, token_id: str) -> bool:
        expires_at = self._revoked.get(token_id)
        return expires_at is not None and expires_at > time.time()

    def clear(self) -> None:
        self._revoked.clear()

    def _prune(self, now: float) -> None:
        for jti in [j for j, exp in self._revoked.items() if exp <= now]:
            del self._revoked[jti]


revoked_tokens = TokenRevocationList()


# ── JWT helpers ───────────────────────────────────────────────────────────────


def issue_token(principal: Principal, expire_minutes: int | None = None, secret: str | None = None) -> tuple[str, int]:
    """Return ``(token, expires_in_seconds)`` for *principal*."""
    minutes = expire_minutes if expire_minutes is not None else settings.AUTH_TOKEN_EXPIRE_MINUTES
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(principal.id),
        "username": principal.username,
        "role": principal.role,
        "jti": uuid.uuid4().hex,
        "iat": now,
        "exp": now + timedelta(minutes=minutes),
    }
    token = jwt.encode(payload, secret or settings.AUTH_SECRET_KEY, algorithm=_ALGORITHM)
    return token, minutes * 60


def decode_token(token: str, secret: str | None = None) -> dict | None:
    """Decode and verify an HS256 JWT.  Returns None when invalid or expired."""
    try:
        return jwt.decode(token, secret or settings.AUTH_SECRET_KEY, algorithms=[_ALGORITHM])
    except jwt.ExpiredSignatureError:
        logger.debug("Bearer token expired")
    except jwt.InvalidTokenError as exc:
        logger.debug("Bearer token rejected: %s", exc)
    return None


def _bearer_token(authorization: str | None) -> str | None:
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization.split(" ", 1)[1].strip()
        return token or None
    return None


# ── Main dependency ───────────────────────────────────────────────────────────


async def get_auth_context(
    request: Request,
    authorization: str | None = Header(default=None, alias="Authorization"),
    db: AsyncSession = Depends(get_db),
) -> AuthContext:
    """Return the :class:`AuthContext` for this request (cached on ``request.state``)."""
    cached = getattr(request.state, "auth", None)
    if cached is not None:
        return cached

    auth = await _resolve(authorization, db)
    request.state.auth = auth
    if auth.user is not None:
        ctx_user_id.set(auth.user.id)
    return auth


async def _resolve(authorization: str | None, db: AsyncSession) -> AuthContext:
    from mentalspace.services import user_service  # late import to avoid circular deps

    token = _bearer_token(authorization)
    if token is None:
        return ANONYMOUS

    payload = decode_token(token)
    if payload is None:
        return ANONYMOUS

    jti = payload.get("jti")
    if jti and revoked_tokens.is_revoked(jti):
        logger.debug("Bearer token %s has been revoked", jti)
        return ANONYMOUS

    try:
        user_id = int(payload.get("sub", ""))
    except (TypeError, ValueError):
        logger.debug("Bearer token has a non-numeric subject: %r", payload.get("sub"))
        return ANONYMOUS

    expires_at = float(payload["exp"]) if "exp" in payload else None
    user = await user_service.get_user_by_id(db, user_id)
    if user is None or user.status != "active":
        return AuthContext(token_valid=True, user=None, token_id=jti, expires_at=expires_at)

    principal = Principal(
        id=user.id,
        role=user.role,
        username=user.username,
        enabled=True,
    )
    return AuthContext(token_valid=True, user=principal, token_id=jti, expires_at=expires_at)
