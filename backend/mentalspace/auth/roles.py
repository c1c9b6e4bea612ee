"""Role hierarchy and role-gating FastAPI dependencies.

Usage::

    from mentalspace.auth.roles import Role, has_role, has_minimum_role_level

    @router.get("/users", dependencies=[Depends(has_role([Role.ADMIN, Role.PRACTICE_ADMIN]))])
    async def list_users(...): ...

    # Or inject the principal for the handler:
    @router.post("/clients")
    async def create_client(
        ...,
        principal: Principal = Depends(has_minimum_role_level(Role.INTERN)),
    ): ...

Every guard re-checks authentication itself, so a guard is safe on its own
and does not depend on ``is_authenticated`` running first.
"""

from __future__ import annotations

import logging
from enum import Enum
from types import MappingProxyType
from typing import Awaitable, Callable, Iterable, Mapping

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from mentalspace.auth.deps import AuthContext, Principal, get_auth_context
from mentalspace.db.engine import get_db
from mentalspace.errors import ForbiddenError, InternalError, UnauthorizedError
from mentalspace.utils.logger import audit_access

logger = logging.getLogger("mentalspace.auth")


class Role(str, Enum):
    ADMIN = "administrator"
    PRACTICE_ADMIN = "practice_administrator"
    ADMIN_CLINICIAN = "admin_clinician"
    SUPERVISOR = "supervisor"
    CLINICIAN = "clinician"
    INTERN = "intern"
    SCHEDULER = "scheduler"
    BILLER = "biller"
    USER = "user"


# Higher level = more privilege.  Scheduler and biller share a level.
ROLE_HIERARCHY: Mapping[str, int] = MappingProxyType({
    Role.ADMIN.value: 100,
    Role.PRACTICE_ADMIN.value: 90,
    Role.ADMIN_CLINICIAN.value: 80,
    Role.SUPERVISOR.value: 70,
    Role.CLINICIAN.value: 60,
    Role.INTERN.value: 50,
    Role.SCHEDULER.value: 40,
    Role.BILLER.value: 40,
    Role.USER.value: 10,
})

OwnerResolver = Callable[[Request, AsyncSession], Awaitable[int | None]]


def _role_key(role: str | Role) -> str:
    return role.value if isinstance(role, Role) else role


def role_level(role: str | Role) -> int | None:
    """Return the hierarchy level of *role*, or None for an unlisted role."""
    return ROLE_HIERARCHY.get(_role_key(role))


def has_minimum_role(candidate: str | Role, required: str | Role) -> bool:
    """Return True if *candidate* is at least as senior as *required*.

    Listed roles compare by level.  When either role is not in the hierarchy
    the comparison falls back to exact equality: two custom roles satisfy
    each other only when they are the same string.
    """
    candidate_key = _role_key(candidate)
    required_key = _role_key(required)
    candidate_level = ROLE_HIERARCHY.get(candidate_key)
    required_level = ROLE_HIERARCHY.get(required_key)

    if candidate_level is None or required_level is None:
        return candidate_key == required_key

    return candidate_level >= required_level


# ── Guards ──────────────────────────────────────────────────────


def _require_principal(request: Request, auth: AuthContext, action: str, **meta) -> Principal:
    """Return the principal or raise the 401 every guard shares."""
    if not auth.is_authenticated() or auth.user is None:
        audit_access(
            action,
            "anonymous",
            request.url.path,
            False,
            ip=request.client.host if request.client else None,
            method=request.method,
            **meta,
        )
        raise UnauthorizedError("Authentication required", source="auth")
    return auth.user


async def is_authenticated(
    request: Request,
    auth: AuthContext = Depends(get_auth_context),
) -> Principal:
    """Dependency: reject the request with 401 unless it is authenticated."""
    user = _require_principal(request, auth, "authenticate")
    audit_access(
        "authenticate",
        user.id,
        request.url.path,
        True,
        username=user.username,
        role=user.role,
        method=request.method,
    )
    return user


def has_role(roles: str | Role | Iterable[str | Role]):
    """Return a dependency that admits only principals whose role is in *roles*.

    Membership is exact; the hierarchy is not consulted.
    """
    if isinstance(roles, (str, Role)):
        allowed = [_role_key(roles)]
    else:
        allowed = [_role_key(r) for r in roles]

    async def _check(
        request: Request,
        auth: AuthContext = Depends(get_auth_context),
    ) -> Principal:
        user = _require_principal(request, auth, "role_check", required_roles=allowed)
        if user.role not in allowed:
            audit_access(
                "role_check",
                user.id,
                request.url.path,
                False,
                username=user.username,
                user_role=user.role,
                required_roles=allowed,
                method=request.method,
            )
            raise ForbiddenError(
                f"This action requires one of the following roles: {', '.join(allowed)}",
                required_roles=allowed,
                actual_role=user.role,
                source="auth",
            )
        audit_access(
            "role_check",
            user.id,
            request.url.path,
            True,
            username=user.username,
            role=user.role,
            method=request.method,
        )
        return user

    return _check


def has_minimum_role_level(minimum_role: str | Role):
    """Return a dependency that admits principals at or above *minimum_role*."""
    required = _role_key(minimum_role)

    async def _check(
        request: Request,
        auth: AuthContext = Depends(get_auth_context),
    ) -> Principal:
        user = _require_principal(request, auth, "minimum_role_check", minimum_role=required)
        if not has_minimum_role(user.role, required):
            audit_access(
                "minimum_role_check",
                user.id,
                request.url.path,
                False,
                username=user.username,
                user_role=user.role,
                minimum_role=required,
                method=request.method,
            )
            raise ForbiddenError(
                f"This action requires at least {required} role level",
                minimum_role=required,
                actual_role=user.role,
                source="auth",
            )
        audit_access(
            "minimum_role_check",
            user.id,
            request.url.path,
            True,
            username=user.username,
            role=user.role,
            method=request.method,
        )
        return user

    return _check


def is_owner_or_has_role(get_resource_owner_id: OwnerResolver, minimum_role: str | Role = Role.ADMIN):
    """Return a dependency that admits the resource owner or a senior-enough role.

    *get_resource_owner_id* is awaited with the request and its database
    session and returns the owning user id, or None when ownership cannot be
    established (e.g. the resource does not exist).  None is a denial, never
    an allow and never a 404: callers without access learn nothing about
    whether the resource exists.

    Principals at or above *minimum_role* skip the lookup entirely.  If the
    resolver itself fails, the failure surfaces as an internal error, not as
    a permission denial.
    """
    required = _role_key(minimum_role)

    async def _check(
        request: Request,
        auth: AuthContext = Depends(get_auth_context),
        db: AsyncSession = Depends(get_db),
    ) -> Principal:
        user = _require_principal(request, auth, "ownership_check")

        if has_minimum_role(user.role, required):
            audit_access(
                "ownership_check_bypassed",
                user.id,
                request.url.path,
                True,
                username=user.username,
                role=user.role,
                minimum_role=required,
                method=request.method,
            )
            return user

        try:
            owner_id = await get_resource_owner_id(request, db)
        except Exception as exc:
            logger.error(
                "Ownership lookup failed for %s %s: %s",
                request.method,
                request.url.path,
                exc,
            )
            raise InternalError(
                "Resource ownership lookup failed",
                original_error=type(exc).__name__,
                source="auth",
            ) from exc

        if owner_id is None:
            audit_access(
                "ownership_check",
                user.id,
                request.url.path,
                False,
                username=user.username,
                reason="Resource ownership could not be determined",
                method=request.method,
            )
            raise ForbiddenError("Resource ownership could not be determined", source="auth")

        if owner_id == user.id:
            audit_access(
                "ownership_check",
                user.id,
                request.url.path,
                True,
                username=user.username,
                owner_id=owner_id,
                method=request.method,
            )
            return user

        audit_access(
            "ownership_check",
            user.id,
            request.url.path,
            False,
            username=user.username,
            role=user.role,
            owner_id=owner_id,
            method=request.method,
        )
        raise ForbiddenError(
            "You don't have permission to access this resource",
            minimum_role=required,
            actual_role=user.role,
            source="auth",
        )

    return _check
