"""Staff account administration.

Endpoints
---------
GET    /api/admin/users        list users (administrator | practice_administrator)
POST   /api/admin/users        create user (administrator)
PATCH  /api/admin/users/{id}   update name / email / role / status / password (administrator)
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from mentalspace.auth.deps import Principal
from mentalspace.auth.roles import Role, has_role
from mentalspace.db.engine import get_db
from mentalspace.errors import ResourceNotFoundError
from mentalspace.schemas.users import UserCreate, UserOut, UserUpdate
from mentalspace.services import user_service

logger = logging.getLogger("mentalspace.api.admin")
router = APIRouter()


@router.get(
    "/users",
    response_model=list[UserOut],
    dependencies=[Depends(has_role([Role.ADMIN, Role.PRACTICE_ADMIN]))],
)
async def list_users(
    role: str | None = Query(default=None),
    db: AsyncSession = Depends(get_db),
) -> list[UserOut]:
    users = await user_service.list_users(db, role=role)
    return [UserOut.model_validate(u) for u in users]


@router.post("/users", response_model=UserOut, status_code=status.HTTP_201_CREATED)
async def create_user(
    body: UserCreate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(has_role(Role.ADMIN)),
) -> UserOut:
    user = await user_service.create_user(db, **body.model_dump())
    logger.info("User '%s' created by '%s'", user.username, principal.username)
    return UserOut.model_validate(user)


@router.patch("/users/{user_id}", response_model=UserOut)
async def update_user(
    user_id: int,
    body: UserUpdate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(has_role(Role.ADMIN)),
) -> UserOut:
    user = await user_service.get_user_by_id(db, user_id)
    if user is None:
        raise ResourceNotFoundError("User", user_id)
    user = await user_service.update_user(db, user, **body.model_dump(exclude_unset=True))
    logger.info("User %d updated by '%s'", user_id, principal.username)
    return UserOut.model_validate(user)
