"""Clients API.

Endpoints
---------
GET    /api/clients         paginated list; non-administrators only see their own clients
POST   /api/clients         create (intern and above)
GET    /api/clients/{id}    primary therapist or administrator
PATCH  /api/clients/{id}    primary therapist or administrator
DELETE /api/clients/{id}    practice_administrator and above
"""

from __future__ import annotations

import logging
from typing import Literal

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from mentalspace.auth.deps import Principal
from mentalspace.auth.roles import (
    Role,
    has_minimum_role,
    has_minimum_role_level,
    is_authenticated,
    is_owner_or_has_role,
)
from mentalspace.db.engine import get_db
from mentalspace.errors import ResourceNotFoundError
from mentalspace.schemas.clients import (
    ClientCreate,
    ClientOut,
    ClientPage,
    ClientSortField,
    ClientStatusFilter,
    ClientUpdate,
)
from mentalspace.services import client_service
from mentalspace.services.client_service import ClientFilters

logger = logging.getLogger("mentalspace.api.clients")
router = APIRouter()


def path_int(request: Request, name: str) -> int | None:
    try:
        return int(request.path_params[name])
    except (KeyError, TypeError, ValueError):
        return None


async def client_owner(request: Request, db: AsyncSession) -> int | None:
    client_id = path_int(request, "client_id")
    if client_id is None:
        return None
    return await client_service.get_client_owner_id(db, client_id)


can_access_client = is_owner_or_has_role(client_owner)

_REQUIRED_FIELDS = frozenset({"first_name", "last_name", "status"})


async def _load(db: AsyncSession, client_id: int):
    client = await client_service.get_client(db, client_id)
    if client is None:
        raise ResourceNotFoundError("Client", client_id)
    return client


@router.get("", response_model=ClientPage)
async def list_clients(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    status_filter: ClientStatusFilter | None = Query(default=None, alias="status"),
    search: str | None = Query(default=None, max_length=128),
    therapist_id: int | None = Query(default=None, ge=1),
    sort_by: ClientSortField = Query(default="last_name"),
    sort_order: Literal["asc", "desc"] = Query(default="asc"),
    principal: Principal = Depends(is_authenticated),
    db: AsyncSession = Depends(get_db),
) -> ClientPage:
    filters = ClientFilters(
        therapist_id=therapist_id,
        status=None if status_filter == "all" else status_filter,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    if not has_minimum_role(principal.role, Role.ADMIN):
        filters.therapist_id = principal.id

    items, total = await client_service.list_clients(db, filters, page=page, limit=limit)
    return ClientPage(
        items=[ClientOut.model_validate(c) for c in items],
        total=total,
        page=page,
        limit=limit,
    )


@router.post("", response_model=ClientOut, status_code=status.HTTP_201_CREATED)
async def create_client(
    body: ClientCreate,
    principal: Principal = Depends(has_minimum_role_level(Role.INTERN)),
    db: AsyncSession = Depends(get_db),
) -> ClientOut:
    data = body.model_dump()
    if data["primary_therapist_id"] is None:
        data["primary_therapist_id"] = principal.id
    client = await client_service.create_client(db, data)
    return ClientOut.model_validate(client)


@router.get("/{client_id}", response_model=ClientOut)
async def get_client(
    client_id: int,
    principal: Principal = Depends(can_access_client),
    db: AsyncSession = Depends(get_db),
) -> ClientOut:
    return ClientOut.model_validate(await _load(db, client_id))


@router.patch("/{client_id}", response_model=ClientOut)
async def update_client(
    client_id: int,
    body: ClientUpdate,
    principal: Principal = Depends(can_access_client),
    db: AsyncSession = Depends(get_db),
) -> ClientOut:
    client = await _load(db, client_id)
    changes = {
        key: value
        for key, value in body.model_dump(exclude_unset=True).items()
        if value is not None or key not in _REQUIRED_FIELDS
    }
    # reassignment stays with administrators
    if "primary_therapist_id" in changes and not has_minimum_role(principal.role, Role.ADMIN):
        changes.pop("primary_therapist_id")
    client = await client_service.update_client(db, client, changes)
    return ClientOut.model_validate(client)


@router.delete("/{client_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_client(
    client_id: int,
    principal: Principal = Depends(has_minimum_role_level(Role.PRACTICE_ADMIN)),
    db: AsyncSession = Depends(get_db),
) -> Response:
    client = await _load(db, client_id)
    await client_service.delete_client(db, client)
    logger.info("Client %d deleted by '%s'", client_id, principal.username)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
