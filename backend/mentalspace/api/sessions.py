"""Therapy sessions API.

Endpoints
---------
GET    /api/sessions                 list; non-administrators only see their own sessions
POST   /api/sessions                 schedule (intern and above, for clients on their caseload)
GET    /api/sessions/{id}            assigned therapist or administrator
PATCH  /api/sessions/{id}            reschedule / edit details (not once completed)
PATCH  /api/sessions/{id}/status     move through the status lifecycle
DELETE /api/sessions/{id}            remove (not once completed)
"""

from __future__ import annotations

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from mentalspace.api.clients import path_int
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
from mentalspace.schemas.sessions import (
    SessionCreate,
    SessionOut,
    SessionStatus,
    SessionStatusUpdate,
    SessionUpdate,
)
from mentalspace.services import client_service, session_service
from mentalspace.services.session_service import SessionFilters

logger = logging.getLogger("mentalspace.api.sessions")
router = APIRouter()


async def session_owner(request: Request, db: AsyncSession) -> int | None:
    session_id = path_int(request, "session_id")
    if session_id is None:
        return None
    return await session_service.get_session_owner_id(db, session_id)


can_access_session = is_owner_or_has_role(session_owner)


async def booked_client_owner(request: Request, db: AsyncSession) -> int | None:
    try:
        payload = await request.json()
        client_id = int(payload["client_id"])
    except (KeyError, TypeError, ValueError):
        # missing or malformed body: ownership is indeterminate
        return None
    return await client_service.get_client_owner_id(db, client_id)


# only the client's primary therapist (or an administrator) may book for them
can_book_for_client = is_owner_or_has_role(booked_client_owner)

_NULLABLE_FIELDS = frozenset({"notes", "location", "cpt_code"})


async def _load(db: AsyncSession, session_id: int):
    session = await session_service.get_session(db, session_id)
    if session is None:
        raise ResourceNotFoundError("Session", session_id)
    return session


@router.get("", response_model=list[SessionOut])
async def list_sessions(
    client_id: int | None = Query(default=None, ge=1),
    therapist_id: int | None = Query(default=None, ge=1),
    status_filter: SessionStatus | None = Query(default=None, alias="status"),
    start_date: datetime | None = Query(default=None),
    end_date: datetime | None = Query(default=None),
    principal: Principal = Depends(is_authenticated),
    db: AsyncSession = Depends(get_db),
) -> list[SessionOut]:
    filters = SessionFilters(
        client_id=client_id,
        therapist_id=therapist_id,
        status=status_filter,
        start_date=start_date,
        end_date=end_date,
    )
    if not has_minimum_role(principal.role, Role.ADMIN):
        filters.therapist_id = principal.id
    sessions = await session_service.list_sessions(db, filters)
    return [SessionOut.model_validate(s) for s in sessions]


@router.post(
    "",
    response_model=SessionOut,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(has_minimum_role_level(Role.INTERN))],
)
async def create_session(
    body: SessionCreate,
    principal: Principal = Depends(can_book_for_client),
    db: AsyncSession = Depends(get_db),
) -> SessionOut:
    if await client_service.get_client(db, body.client_id) is None:
        raise ResourceNotFoundError("Client", body.client_id)

    data = body.model_dump()
    # only supervisors and above may book on another therapist's calendar
    if data["therapist_id"] is None or not has_minimum_role(principal.role, Role.SUPERVISOR):
        data["therapist_id"] = principal.id
    session = await session_service.create_session(db, data)
    return SessionOut.model_validate(session)


@router.get("/{session_id}", response_model=SessionOut)
async def get_session(
    session_id: int,
    principal: Principal = Depends(can_access_session),
    db: AsyncSession = Depends(get_db),
) -> SessionOut:
    return SessionOut.model_validate(await _load(db, session_id))


@router.patch("/{session_id}", response_model=SessionOut)
async def update_session(
    session_id: int,
    body: SessionUpdate,
    principal: Principal = Depends(can_access_session),
    db: AsyncSession = Depends(get_db),
) -> SessionOut:
    session = await _load(db, session_id)
    changes = {
        key: value
        for key, value in body.model_dump(exclude_unset=True).items()
        if value is not None or key in _NULLABLE_FIELDS
    }
    session = await session_service.update_session(db, session, changes)
    return SessionOut.model_validate(session)


@router.patch("/{session_id}/status", response_model=SessionOut)
async def change_session_status(
    session_id: int,
    body: SessionStatusUpdate,
    principal: Principal = Depends(can_access_session),
    db: AsyncSession = Depends(get_db),
) -> SessionOut:
    session = await _load(db, session_id)
    session = await session_service.change_status(db, session, body.status, body.cancel_reason)
    return SessionOut.model_validate(session)


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_session(
    session_id: int,
    principal: Principal = Depends(can_access_session),
    db: AsyncSession = Depends(get_db),
) -> Response:
    session = await _load(db, session_id)
    await session_service.delete_session(db, session)
    logger.info("Session %d deleted by '%s'", session_id, principal.username)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
