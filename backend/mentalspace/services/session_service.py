"""Therapy session records.

Status lifecycle::

    scheduled ──► confirmed ──► completed
        │             │
        ├─────────────┴──► cancelled | no-show
        └──► completed

``completed``, ``cancelled`` and ``no-show`` are terminal.  A completed session
is part of the clinical record: it can be neither edited nor deleted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mentalspace.db.models import TherapySession
from mentalspace.errors import BusinessRuleError

logger = logging.getLogger("mentalspace.sessions")

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "scheduled": frozenset({"confirmed", "completed", "cancelled", "no-show"}),
    "confirmed": frozenset({"completed", "cancelled", "no-show"}),
    "completed": frozenset(),
    "cancelled": frozenset(),
    "no-show": frozenset(),
}


@dataclass
class SessionFilters:
    client_id: int | None = None
    therapist_id: int | None = None
    status: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


async def get_session(db: AsyncSession, session_id: int) -> TherapySession | None:
    result = await db.execute(select(TherapySession).where(TherapySession.id == session_id))
    return result.scalar_one_or_none()


async def get_session_owner_id(db: AsyncSession, session_id: int) -> int | None:
    """Return the therapist id of a session (None if the session does not exist)."""
    result = await db.execute(select(TherapySession.therapist_id).where(TherapySession.id == session_id))
    return result.scalar_one_or_none()


async def list_sessions(db: AsyncSession, filters: SessionFilters) -> list[TherapySession]:
    stmt = select(TherapySession)
    if filters.client_id is not None:
        stmt = stmt.where(TherapySession.client_id == filters.client_id)
    if filters.therapist_id is not None:
        stmt = stmt.where(TherapySession.therapist_id == filters.therapist_id)
    if filters.status:
        stmt = stmt.where(TherapySession.status == filters.status)
    if filters.start_date is not None:
        stmt = stmt.where(TherapySession.start_time >= filters.start_date)
    if filters.end_date is not None:
        stmt = stmt.where(TherapySession.end_time <= filters.end_date)
    result = await db.execute(stmt.order_by(TherapySession.start_time))
    return list(result.scalars().all())


async def create_session(db: AsyncSession, data: dict[str, Any]) -> TherapySession:
    session = TherapySession(**data)
    db.add(session)
    await db.flush()
    await db.refresh(session)
    logger.info(
        "Scheduled session %d (client=%d therapist=%d)",
        session.id,
        session.client_id,
        session.therapist_id,
    )
    return session


def _ensure_mutable(session: TherapySession, action: str) -> None:
    if session.status == "completed":
        raise BusinessRuleError(
            f"Completed sessions cannot be {action}",
            rule="completed_session_immutable",
        )


async def update_session(db: AsyncSession, session: TherapySession, changes: dict[str, Any]) -> TherapySession:
    _ensure_mutable(session, "updated")
    start = changes.get("start_time", session.start_time)
    end = changes.get("end_time", session.end_time)
    if _as_aware(end) <= _as_aware(start):
        raise BusinessRuleError("Session end time must be after start time", rule="time_range")
    for key, value in changes.items():
        setattr(session, key, value)
    session.updated_at = datetime.now(timezone.utc)
    await db.flush()
    await db.refresh(session)
    return session


async def change_status(
    db: AsyncSession,
    session: TherapySession,
    status: str,
    cancel_reason: str | None = None,
) -> TherapySession:
    if not can_transition(session.status, status):
        raise BusinessRuleError(
            f"Cannot change session status from '{session.status}' to '{status}'",
            rule="status_transition",
        )
    session.status = status
    if status in ("cancelled", "no-show"):
        session.cancel_reason = cancel_reason
    session.updated_at = datetime.now(timezone.utc)
    await db.flush()
    await db.refresh(session)
    logger.info("Session %d moved to '%s'", session.id, status)
    return session


async def delete_session(db: AsyncSession, session: TherapySession) -> None:
    _ensure_mutable(session, "deleted")
    session_id = session.id
    await db.delete(session)
    await db.flush()
    logger.info("Deleted session %d", session_id)


def _as_aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes for timezone-aware columns
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)
