"""Client records: listing, lookup and mutation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from mentalspace.db.models import Client, TherapySession
from mentalspace.errors import BusinessRuleError, ResourceExistsError

logger = logging.getLogger("mentalspace.clients")

_SORT_COLUMNS = {
    "first_name": Client.first_name,
    "last_name": Client.last_name,
    "email": Client.email,
    "date_of_birth": Client.date_of_birth,
    "status": Client.status,
    "created_at": Client.created_at,
}


@dataclass
class ClientFilters:
    therapist_id: int | None = None
    status: str | None = None
    search: str | None = None
    sort_by: str = "last_name"
    sort_order: str = "asc"


async def get_client(db: AsyncSession, client_id: int) -> Client | None:
    result = await db.execute(select(Client).where(Client.id == client_id))
    return result.scalar_one_or_none()


async def get_client_owner_id(db: AsyncSession, client_id: int) -> int | None:
    """Return the primary therapist id of a client (None if missing or unassigned)."""
    result = await db.execute(select(Client.primary_therapist_id).where(Client.id == client_id))
    return result.scalar_one_or_none()


async def list_clients(
    db: AsyncSession,
    filters: ClientFilters,
    *,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[Client], int]:
    """Return ``(page_items, total_count)`` for *filters*."""
    stmt = select(Client)
    if filters.therapist_id is not None:
        stmt = stmt.where(Client.primary_therapist_id == filters.therapist_id)
    if filters.status:
        stmt = stmt.where(Client.status == filters.status)
    if filters.search:
        pattern = f"%{filters.search}%"
        stmt = stmt.where(
            or_(
                Client.first_name.ilike(pattern),
                Client.last_name.ilike(pattern),
                Client.email.ilike(pattern),
            )
        )

    total = (await db.execute(select(func.count()).select_from(stmt.subquery()))).scalar_one()

    column = _SORT_COLUMNS.get(filters.sort_by, Client.last_name)
    stmt = stmt.order_by(column.desc() if filters.sort_order == "desc" else column.asc(), Client.id)
    stmt = stmt.limit(limit).offset((page - 1) * limit)
    result = await db.execute(stmt)
    return list(result.scalars().all()), total


async def _ensure_email_free(db: AsyncSession, email: str | None, exclude_id: int | None = None) -> None:
    if not email:
        return
    stmt = select(Client.id).where(Client.email == email)
    if exclude_id is not None:
        stmt = stmt.where(Client.id != exclude_id)
    if (await db.execute(stmt.limit(1))).scalar_one_or_none() is not None:
        raise ResourceExistsError("Client", "email")


async def create_client(db: AsyncSession, data: dict[str, Any]) -> Client:
    await _ensure_email_free(db, data.get("email"))
    client = Client(**data)
    db.add(client)
    await db.flush()
    await db.refresh(client)
    logger.info("Created client %d (therapist=%s)", client.id, client.primary_therapist_id)
    return client


async def update_client(db: AsyncSession, client: Client, changes: dict[str, Any]) -> Client:
    if "email" in changes:
        await _ensure_email_free(db, changes["email"], exclude_id=client.id)
    for key, value in changes.items():
        setattr(client, key, value)
    client.updated_at = datetime.now(timezone.utc)
    await db.flush()
    await db.refresh(client)
    return client


async def delete_client(db: AsyncSession, client: Client) -> None:
    sessions = await db.execute(
        select(func.count()).select_from(TherapySession).where(TherapySession.client_id == client.id)
    )
    if sessions.scalar_one():
        raise BusinessRuleError(
            "Clients with recorded sessions cannot be deleted; discharge them instead",
            rule="client_has_sessions",
        )
    client_id = client.id
    await db.delete(client)
    await db.flush()
    logger.info("Deleted client %d", client_id)
