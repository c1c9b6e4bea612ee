"""Staff account service: CRUD with bcrypt password hashing.

A default ``administrator`` account is seeded at startup when no account with
that role exists (see ``SEED_DEFAULT_ADMIN``).
Default credentials:  username=admin  password=admin123  (change in production!)
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

import bcrypt
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from mentalspace.auth.roles import ROLE_HIERARCHY, Role
from mentalspace.db.models import User
from mentalspace.errors import BusinessRuleError, ResourceExistsError

logger = logging.getLogger("mentalspace.users")

VALID_ROLES = tuple(ROLE_HIERARCHY)
VALID_STATUSES = ("active", "inactive")


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(plain.encode(), hashed.encode())
    except ValueError:
        # malformed hash in the database
        logger.warning("Stored password hash is not a valid bcrypt hash")
        return False


# ── CRUD ──────────────────────────────────────────────────────


async def get_user_by_username(db: AsyncSession, username: str) -> User | None:
    result = await db.execute(select(User).where(User.username == username))
    return result.scalar_one_or_none()


async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    result = await db.execute(select(User).where(User.email == email))
    return result.scalar_one_or_none()


async def get_user_by_id(db: AsyncSession, user_id: int) -> User | None:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def list_users(db: AsyncSession, *, role: str | None = None) -> list[User]:
    stmt = select(User).order_by(User.last_name, User.first_name)
    if role:
        stmt = stmt.where(User.role == role)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def create_user(
    db: AsyncSession,
    *,
    username: str,
    email: str,
    password: str,
    first_name: str,
    last_name: str,
    role: str = Role.USER.value,
    license_type: str | None = None,
    license_number: str | None = None,
) -> User:
    if await get_user_by_username(db, username) is not None:
        raise ResourceExistsError("User", "username")
    if await get_user_by_email(db, email) is not None:
        raise ResourceExistsError("User", "email")

    user = User(
        username=username,
        email=email,
        password_hash=hash_password(password),
        first_name=first_name,
        last_name=last_name,
        role=role,
        status="active",
        license_type=license_type,
        license_number=license_number,
    )
    db.add(user)
    await db.flush()
    await db.refresh(user)
    logger.info("Created user '%s' with role '%s'", username, role)
    return user


async def update_user(
    db: AsyncSession,
    user: User,
    *,
    first_name: str | None = None,
    last_name: str | None = None,
    email: str | None = None,
    role: str | None = None,
    status: str | None = None,
    password: str | None = None,
) -> User:
    if email is not None and email != user.email:
        if await get_user_by_email(db, email) is not None:
            raise ResourceExistsError("User", "email")
        user.email = email
    if (role is not None and role != Role.ADMIN.value) or (status is not None and status != "active"):
        if user.role == Role.ADMIN.value and user.status == "active":
            await _ensure_not_last_admin(db, user)
    if role is not None:
        user.role = role
    if status is not None:
        user.status = status
    if first_name is not None:
        user.first_name = first_name
    if last_name is not None:
        user.last_name = last_name
    if password is not None:
        user.password_hash = hash_password(password)
    user.updated_at = datetime.now(timezone.utc)
    await db.flush()
    await db.refresh(user)
    return user


async def _ensure_not_last_admin(db: AsyncSession, user: User) -> None:
    result = await db.execute(
        select(func.count()).select_from(User).where(
            User.role == Role.ADMIN.value,
            User.status == "active",
            User.id != user.id,
        )
    )
    if result.scalar_one() == 0:
        raise BusinessRuleError(
            "Cannot demote or disable the last active administrator",
            rule="last_admin",
        )


async def authenticate(db: AsyncSession, username: str, password: str) -> User | None:
    """Verify username + password. Returns User on success, None on failure."""
    user = await get_user_by_username(db, username)
    if not user or user.status != "active":
        return None
    if not verify_password(password, user.password_hash):
        return None
    return user


async def ensure_default_admin(db: AsyncSession) -> None:
    """Seed a default administrator if no administrator account exists yet."""
    result = await db.execute(select(User).where(User.role == Role.ADMIN.value).limit(1))
    if result.scalar_one_or_none() is None:
        await create_user(
            db,
            username="admin",
            email="admin@localhost",
            password="admin123",
            first_name="Practice",
            last_name="Administrator",
            role=Role.ADMIN.value,
        )
        await db.commit()
        logger.info(
            "Seeded default administrator (username=admin, password=admin123). "
            "Change this immediately in production!"
        )
