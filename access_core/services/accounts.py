from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from access_core.core.errors import AccountConflict
from access_core.core.permissions import (
    ADMIN_ROLE,
    DEFAULT_ROLE_CAPABILITIES,
    CapabilitySet,
)
from access_core.core.security import get_password_hash
from access_core.models.role_permission import RolePermission
from access_core.models.user import User

logger = logging.getLogger(__name__)


async def find_by_handle(db: AsyncSession, handle: str) -> Optional[User]:
    """Look an account up by username or email, case-insensitively."""
    needle = handle.strip().lower()
    if not needle:
        return None
    stmt = select(User).where(
        or_(func.lower(User.username) == needle, func.lower(User.email) == needle)
    )
    result = await db.execute(stmt)
    return result.scalars().first()


async def count_admins(db: AsyncSession) -> int:
    stmt = select(func.count()).select_from(User).where(User.role == ADMIN_ROLE)
    result = await db.execute(stmt)
    return result.scalar() or 0


async def ensure_available(
    db: AsyncSession,
    *,
    username: Optional[str] = None,
    email: Optional[str] = None,
    exclude_user_id=None,
) -> None:
    conditions = []
    if username:
        conditions.append(func.lower(User.username) == username.strip().lower())
    if email:
        conditions.append(func.lower(User.email) == email.strip().lower())
    if not conditions:
        return
    stmt = select(User.id).where(or_(*conditions))
    if exclude_user_id is not None:
        stmt = stmt.where(User.id != exclude_user_id)
    result = await db.execute(stmt.limit(1))
    if result.first() is not None:
        raise AccountConflict()


async def create_account(
    db: AsyncSession,
    *,
    username: str,
    email: str,
    password: str,
    role: str,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
) -> User:
    await ensure_available(db, username=username, email=email)
    user = User(
        username=username.strip(),
        email=email.strip().lower(),
        hashed_password=get_password_hash(password),
        role=role,
        first_name=first_name,
        last_name=last_name,
        is_active=True,
        mfa_enabled=False,
        login_count=0,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


async def record_login(db: AsyncSession, user: User, *, now: Optional[datetime] = None) -> None:
    """Bump the login counter in SQL so concurrent logins are all counted."""
    now = now or datetime.now(timezone.utc)
    stmt = (
        update(User)
        .where(User.id == user.id)
        .values(login_count=User.login_count + 1, last_login_at=now)
        .returning(User.login_count)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    new_count = result.scalar_one_or_none()
    await db.commit()
    user.login_count = new_count if new_count is not None else (user.login_count or 0) + 1
    user.last_login_at = now


async def load_capabilities(db: AsyncSession, role: str) -> CapabilitySet:
    result = await db.execute(select(RolePermission).where(RolePermission.role == role))
    row = result.scalar_one_or_none()
    if row is None:
        return CapabilitySet.for_role(role)
    return CapabilitySet(role, row.capabilities or [])


async def ensure_default_role_permissions(db: AsyncSession) -> int:
    """Insert capability rows for built-in roles that have none; returns rows added."""
    result = await db.execute(select(RolePermission.role))
    existing = set(result.scalars().all())
    added = 0
    for role, capabilities in DEFAULT_ROLE_CAPABILITIES.items():
        if role in existing:
            continue
        db.add(RolePermission(role=role, capabilities=sorted(capabilities)))
        added += 1
    if added:
        await db.commit()
        logger.info("Seeded default role permissions", extra={"roles_added": added})
    return added
