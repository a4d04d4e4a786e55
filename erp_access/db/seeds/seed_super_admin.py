"""Seed the super-admin principal from env vars."""

import json
import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from erp_access.core.config import settings
from erp_access.models.role import Role
from erp_access.models.user import User

logger = logging.getLogger("erp_access.seeds")


async def seed_super_admin(db: AsyncSession) -> Optional[User]:
    """Create the super-admin user if not already present."""
    result = await db.execute(select(Role).where(Role.key == settings.SUPER_ADMIN_ROLE))
    if result.scalars().first() is None:
        logger.warning("%s role not found. Run seed_roles first.", settings.SUPER_ADMIN_ROLE)
        return None

    result = await db.execute(select(User).where(User.email == settings.SUPER_ADMIN_EMAIL))
    existing = result.scalars().first()
    if existing:
        logger.info("Super admin '%s' already exists, skipping.", settings.SUPER_ADMIN_EMAIL)
        return existing

    admin = User(
        email=settings.SUPER_ADMIN_EMAIL,
        full_name=settings.SUPER_ADMIN_NAME,
        roles_json=json.dumps([settings.SUPER_ADMIN_ROLE]),
        is_active=True,
    )
    db.add(admin)
    await db.commit()
    logger.info("Created super admin: %s", settings.SUPER_ADMIN_EMAIL)
    return admin
