"""Seed the system roles into the database."""

import logging
from typing import List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from erp_access.models.role import Role

logger = logging.getLogger("erp_access.seeds")

SYSTEM_ROLES = [
    {"key": "super_admin", "label": "Super Admin", "color": "bg-red-500", "is_system": True},
    {"key": "admin", "label": "Admin", "color": "bg-orange-500", "is_system": True},
    {"key": "team_leader", "label": "Team Leader", "color": "bg-blue-500", "is_system": True},
    {"key": "personnel", "label": "Personnel", "color": "bg-green-500", "is_system": True},
]


async def seed_roles(db: AsyncSession) -> List[Role]:
    """Insert the system roles that don't already exist. Returns the inserted rows."""
    result = await db.execute(select(Role.key))
    existing = set(result.scalars().all())

    created = []
    for role_data in SYSTEM_ROLES:
        if role_data["key"] not in existing:
            role = Role(**role_data)
            db.add(role)
            created.append(role)

    if created:
        await db.commit()
        logger.info("Seeded %d system roles", len(created))
    return created
