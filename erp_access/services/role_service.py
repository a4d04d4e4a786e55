"""Role service — runtime-defined roles with a protected system set."""

import json
import logging
import re
from typing import List, Optional, Set

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from erp_access.core.config import settings
from erp_access.core.exceptions import (
    PersistenceError,
    ResourceConflictError,
    ResourceNotFoundError,
    SystemRoleProtectedError,
    ValidationError,
)
from erp_access.db.seeds.seed_roles import SYSTEM_ROLES, seed_roles
from erp_access.models.role import Role, RolePermission
from erp_access.models.user import User
from erp_access.schemas.schemas import RoleCreate, RoleDefinition
from erp_access.services.cache_service import permission_cache
from erp_access.services.permission_policy import RESOURCES, custom_role_permission
from erp_access.services.permission_service import permission_row
from erp_access.services.user_service import role_keys_of

logger = logging.getLogger("erp_access.roles")

SYSTEM_ROLE_KEYS = frozenset(role["key"] for role in SYSTEM_ROLES)


def slugify_role_key(value: str) -> str:
    """Turn a label like "QA Reviewer" into the slug "qa_reviewer"."""
    return re.sub(r"\s+", "_", value.strip().lower())


def system_roles() -> List[RoleDefinition]:
    """The hard-coded system roles, used when the store cannot be read."""
    return [RoleDefinition(**role) for role in SYSTEM_ROLES]


class RoleService:
    """Manages role definitions and the cascade when one is removed."""

    @staticmethod
    async def get_roles(db: AsyncSession) -> List[RoleDefinition]:
        """Return all roles, seeding the system roles into an empty store.

        Never raises on store failure: the system roles are returned instead
        so callers degrade to defaults.
        """
        try:
            result = await db.execute(select(Role).order_by(Role.id))
            roles = result.scalars().all()
            if not roles:
                await seed_roles(db)
                result = await db.execute(select(Role).order_by(Role.id))
                roles = result.scalars().all()
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.error("Error loading roles, using system roles: %s", exc)
            return system_roles()
        return [RoleDefinition.model_validate(role) for role in roles]

    @staticmethod
    async def get_role_keys(db: AsyncSession) -> Set[str]:
        """Keys of every stored role, seeding the system roles into an empty store.

        Unlike get_roles there is no fallback: callers that rewrite role
        assignments must not act on a degraded catalog.

        Raises:
            PersistenceError: If the store cannot be read.
        """
        try:
            result = await db.execute(select(Role.key))
            keys = set(result.scalars().all())
            if not keys:
                await seed_roles(db)
                result = await db.execute(select(Role.key))
                keys = set(result.scalars().all())
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.error("Error loading role keys: %s", exc)
            raise PersistenceError("Roles could not be loaded") from exc
        return keys

    @staticmethod
    async def get_role(db: AsyncSession, key: str) -> RoleDefinition:
        result = await db.execute(select(Role).where(Role.key == key))
        role = result.scalars().first()
        if role is None:
            raise ResourceNotFoundError(f"Role '{key}' not found")
        return RoleDefinition.model_validate(role)

    @staticmethod
    async def add_role(
        db: AsyncSession,
        label: str,
        color: str = "bg-gray-500",
        key: Optional[str] = None,
    ) -> RoleDefinition:
        """Create a custom role and give it a read-only row per resource.

        Raises:
            ValidationError: If no slug can be derived.
            ResourceConflictError: If the slug is already taken.
            PersistenceError: If the store rejects the writes.
        """
        role_key = slugify_role_key(key or label)
        if not role_key:
            raise ValidationError("Role key cannot be empty")

        result = await db.execute(select(Role).where(Role.key == role_key))
        if result.scalars().first() is not None:
            raise ResourceConflictError(f"Role '{role_key}' already exists")

        try:
            role = Role(key=role_key, label=label.strip(), color=color, is_system=False)
            db.add(role)

            # Leftovers from an interrupted delete keep their row.
            result = await db.execute(
                select(RolePermission.resource).where(RolePermission.role == role_key)
            )
            present = set(result.scalars().all())
            for resource in RESOURCES:
                if resource not in present:
                    db.add(permission_row(custom_role_permission(role_key, resource)))
            await db.commit()
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.error("Error adding role %s: %s", role_key, exc)
            raise PersistenceError("Role could not be added") from exc

        logger.info("Added role %s", role_key)
        permission_cache.publish(role_key)
        return RoleDefinition.model_validate(role)

    @staticmethod
    async def create_role(db: AsyncSession, payload: RoleCreate) -> RoleDefinition:
        """add_role for a validated request body."""
        return await RoleService.add_role(db, payload.label, color=payload.color, key=payload.key)

    @staticmethod
    async def delete_role(db: AsyncSession, key: str) -> int:
        """Remove a role from every user, then the role and its permission rows.

        Not atomic. A failure part-way leaves some users already healed;
        calling again finishes the job. Returns the number of users updated.

        Raises:
            SystemRoleProtectedError: For system roles, before any write.
            PersistenceError: If the store rejects a write.
        """
        # The catalog may not be seeded yet, so the built-in list is checked first.
        if key in SYSTEM_ROLE_KEYS:
            raise SystemRoleProtectedError(key)

        result = await db.execute(select(Role).where(Role.key == key))
        role = result.scalars().first()
        if role is not None and role.is_system:
            raise SystemRoleProtectedError(key)

        healed = 0
        try:
            result = await db.execute(select(User).order_by(User.id))
            pending = 0
            for user in result.scalars().all():
                roles = role_keys_of(user)
                if key not in roles:
                    continue
                remaining = [r for r in roles if r != key] or [settings.FALLBACK_ROLE]
                user.roles_json = json.dumps(remaining)
                pending += 1
                healed += 1
                if pending >= settings.WRITE_BATCH_SIZE:
                    await db.commit()
                    pending = 0
            if pending:
                await db.commit()

            if role is not None:
                await db.delete(role)
                await db.commit()

            await db.execute(delete(RolePermission).where(RolePermission.role == key))
            await db.commit()
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.error("Error deleting role %s after healing %d users: %s", key, healed, exc)
            raise PersistenceError("Role could not be deleted") from exc

        logger.info("Deleted role %s (%d users updated)", key, healed)
        permission_cache.publish(key)
        return healed


role_service = RoleService()
