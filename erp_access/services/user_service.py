"""User service — principals and their role sets."""

import json
import logging
from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from erp_access.core.config import settings
from erp_access.core.exceptions import (
    PersistenceError,
    ResourceConflictError,
    ResourceNotFoundError,
)
from erp_access.models.user import User
from erp_access.schemas.schemas import Principal

logger = logging.getLogger("erp_access.users")


def role_keys_of(user: User) -> List[str]:
    """Decode a user's stored role list, tolerating legacy scalar values."""
    if not user.roles_json:
        return []
    roles = json.loads(user.roles_json)
    if isinstance(roles, str):
        return [roles]
    return [str(role) for role in roles]


def normalize_roles(roles: Iterable[str]) -> List[str]:
    """Deduplicate while keeping order; an empty result becomes the fallback role."""
    seen = []
    for role in roles:
        if role and role not in seen:
            seen.append(role)
    return seen or [settings.FALLBACK_ROLE]


def to_principal(user: User) -> Principal:
    return Principal(
        id=user.id,
        email=user.email,
        full_name=user.full_name,
        roles=role_keys_of(user),
    )


class UserService:
    """Loads principals and keeps their role sets valid."""

    @staticmethod
    async def get_user(db: AsyncSession, user_id: int) -> User:
        """Get a user by id."""
        user = await db.get(User, user_id)
        if user is None:
            raise ResourceNotFoundError(f"User {user_id} not found")
        return user

    @staticmethod
    async def get_principal(db: AsyncSession, user_id: int) -> Principal:
        """Load a user as a principal, syncing roles with the role catalog.

        Roles that no longer exist are dropped; an empty set heals to the
        fallback role. The corrected set is written back.

        Raises:
            ResourceNotFoundError: For an unknown user id.
            PersistenceError: If the role catalog cannot be read. The stored
                roles are left untouched in that case.
        """
        from erp_access.services.role_service import role_service

        user = await UserService.get_user(db, user_id)
        defined = await role_service.get_role_keys(db)
        stored = role_keys_of(user)
        synced = normalize_roles(role for role in stored if role in defined)

        if synced != stored:
            try:
                user.roles_json = json.dumps(synced)
                await db.commit()
            except SQLAlchemyError as exc:
                await db.rollback()
                logger.error("Error syncing roles for user %s: %s", user_id, exc)
                raise PersistenceError("User roles could not be updated") from exc
            logger.info("Synced roles for user %s: %s -> %s", user_id, stored, synced)
        return to_principal(user)

    @staticmethod
    async def set_roles(db: AsyncSession, user_id: int, roles: Iterable[str]) -> Principal:
        """Replace a user's role set. Never leaves it empty."""
        user = await UserService.get_user(db, user_id)
        try:
            user.roles_json = json.dumps(normalize_roles(roles))
            await db.commit()
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.error("Error setting roles for user %s: %s", user_id, exc)
            raise PersistenceError("User roles could not be updated") from exc
        return to_principal(user)

    @staticmethod
    async def create_user(
        db: AsyncSession,
        email: str,
        full_name: str,
        roles: Optional[Iterable[str]] = None,
    ) -> Principal:
        """Create a new user holding the given roles (fallback role if none)."""
        result = await db.execute(select(User).where(User.email == email))
        if result.scalars().first() is not None:
            raise ResourceConflictError(f"User with email {email} already exists")

        user = User(
            email=email,
            full_name=full_name,
            roles_json=json.dumps(normalize_roles(roles or [])),
            is_active=True,
        )
        try:
            db.add(user)
            await db.commit()
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.error("Error creating user %s: %s", email, exc)
            raise PersistenceError("User could not be created") from exc
        return to_principal(user)


user_service = UserService()
