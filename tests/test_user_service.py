import json

import pytest
from sqlalchemy.exc import OperationalError

from erp_access.core.config import settings
from erp_access.core.exceptions import (
    PersistenceError,
    ResourceConflictError,
    ResourceNotFoundError,
)
from erp_access.db.seeds.seed_roles import seed_roles
from erp_access.db.seeds.seed_super_admin import seed_super_admin
from erp_access.models.user import User
from erp_access.schemas.schemas import Principal
from erp_access.services.identity import identity_from_principal
from erp_access.services.role_service import role_service, system_roles
from erp_access.services.user_service import user_service

pytestmark = pytest.mark.asyncio


async def test_create_user_defaults_to_fallback_role(db):
    principal = await user_service.create_user(db, "new@erp.local", "New Hire")
    assert principal.roles == [settings.FALLBACK_ROLE]

    with pytest.raises(ResourceConflictError):
        await user_service.create_user(db, "new@erp.local", "Someone Else")


async def test_principal_drops_roles_missing_from_catalog(db):
    await role_service.get_roles(db)
    await role_service.add_role(db, "QA Reviewer")
    user = await user_service.create_user(
        db, "qa@erp.local", "QA", ["qa_reviewer", "ghost", "team_leader"]
    )

    principal = await user_service.get_principal(db, user.id)
    assert principal.roles == ["qa_reviewer", "team_leader"]

    stored = await db.get(User, user.id)
    await db.refresh(stored)
    assert json.loads(stored.roles_json) == ["qa_reviewer", "team_leader"]


async def test_principal_keeps_custom_roles_when_role_listing_degrades(db, monkeypatch):
    await role_service.get_roles(db)
    await role_service.add_role(db, "QA Reviewer")
    user = await user_service.create_user(db, "qa@erp.local", "QA", ["qa_reviewer"])

    async def system_roles_only(session):
        return system_roles()

    monkeypatch.setattr(role_service, "get_roles", system_roles_only)
    principal = await user_service.get_principal(db, user.id)
    assert principal.roles == ["qa_reviewer"]

    stored = await db.get(User, user.id)
    await db.refresh(stored)
    assert json.loads(stored.roles_json) == ["qa_reviewer"]


async def test_principal_refuses_to_sync_when_catalog_is_unreadable(db, monkeypatch):
    await role_service.get_roles(db)
    await role_service.add_role(db, "QA Reviewer")
    user = await user_service.create_user(db, "qa@erp.local", "QA", ["qa_reviewer"])

    async def broken_execute(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    monkeypatch.setattr(db, "execute", broken_execute)
    with pytest.raises(PersistenceError):
        await user_service.get_principal(db, user.id)
    monkeypatch.undo()

    stored = await db.get(User, user.id)
    await db.refresh(stored)
    assert json.loads(stored.roles_json) == ["qa_reviewer"]


async def test_role_keys_seed_an_empty_catalog(db):
    assert await role_service.get_role_keys(db) == {
        "super_admin",
        "admin",
        "team_leader",
        "personnel",
    }


async def test_principal_with_no_valid_roles_heals_to_fallback(db):
    user = await user_service.create_user(db, "gone@erp.local", "Gone", ["ghost"])
    principal = await user_service.get_principal(db, user.id)
    assert principal.roles == [settings.FALLBACK_ROLE]


async def test_principal_for_unknown_user(db):
    with pytest.raises(ResourceNotFoundError):
        await user_service.get_principal(db, 404)


async def test_set_roles_dedupes_and_never_empties(db):
    user = await user_service.create_user(db, "ops@erp.local", "Ops", ["personnel"])

    principal = await user_service.set_roles(db, user.id, ["team_leader", "personnel", "team_leader"])
    assert principal.roles == ["team_leader", "personnel"]

    principal = await user_service.set_roles(db, user.id, [])
    assert principal.roles == [settings.FALLBACK_ROLE]


async def test_identity_from_principal():
    identity = identity_from_principal(Principal(id=3, email="x@erp.local", roles=["personnel"]))
    assert identity.id == "3"
    assert identity.display_name == "x@erp.local"


async def test_super_admin_seed(db):
    assert await seed_super_admin(db) is None

    await seed_roles(db)
    admin = await seed_super_admin(db)
    assert admin.email == settings.SUPER_ADMIN_EMAIL
    assert json.loads(admin.roles_json) == [settings.SUPER_ADMIN_ROLE]

    again = await seed_super_admin(db)
    assert again.id == admin.id
    assert (await user_service.get_principal(db, admin.id)).roles == ["super_admin"]
