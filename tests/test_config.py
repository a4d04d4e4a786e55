import logging

import pytest
from sqlalchemy import inspect

import erp_access.db.session as session_module
from erp_access.core.config import Settings
from erp_access.core.logging import configure_logging, logger


def test_settings_defaults_and_env_override(monkeypatch):
    defaults = Settings(_env_file=None)
    assert defaults.FALLBACK_ROLE == "personnel"
    assert defaults.WRITE_BATCH_SIZE == 500
    assert defaults.AUDIT_FLUSH_DELAY_MS == 500

    monkeypatch.setenv("WRITE_BATCH_SIZE", "50")
    monkeypatch.setenv("PERMISSION_RELAY_ENABLED", "true")
    configured = Settings(_env_file=None)
    assert configured.WRITE_BATCH_SIZE == 50
    assert configured.PERMISSION_RELAY_ENABLED is True


def test_configure_logging_sets_package_level():
    configure_logging("warning")
    assert logger.level == logging.WARNING
    assert logging.getLogger("erp_access.audit").getEffectiveLevel() == logging.WARNING
    configure_logging("info")


@pytest.mark.asyncio
async def test_init_models_creates_tables(tmp_path, monkeypatch):
    from sqlalchemy.ext.asyncio import create_async_engine

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path}/init.db")
    monkeypatch.setattr(session_module, "engine", engine)
    try:
        await session_module.init_models()
        async with engine.connect() as conn:
            tables = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
    finally:
        await engine.dispose()

    assert {"roles", "role_permissions", "users", "audit_logs"} <= set(tables)


def test_timestamp_columns_keep_their_timezone():
    from erp_access.models.audit_log import AuditLog
    from erp_access.models.role import Role, RolePermission
    from erp_access.models.user import User

    columns = [
        AuditLog.__table__.c.created_at,
        Role.__table__.c.created_at,
        RolePermission.__table__.c.created_at,
        RolePermission.__table__.c.updated_at,
        User.__table__.c.created_at,
        User.__table__.c.updated_at,
    ]
    assert all(column.type.timezone is True for column in columns)
