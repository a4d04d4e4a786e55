import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import erp_access.models  # noqa: F401  registers every table on Base.metadata
from erp_access.db.base import Base
from erp_access.services.cache_service import permission_cache
from erp_access.services.permission_service import permission_service


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path}/erp_access.db")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def bootstrapped(db):
    """A store holding the system roles and a complete permission table."""
    await permission_service.get_role_permissions(db)
    return db


@pytest.fixture
def cache_events():
    """Count permission-cache publishes during a test."""
    events = []
    unsubscribe = permission_cache.subscribe(lambda: events.append(1))
    try:
        yield events
    finally:
        unsubscribe()


@pytest.fixture
def commit_counter(monkeypatch):
    """Wrap a session's commit to count store writes."""

    def install(session):
        calls = []
        original = session.commit

        async def counting_commit():
            calls.append(1)
            await original()

        monkeypatch.setattr(session, "commit", counting_commit)
        return calls

    return install
