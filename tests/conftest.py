"""
Shared pytest fixtures for the access control tests.

Provides:
- Database fixtures (a fresh SQLite file per test, sessions)
- Catalog, registry and resolver wired to the test session
- Seeded catalog and system roles (through the seed script)
- In-memory audit sinks
- API client with dependency overrides
"""
from typing import AsyncGenerator, Iterable, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.core.database.base import Base
from app.core.database.engine import get_db, import_models
from app.features.permissions.catalog import CatalogSnapshotCache, PermissionCatalog
from app.features.permissions.dependencies import get_audit_sink
from app.features.permissions.resolver import PermissionResolver
from app.features.roles.registry import RoleRegistry
from app.features.users.models import User
from app.main import app
from scripts.seed_permissions import seed_permissions, seed_roles
from tests.utils.helpers import MemoryAuditSink


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture
async def db_engine(tmp_path):
    """Engine on a throwaway SQLite file with every table created."""
    import_models()
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def uncached() -> CatalogSnapshotCache:
    """A disabled cache so every lookup hits the database."""
    return CatalogSnapshotCache(ttl=0)


@pytest.fixture
def catalog(db, uncached) -> PermissionCatalog:
    return PermissionCatalog(db, cache=uncached)


@pytest.fixture
def registry(db, catalog) -> RoleRegistry:
    return RoleRegistry(db, catalog)


@pytest.fixture
def resolver(catalog, registry) -> PermissionResolver:
    return PermissionResolver(catalog, registry)


@pytest.fixture
async def seeded(catalog, registry):
    """Default permission catalog plus the system roles."""
    await seed_permissions(catalog)
    await seed_roles(registry, catalog)


# ============================================================================
# Factories
# ============================================================================

@pytest.fixture
def make_user(db, registry):
    """
    Create users for a test.

    ``permissions=None`` copies the role defaults, as user registration does.
    """
    counter = {"n": 0}

    async def _make_user(
        role: str = "cliente",
        permissions: Optional[Iterable[str]] = None,
        email: Optional[str] = None,
        is_active: bool = True,
    ) -> User:
        counter["n"] += 1
        if permissions is None:
            permissions = await registry.default_permissions_for(role)
        user = User(
            email=email or f"user{counter['n']}@vetclinic.com",
            name=f"User {counter['n']}",
            role=role,
            permissions=sorted(permissions),
            is_active=is_active,
        )
        db.add(user)
        await db.commit()
        await db.refresh(user)
        return user

    return _make_user


# ============================================================================
# API Client Fixtures
# ============================================================================

@pytest.fixture
def audit_sink() -> MemoryAuditSink:
    return MemoryAuditSink()


@pytest.fixture
async def client(session_factory, audit_sink) -> AsyncGenerator[AsyncClient, None]:
    """
    API client bound to the test database and the in-memory audit sink.

    Background tasks finish before the response is returned to the test, so
    audit records are available right after each call.
    """
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_audit_sink] = lambda: audit_sink

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
