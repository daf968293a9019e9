"""Pytest configuration and fixtures for menuguard tests.

Core decision logic runs against in-memory fakes (store client,
revocation list, clock). The SQLAlchemy store client, the role service
and the HTTP layer run against a throwaway SQLite database via aiosqlite.
"""

import asyncio
import time
import uuid
from datetime import datetime, timedelta
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import menuguard.models  # noqa: F401
from menuguard.auth.jwt import create_access_token
from menuguard.auth.session import IdentityGate
from menuguard.database import Base
from menuguard.middleware.exceptions import StoreUnavailable
from menuguard.models.user import User
from menuguard.rbac.permissions import PERMISSIONS, ROLE_DEFAULTS, SYSTEM_ROLES
from menuguard.rbac.resolver import PermissionResolver
from menuguard.rbac.store import PermissionStoreClient, SQLAlchemyPermissionStore
from menuguard.rbac.types import Assignment, PermissionInfo, RoleInfo
from menuguard.services.roles import seed_catalog

NOW = datetime(2026, 10, 19, 12, 0, 0)


# ── Fakes ────────────────────────────────────────────────────────

class FakeClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeStore(PermissionStoreClient):
    """In-memory permission store with call counters and failure switches."""

    def __init__(self):
        self.roles: dict[str, RoleInfo] = {}
        self.permissions: dict[str, PermissionInfo] = {}
        self.grants: dict[str, list[str]] = {}
        self.rows: list[dict] = []
        self.calls = {"assignments": 0, "permissions": 0}
        self.fail = False
        # When set, fetch_role_assignments waits on it before answering
        self.assignments_gate: asyncio.Event | None = None

    # setup helpers

    def add_role(self, name: str, level: int, is_active: bool = True,
                 is_system_role: bool = False) -> RoleInfo:
        role = RoleInfo(
            id=f"role-{name}",
            name=name,
            hierarchy_level=level,
            is_active=is_active,
            is_system_role=is_system_role,
        )
        self.roles[role.id] = role
        self.grants.setdefault(role.id, [])
        return role

    def role_named(self, name: str) -> RoleInfo:
        return next(r for r in self.roles.values() if r.name == name)

    def add_permission(self, name: str, resource: str, action: str) -> PermissionInfo:
        permission = PermissionInfo(id=f"perm-{name}", name=name, resource=resource, action=action)
        self.permissions[permission.id] = permission
        return permission

    def grant(self, role: RoleInfo, *permissions: PermissionInfo) -> None:
        self.grants[role.id].extend(p.id for p in permissions)

    def assign(self, user_id: str, role: RoleInfo, *, assigned_at: datetime | None = None,
               expires_at: datetime | None = None, is_active: bool = True) -> str:
        row_id = uuid.uuid4().hex
        self.rows.append({
            "id": row_id,
            "user_id": user_id,
            "role_id": role.id,
            "is_active": is_active,
            "assigned_at": assigned_at or NOW - timedelta(days=1),
            "expires_at": expires_at,
        })
        return row_id

    def set_assignment_active(self, user_id: str, role: RoleInfo, is_active: bool) -> None:
        for row in self.rows:
            if row["user_id"] == user_id and row["role_id"] == role.id:
                row["is_active"] = is_active

    def set_role_active(self, role: RoleInfo, is_active: bool) -> None:
        self.roles[role.id] = self.roles[role.id].model_copy(update={"is_active": is_active})

    def delete_role(self, role: RoleInfo) -> None:
        del self.roles[role.id]

    # PermissionStoreClient

    async def fetch_role_assignments(self, principal_id: str) -> list[Assignment]:
        self.calls["assignments"] += 1
        if self.assignments_gate is not None:
            await self.assignments_gate.wait()
        if self.fail:
            raise StoreUnavailable()
        return [
            Assignment(
                id=row["id"],
                user_id=row["user_id"],
                role=self.roles.get(row["role_id"]),
                is_active=row["is_active"],
                assigned_at=row["assigned_at"],
                expires_at=row["expires_at"],
            )
            for row in self.rows
            if row["user_id"] == principal_id and row["is_active"]
        ]

    async def fetch_role_permissions(self, role_id: str) -> list[PermissionInfo]:
        self.calls["permissions"] += 1
        if self.fail:
            raise StoreUnavailable()
        return [self.permissions[p] for p in self.grants.get(role_id, [])]

    async def fetch_role(self, role_id: str) -> RoleInfo | None:
        if self.fail:
            raise StoreUnavailable()
        return self.roles.get(role_id)

    async def fetch_permission(self, permission_id: str) -> PermissionInfo | None:
        if self.fail:
            raise StoreUnavailable()
        return self.permissions.get(permission_id)


class FakeRevocation:
    """Same contract as TokenRevocation, kept in memory."""

    def __init__(self):
        self.tokens: set[str] = set()
        self.users: dict[str, int] = {}
        self.fail = False
        # When set, is_revoked waits on it before answering
        self.gate: asyncio.Event | None = None

    async def revoke_token(self, jti: str, expires_at: float) -> bool:
        self.tokens.add(jti)
        return True

    async def is_revoked(self, jti: str) -> bool:
        if self.gate is not None:
            await self.gate.wait()
        return self.fail or jti in self.tokens

    async def revoke_all_user_sessions(self, user_id: str, duration: int = 86400) -> bool:
        self.users[user_id] = int(time.time())
        return True

    async def is_user_revoked(self, user_id: str, issued_at: int | None = None) -> bool:
        if self.fail:
            return True
        revoked_at = self.users.get(user_id)
        if revoked_at is None:
            return False
        return issued_at is None or int(issued_at) <= revoked_at


def seed_fake_catalog(store: FakeStore) -> FakeStore:
    """Load the real seed catalog into a FakeStore."""
    by_name = {
        name: store.add_permission(name, resource, action)
        for name, (resource, action, _) in PERMISSIONS.items()
    }
    for name, (level, _) in SYSTEM_ROLES.items():
        role = store.add_role(name, level, is_system_role=True)
        store.grant(role, *(by_name[p] for p in sorted(ROLE_DEFAULTS[name])))
    return store


# ── Core fixtures ────────────────────────────────────────────────

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def catalog_store() -> FakeStore:
    return seed_fake_catalog(FakeStore())


@pytest.fixture
def resolver(catalog_store: FakeStore, clock: FakeClock) -> PermissionResolver:
    return PermissionResolver(catalog_store, clock=clock)


@pytest.fixture
def revocation() -> FakeRevocation:
    return FakeRevocation()


@pytest.fixture
def gate(revocation: FakeRevocation) -> IdentityGate:
    return IdentityGate(revocation=revocation)


@pytest.fixture
def make_token():
    def _make(user_id: str, **kwargs) -> str:
        return create_access_token(user_id, **kwargs)
    return _make


# ── SQLite fixtures ──────────────────────────────────────────────

@pytest_asyncio.fixture
async def sql_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'menuguard.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(sql_engine):
    return async_sessionmaker(sql_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        await seed_catalog(session)
        yield session


@pytest.fixture
def sql_resolver(session_factory) -> PermissionResolver:
    return PermissionResolver(SQLAlchemyPermissionStore(session_factory))


@pytest.fixture
def make_user(db_session: AsyncSession):
    async def _make(email: str) -> User:
        user = User(email=email, is_active=True)
        db_session.add(user)
        await db_session.commit()
        return user
    return _make


# ── HTTP client ──────────────────────────────────────────────────

@pytest_asyncio.fixture
async def client(
    session_factory, db_session, revocation
) -> AsyncGenerator[AsyncClient, None]:
    """Test client bound to the SQLite database and the in-memory revocation list."""
    from menuguard.database import get_db
    from menuguard.main import app, install_services

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    install_services(app, store=SQLAlchemyPermissionStore(session_factory))
    app.state.identity_gate = IdentityGate(revocation=revocation)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ── Test Markers ─────────────────────────────────────────────────

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "auth: Session and identity tests")
    config.addinivalue_line("markers", "rbac: Role and permission resolution tests")
