"""Permission store client: read adapter over the RBAC tables.

No decision logic lives here. Two rules at the query boundary:
  - role assignments are filtered on `is_active = true`
  - expiry is NOT filtered here; the resolver compares `expires_at`
    against its own resolution instant so client/store clock skew
    cannot change the answer

Any transport or database failure is re-raised as StoreUnavailable so the
resolver can fail closed the same way regardless of backend.
"""

import abc
import asyncio
import logging
from typing import Callable

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from menuguard.middleware.exceptions import StoreUnavailable
from menuguard.models.rbac import Permission, Role, RolePermission, UserRole
from menuguard.rbac.types import Assignment, PermissionInfo, RoleInfo

logger = logging.getLogger(__name__)


class PermissionStoreClient(abc.ABC):
    """The four read endpoints the decision core consumes."""

    @abc.abstractmethod
    async def fetch_role_assignments(self, principal_id: str) -> list[Assignment]:
        """Active assignments for a principal, each with its embedded role."""

    @abc.abstractmethod
    async def fetch_role_permissions(self, role_id: str) -> list[PermissionInfo]:
        """Permissions joined to a role through role_permissions."""

    @abc.abstractmethod
    async def fetch_role(self, role_id: str) -> RoleInfo | None:
        """Role metadata, or None if no such role."""

    @abc.abstractmethod
    async def fetch_permission(self, permission_id: str) -> PermissionInfo | None:
        """Permission metadata, or None if no such permission."""


def _role_info(role: Role | None) -> RoleInfo | None:
    if role is None:
        return None
    return RoleInfo(
        id=role.id,
        name=role.name,
        hierarchy_level=role.hierarchy_level or 0,
        is_system_role=bool(role.is_system_role),
        is_active=bool(role.is_active),
        description=role.description,
    )


def _assignment(row: UserRole) -> Assignment:
    return Assignment(
        id=row.id,
        user_id=row.user_id,
        role=_role_info(row.role),
        is_active=bool(row.is_active),
        assigned_at=row.assigned_at,
        expires_at=row.expires_at,
    )


class SQLAlchemyPermissionStore(PermissionStoreClient):
    """Store client backed by an async SQLAlchemy session factory.

    Each call opens its own short-lived session so concurrent fetches for
    different roles never share a connection.
    """

    def __init__(self, session_factory: Callable[[], AsyncSession]):
        self._session_factory = session_factory

    async def _run(self, what: str, query):
        try:
            async with self._session_factory() as session:
                result = await session.execute(query)
                return result.unique().scalars().all()
        except (SQLAlchemyError, OSError, asyncio.TimeoutError) as e:
            logger.error(f"Permission store query failed ({what}): {e}")
            raise StoreUnavailable() from e

    async def fetch_role_assignments(self, principal_id: str) -> list[Assignment]:
        rows = await self._run(
            "role assignments",
            select(UserRole)
            .options(joinedload(UserRole.role))
            .where(UserRole.user_id == principal_id, UserRole.is_active.is_(True)),
        )
        return [_assignment(r) for r in rows]

    async def fetch_role_permissions(self, role_id: str) -> list[PermissionInfo]:
        rows = await self._run(
            "role permissions",
            select(Permission)
            .join(RolePermission, RolePermission.permission_id == Permission.id)
            .where(RolePermission.role_id == role_id)
            .order_by(Permission.resource, Permission.action),
        )
        return [PermissionInfo.model_validate(p) for p in rows]

    async def fetch_role(self, role_id: str) -> RoleInfo | None:
        rows = await self._run("role", select(Role).where(Role.id == role_id))
        return _role_info(rows[0]) if rows else None

    async def fetch_permission(self, permission_id: str) -> PermissionInfo | None:
        rows = await self._run(
            "permission", select(Permission).where(Permission.id == permission_id)
        )
        return PermissionInfo.model_validate(rows[0]) if rows else None
