"""Role management: the only writer of roles, grants and assignments.

Every mutation:
  1. checks the acting principal holds `manage_roles`
  2. checks the role it touches ranks strictly below the actor, unless the
     actor is a super admin
  3. commits
  4. invalidates the resolved permissions of every principal it affects

Invalidation happens after the commit so a resolution racing the write
cannot re-cache the pre-commit state.
"""

import logging
from datetime import datetime

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from menuguard.middleware.exceptions import (
    DuplicateRecordError,
    PermissionDeniedError,
    ResourceNotFoundError,
    SystemRoleProtected,
)
from menuguard.models.rbac import Permission, Role, RolePermission, UserRole
from menuguard.models.user import User
from menuguard.rbac.hierarchy import as_naive_utc, utcnow
from menuguard.rbac.permissions import PERMISSIONS, ROLE_DEFAULTS, SYSTEM_ROLES
from menuguard.rbac.resolver import PermissionResolver

logger = logging.getLogger("menuguard.roles")

MANAGE_ROLES = "manage_roles"


class RoleService:
    def __init__(self, db: AsyncSession, resolver: PermissionResolver):
        self.db = db
        self.resolver = resolver

    # ── Guards & helpers ────────────────────────────────────

    async def _require_manage_roles(self, actor_id: str) -> None:
        if not await self.resolver.has_permission(actor_id, MANAGE_ROLES):
            logger.warning(f"{actor_id} attempted role management without {MANAGE_ROLES}")
            raise PermissionDeniedError()

    async def _require_rank_above(self, actor_id: str, level: int, what: str) -> None:
        """Only a super admin may create, edit or grant a role at or above their own level."""
        if await self.resolver.is_super_admin(actor_id):
            return
        actor_role = await self.resolver.effective_role(actor_id)
        if actor_role is None or level >= actor_role.hierarchy_level:
            logger.warning(f"{actor_id} attempted to {what} at level {level}, above their own rank")
            raise PermissionDeniedError()

    async def _get_role(self, role_id: str) -> Role:
        result = await self.db.execute(select(Role).where(Role.id == role_id))
        role = result.scalar_one_or_none()
        if role is None:
            raise ResourceNotFoundError("Role", role_id)
        return role

    async def _get_role_by_name(self, name: str) -> Role:
        result = await self.db.execute(select(Role).where(Role.name == name))
        role = result.scalar_one_or_none()
        if role is None:
            raise ResourceNotFoundError("Role", name)
        return role

    async def _holders(self, role_id: str) -> list[str]:
        result = await self.db.execute(
            select(UserRole.user_id).where(UserRole.role_id == role_id).distinct()
        )
        return list(result.scalars().all())

    async def _replace_permissions(self, role_id: str, permission_ids: list[str]) -> None:
        wanted = set(permission_ids)
        if wanted:
            result = await self.db.execute(
                select(Permission.id).where(Permission.id.in_(wanted))
            )
            missing = wanted - set(result.scalars().all())
            if missing:
                raise ResourceNotFoundError("Permission", ", ".join(sorted(missing)))

        await self.db.execute(delete(RolePermission).where(RolePermission.role_id == role_id))
        for permission_id in sorted(wanted):
            self.db.add(RolePermission(role_id=role_id, permission_id=permission_id))

    # ── Reads ───────────────────────────────────────────────

    async def list_roles(self) -> list[tuple[Role, list[Permission], int]]:
        """Roles by hierarchy_level desc, each with permissions and active holder count."""
        result = await self.db.execute(
            select(Role)
            .options(selectinload(Role.role_permissions).selectinload(RolePermission.permission))
            .order_by(Role.hierarchy_level.desc(), Role.name)
        )
        roles = result.scalars().all()

        counts_result = await self.db.execute(
            select(UserRole.role_id, func.count(UserRole.id))
            .where(UserRole.is_active.is_(True))
            .group_by(UserRole.role_id)
        )
        counts = dict(counts_result.all())

        return [
            (
                role,
                [rp.permission for rp in role.role_permissions if rp.permission is not None],
                counts.get(role.id, 0),
            )
            for role in roles
        ]

    async def list_permissions(self) -> list[Permission]:
        result = await self.db.execute(
            select(Permission).order_by(Permission.resource, Permission.action)
        )
        return list(result.scalars().all())

    # ── Role CRUD ───────────────────────────────────────────

    async def create_role(
        self,
        actor_id: str,
        name: str,
        description: str | None = None,
        hierarchy_level: int = 10,
        permission_ids: list[str] | None = None,
    ) -> Role:
        await self._require_manage_roles(actor_id)
        await self._require_rank_above(actor_id, hierarchy_level, "create a role")
        existing = await self.db.execute(select(Role.id).where(Role.name == name))
        if existing.scalar_one_or_none() is not None:
            raise DuplicateRecordError("Role", name)

        role = Role(
            name=name,
            description=description,
            hierarchy_level=hierarchy_level,
            is_system_role=False,
            is_active=True,
            created_by=actor_id,
        )
        self.db.add(role)
        await self.db.flush()
        await self._replace_permissions(role.id, permission_ids or [])
        await self.db.commit()

        logger.info(f"Role '{name}' created by {actor_id}")
        # No one holds a new role yet, nothing to invalidate
        return role

    async def set_role_permissions(
        self, actor_id: str, role_id: str, permission_ids: list[str]
    ) -> Role:
        await self._require_manage_roles(actor_id)
        role = await self._get_role(role_id)
        await self._require_rank_above(actor_id, role.hierarchy_level, "edit a role")

        await self._replace_permissions(role.id, permission_ids)
        holders = await self._holders(role.id)
        await self.db.commit()

        self.resolver.invalidate_many(holders)
        logger.info(f"Permissions of role '{role.name}' replaced by {actor_id}")
        return role

    async def set_role_active(self, actor_id: str, role_id: str, is_active: bool) -> Role:
        await self._require_manage_roles(actor_id)
        role = await self._get_role(role_id)
        await self._require_rank_above(actor_id, role.hierarchy_level, "edit a role")

        role.is_active = is_active
        holders = await self._holders(role.id)
        await self.db.commit()

        self.resolver.invalidate_many(holders)
        logger.info(
            f"Role '{role.name}' {'activated' if is_active else 'deactivated'} by {actor_id}"
        )
        return role

    async def delete_role(self, actor_id: str, role_id: str) -> None:
        await self._require_manage_roles(actor_id)
        role = await self._get_role(role_id)
        if role.is_system_role:
            raise SystemRoleProtected(role.name)
        await self._require_rank_above(actor_id, role.hierarchy_level, "delete a role")

        holders = await self._holders(role.id)
        await self.db.execute(delete(UserRole).where(UserRole.role_id == role.id))
        await self.db.execute(delete(RolePermission).where(RolePermission.role_id == role.id))
        await self.db.execute(delete(Role).where(Role.id == role.id))
        await self.db.commit()

        self.resolver.invalidate_many(holders)
        logger.info(f"Role '{role.name}' deleted by {actor_id}")

    # ── Assignments ─────────────────────────────────────────

    async def assign_role(
        self,
        actor_id: str,
        user_id: str,
        role_id: str,
        expires_at: datetime | None = None,
    ) -> UserRole:
        """Grant a role, re-activating an existing assignment if there is one."""
        await self._require_manage_roles(actor_id)
        role = await self._get_role(role_id)
        return await self._assign(actor_id, user_id, role, expires_at)

    async def _assign(
        self,
        actor_id: str,
        user_id: str,
        role: Role,
        expires_at: datetime | None,
    ) -> UserRole:
        await self._require_rank_above(actor_id, role.hierarchy_level, f"grant '{role.name}'")
        user = await self.db.get(User, user_id)
        if user is None:
            raise ResourceNotFoundError("User", user_id)

        result = await self.db.execute(
            select(UserRole).where(UserRole.user_id == user_id, UserRole.role_id == role.id)
        )
        assignment = result.scalars().first()
        if assignment is None:
            assignment = UserRole(user_id=user_id, role_id=role.id)
            self.db.add(assignment)

        assignment.is_active = True
        assignment.assigned_by = actor_id
        assignment.assigned_at = utcnow()
        assignment.expires_at = as_naive_utc(expires_at) if expires_at else None
        await self.db.commit()

        self.resolver.invalidate(user_id)
        logger.info(f"Role '{role.name}' assigned to {user_id} by {actor_id}")
        return assignment

    async def promote_user(self, actor_id: str, user_id: str, role_name: str = "admin") -> UserRole:
        """Assign a role by name."""
        await self._require_manage_roles(actor_id)
        role = await self._get_role_by_name(role_name)
        return await self._assign(actor_id, user_id, role, None)

    async def revoke_role(self, actor_id: str, user_id: str, role_id: str) -> int:
        """Deactivate a user's assignment(s) of a role. Returns rows changed."""
        await self._require_manage_roles(actor_id)
        result = await self.db.execute(
            update(UserRole)
            .where(UserRole.user_id == user_id, UserRole.role_id == role_id)
            .values(is_active=False)
        )
        await self.db.commit()

        self.resolver.invalidate(user_id)
        logger.info(f"Role {role_id} revoked from {user_id} by {actor_id}")
        return result.rowcount or 0

    async def remove_all_roles(self, actor_id: str, user_id: str) -> int:
        await self._require_manage_roles(actor_id)
        result = await self.db.execute(delete(UserRole).where(UserRole.user_id == user_id))
        await self.db.commit()

        self.resolver.invalidate(user_id)
        logger.info(f"All roles removed from {user_id} by {actor_id}")
        return result.rowcount or 0


# ── Seeding ─────────────────────────────────────────────────

async def seed_catalog(db: AsyncSession) -> dict[str, int]:
    """Insert missing permissions, system roles and their default grants.

    Idempotent: existing rows are left untouched, so edits made through the
    role screens survive a re-seed.
    """
    created = {"permissions": 0, "roles": 0, "grants": 0}

    result = await db.execute(select(Permission))
    permissions = {p.name: p for p in result.scalars().all()}
    for name, (resource, action, description) in PERMISSIONS.items():
        if name not in permissions:
            permission = Permission(
                name=name, resource=resource, action=action, description=description
            )
            db.add(permission)
            permissions[name] = permission
            created["permissions"] += 1

    result = await db.execute(select(Role))
    roles = {r.name: r for r in result.scalars().all()}
    for name, (level, description) in SYSTEM_ROLES.items():
        if name in roles:
            continue
        role = Role(
            name=name,
            description=description,
            hierarchy_level=level,
            is_system_role=True,
            is_active=True,
        )
        db.add(role)
        await db.flush()
        for permission_name in sorted(ROLE_DEFAULTS.get(name, set())):
            db.add(RolePermission(role_id=role.id, permission_id=permissions[permission_name].id))
            created["grants"] += 1
        created["roles"] += 1

    await db.commit()
    return created
