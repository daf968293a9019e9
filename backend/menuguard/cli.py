"""Management CLI for RBAC operations.

Usage:
    python -m menuguard.cli seed-roles               # Insert missing permissions and system roles
    python -m menuguard.cli list-roles               # Show roles with level and holder count
    python -m menuguard.cli effective-role <user_id> # Resolve a user's effective role and grants
"""

import asyncio
import sys

from menuguard.database import async_session
from menuguard.middleware.exceptions import StoreUnavailable
from menuguard.rbac.resolver import PermissionResolver
from menuguard.rbac.store import SQLAlchemyPermissionStore
from menuguard.services.roles import RoleService, seed_catalog


async def seed_roles():
    async with async_session() as db:
        created = await seed_catalog(db)
    print(
        f"  {created['permissions']} permission(s), {created['roles']} role(s), "
        f"{created['grants']} grant(s) created"
    )


async def list_roles():
    resolver = PermissionResolver(SQLAlchemyPermissionStore(async_session))
    async with async_session() as db:
        rows = await RoleService(db, resolver).list_roles()
    for role, permissions, user_count in rows:
        flags = []
        if role.is_system_role:
            flags.append("system")
        if not role.is_active:
            flags.append("inactive")
        suffix = f" [{', '.join(flags)}]" if flags else ""
        print(
            f"  {role.hierarchy_level:>4}  {role.name:<20} "
            f"{len(permissions)} permission(s), {user_count} holder(s){suffix}"
        )
    print(f"\n{len(rows)} role(s)")


async def effective_role(user_id: str):
    resolver = PermissionResolver(SQLAlchemyPermissionStore(async_session))
    try:
        resolved = await resolver.resolve(user_id)
    except StoreUnavailable as e:
        print(f"  FAILED: {e.message}")
        sys.exit(1)

    role = resolved.effective_role
    print(f"  effective role: {role.name if role else '(none)'}")
    print(f"  roles:          {', '.join(resolved.role_names) or '(none)'}")
    for name in resolved.permission_names:
        print(f"    {name}")


if __name__ == "__main__":
    cmd = sys.argv[1] if len(sys.argv) > 1 else ""
    if cmd == "seed-roles":
        asyncio.run(seed_roles())
    elif cmd == "list-roles":
        asyncio.run(list_roles())
    elif cmd == "effective-role" and len(sys.argv) > 2:
        asyncio.run(effective_role(sys.argv[2]))
    else:
        print("Usage: python -m menuguard.cli [seed-roles|list-roles|effective-role <user_id>]")
