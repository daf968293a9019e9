"""Role management router. Every endpoint requires `manage_roles`.

Endpoints:
    GET    /api/roles                                     List roles with permissions and holder counts
    GET    /api/roles/permissions                         List the permission catalog
    POST   /api/roles                                     Create a role
    PUT    /api/roles/{role_id}/permissions               Replace a role's permissions
    PATCH  /api/roles/{role_id}/status                    Activate / deactivate a role
    DELETE /api/roles/{role_id}                           Delete a non-system role
    POST   /api/roles/users/{user_id}/assignments         Assign a role
    POST   /api/roles/users/{user_id}/promote             Assign a role by name
    DELETE /api/roles/users/{user_id}/assignments/{role_id}   Revoke a role
    DELETE /api/roles/users/{user_id}/assignments         Remove all of a user's roles
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from menuguard.auth.deps import get_resolver, require_permission_name
from menuguard.database import get_db
from menuguard.middleware.exceptions import ResourceNotFoundError
from menuguard.rbac.resolver import PermissionResolver
from menuguard.rbac.types import Principal
from menuguard.schemas.rbac import (
    AssignmentCreate,
    AssignmentOut,
    PermissionOut,
    PromoteRequest,
    RevokeResult,
    RoleCreate,
    RoleOut,
    RolePermissionsUpdate,
    RoleStatusUpdate,
)
from menuguard.services.roles import MANAGE_ROLES, RoleService

router = APIRouter()

require_manage_roles = require_permission_name(MANAGE_ROLES)


def get_role_service(
    db: AsyncSession = Depends(get_db),
    resolver: PermissionResolver = Depends(get_resolver),
) -> RoleService:
    return RoleService(db, resolver)


def _to_out(role, permissions, user_count: int) -> RoleOut:
    return RoleOut(
        id=role.id,
        name=role.name,
        description=role.description,
        hierarchy_level=role.hierarchy_level,
        is_system_role=role.is_system_role,
        is_active=role.is_active,
        created_at=role.created_at,
        permissions=[PermissionOut.model_validate(p) for p in permissions],
        user_count=user_count,
    )


async def _role_out(service: RoleService, role_id: str) -> RoleOut:
    for role, permissions, user_count in await service.list_roles():
        if role.id == role_id:
            return _to_out(role, permissions, user_count)
    raise ResourceNotFoundError("Role", role_id)


@router.get("", response_model=list[RoleOut])
async def list_roles(
    _: Principal = Depends(require_manage_roles),
    service: RoleService = Depends(get_role_service),
):
    return [_to_out(*row) for row in await service.list_roles()]


@router.get("/permissions", response_model=list[PermissionOut])
async def list_permissions(
    _: Principal = Depends(require_manage_roles),
    service: RoleService = Depends(get_role_service),
):
    return await service.list_permissions()


@router.post("", response_model=RoleOut, status_code=status.HTTP_201_CREATED)
async def create_role(
    body: RoleCreate,
    actor: Principal = Depends(require_manage_roles),
    service: RoleService = Depends(get_role_service),
):
    role = await service.create_role(
        actor.id,
        name=body.name,
        description=body.description,
        hierarchy_level=body.hierarchy_level,
        permission_ids=body.permission_ids,
    )
    return await _role_out(service, role.id)


@router.put("/{role_id}/permissions", response_model=RoleOut)
async def set_role_permissions(
    role_id: str,
    body: RolePermissionsUpdate,
    actor: Principal = Depends(require_manage_roles),
    service: RoleService = Depends(get_role_service),
):
    await service.set_role_permissions(actor.id, role_id, body.permission_ids)
    return await _role_out(service, role_id)


@router.patch("/{role_id}/status", response_model=RoleOut)
async def set_role_status(
    role_id: str,
    body: RoleStatusUpdate,
    actor: Principal = Depends(require_manage_roles),
    service: RoleService = Depends(get_role_service),
):
    await service.set_role_active(actor.id, role_id, body.is_active)
    return await _role_out(service, role_id)


@router.delete("/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_role(
    role_id: str,
    actor: Principal = Depends(require_manage_roles),
    service: RoleService = Depends(get_role_service),
):
    await service.delete_role(actor.id, role_id)


@router.post(
    "/users/{user_id}/assignments",
    response_model=AssignmentOut,
    status_code=status.HTTP_201_CREATED,
)
async def assign_role(
    user_id: str,
    body: AssignmentCreate,
    actor: Principal = Depends(require_manage_roles),
    service: RoleService = Depends(get_role_service),
):
    return await service.assign_role(actor.id, user_id, body.role_id, body.expires_at)


@router.post(
    "/users/{user_id}/promote",
    response_model=AssignmentOut,
    status_code=status.HTTP_201_CREATED,
)
async def promote_user(
    user_id: str,
    body: PromoteRequest,
    actor: Principal = Depends(require_manage_roles),
    service: RoleService = Depends(get_role_service),
):
    return await service.promote_user(actor.id, user_id, body.role_name)


@router.delete("/users/{user_id}/assignments/{role_id}", response_model=RevokeResult)
async def revoke_role(
    user_id: str,
    role_id: str,
    actor: Principal = Depends(require_manage_roles),
    service: RoleService = Depends(get_role_service),
):
    return RevokeResult(revoked=await service.revoke_role(actor.id, user_id, role_id))


@router.delete("/users/{user_id}/assignments", response_model=RevokeResult)
async def remove_all_roles(
    user_id: str,
    actor: Principal = Depends(require_manage_roles),
    service: RoleService = Depends(get_role_service),
):
    return RevokeResult(revoked=await service.remove_all_roles(actor.id, user_id))
