"""Access decisions for the UI and routing layer.

Endpoints:
    GET    /api/access/me                              Effective role and permissions
    POST   /api/access/route                           Decide a navigation (anonymous allowed)
    POST   /api/access/check                           Check one (resource, action)
    GET    /api/access/restaurants/{restaurant_id}     May the caller act on this tenant
"""

from fastapi import APIRouter, Depends

from menuguard.auth.deps import (
    get_current_principal,
    get_optional_token,
    get_resolver,
    get_route_controller,
    require_owner_or_admin,
)
from menuguard.rbac.hierarchy import is_admin_role, is_super_admin_role
from menuguard.rbac.resolver import PermissionResolver
from menuguard.rbac.types import Principal
from menuguard.routing import RouteAccessController, RouteMeta
from menuguard.schemas.access import (
    MeOut,
    PermissionCheck,
    PermissionCheckOut,
    RouteAccessOut,
    RouteAccessRequest,
)

router = APIRouter()


@router.get("/me", response_model=MeOut)
async def me(
    principal: Principal = Depends(get_current_principal),
    resolver: PermissionResolver = Depends(get_resolver),
):
    # StoreUnavailable propagates as a 503 rather than an empty grant set
    resolved = await resolver.resolve(principal.id)
    role = resolved.effective_role
    return MeOut(
        id=principal.id,
        effective_role=role.name if role else None,
        is_admin=is_admin_role(role),
        is_super_admin=is_super_admin_role(role),
        roles=resolved.role_names,
        permissions=resolved.permission_names,
    )


@router.post("/route", response_model=RouteAccessOut)
async def route_access(
    body: RouteAccessRequest,
    token: str | None = Depends(get_optional_token),
    controller: RouteAccessController = Depends(get_route_controller),
):
    decision = await controller.resolve(
        token,
        RouteMeta(
            require_auth=body.require_auth,
            admin_only=body.admin_only,
            redirect_to=body.redirect_to,
        ),
        body.path,
        body.query,
    )
    return RouteAccessOut(**decision.model_dump())


@router.post("/check", response_model=PermissionCheckOut)
async def check_permission(
    body: PermissionCheck,
    principal: Principal = Depends(get_current_principal),
    resolver: PermissionResolver = Depends(get_resolver),
):
    return PermissionCheckOut(allowed=await resolver.can(principal.id, body.resource, body.action))


@router.get("/restaurants/{restaurant_id}", response_model=PermissionCheckOut)
async def tenant_access(
    restaurant_id: str,
    principal: Principal = Depends(require_owner_or_admin("restaurant_id")),
):
    return PermissionCheckOut(allowed=True)
