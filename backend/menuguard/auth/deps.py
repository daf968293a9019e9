"""FastAPI dependencies for authentication and authorization.

Dependencies:
  get_resolver / get_identity_gate / get_route_controller / get_tenant_guard
                              → process-wide services from app.state
  get_optional_token          → raw bearer token or None (anonymous allowed)
  get_current_session         → live session or 401 SessionExpired
  get_current_principal       → live session + active user, as a Principal
  require_admin / require_super_admin
                              → hierarchy-level checks
  require_permission(r, a)    → (resource, action) must be granted
  require_permission_name(n)  → named permission must be granted
  require_owner_or_admin(p)   → path param `p` must be the caller's id, or caller is admin

Permission checks always go through the resolver, never token claims.
"""

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from menuguard.auth.session import IdentityGate, Session
from menuguard.database import get_db
from menuguard.middleware.exceptions import PermissionDeniedError, SessionExpired
from menuguard.models.user import User
from menuguard.rbac.resolver import PermissionResolver
from menuguard.rbac.types import Principal
from menuguard.routing import RouteAccessController
from menuguard.tenancy import TenantScopeGuard, set_current_principal

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token", auto_error=False)


# ── Process-wide services ───────────────────────────────────

def get_resolver(request: Request) -> PermissionResolver:
    return request.app.state.resolver


def get_identity_gate(request: Request) -> IdentityGate:
    return request.app.state.identity_gate


def get_route_controller(
    gate: IdentityGate = Depends(get_identity_gate),
    resolver: PermissionResolver = Depends(get_resolver),
) -> RouteAccessController:
    return RouteAccessController(gate, resolver)


def get_tenant_guard(
    resolver: PermissionResolver = Depends(get_resolver),
) -> TenantScopeGuard:
    return TenantScopeGuard(resolver)


# ── Identity ────────────────────────────────────────────────

async def get_optional_token(token: str | None = Depends(oauth2_scheme)) -> str | None:
    return token


async def get_current_session(
    token: str | None = Depends(oauth2_scheme),
    gate: IdentityGate = Depends(get_identity_gate),
) -> Session:
    return await gate.require_live_session(token)


async def get_current_principal(
    session: Session = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
) -> Principal:
    """Live session plus an active user row.

    Also binds the principal to the request context for the tenant guard.
    """
    user = await db.get(User, session.principal_id)
    if user is None or not user.is_active:
        raise SessionExpired("User not found or inactive")

    principal = Principal.model_validate(user)
    set_current_principal(principal)
    return principal


# ── Role-based access control ───────────────────────────────

async def require_admin(
    principal: Principal = Depends(get_current_principal),
    resolver: PermissionResolver = Depends(get_resolver),
) -> Principal:
    if not await resolver.is_admin(principal.id):
        raise PermissionDeniedError()
    return principal


async def require_super_admin(
    principal: Principal = Depends(get_current_principal),
    resolver: PermissionResolver = Depends(get_resolver),
) -> Principal:
    if not await resolver.is_super_admin(principal.id):
        raise PermissionDeniedError()
    return principal


# ── Permission-based access control ─────────────────────────

def require_permission(resource: str, action: str):
    """Dependency factory: restrict to principals granted (resource, action).

    Usage:
        @router.post("/menu-items")
        async def create_item(p: Principal = Depends(require_permission("menu", "write"))):
            ...
    """
    async def _check(
        principal: Principal = Depends(get_current_principal),
        resolver: PermissionResolver = Depends(get_resolver),
    ) -> Principal:
        if not await resolver.can(principal.id, resource, action):
            raise PermissionDeniedError()
        return principal

    return _check


def require_permission_name(name: str):
    """Dependency factory: restrict to principals holding a named permission."""
    async def _check(
        principal: Principal = Depends(get_current_principal),
        resolver: PermissionResolver = Depends(get_resolver),
    ) -> Principal:
        if not await resolver.has_permission(principal.id, name):
            raise PermissionDeniedError()
        return principal

    return _check


# ── Tenant scope ────────────────────────────────────────────

def require_owner_or_admin(param: str = "restaurant_id"):
    """Dependency factory: the `param` path parameter must be the caller's
    own id unless the caller is an admin."""
    async def _check(
        request: Request,
        principal: Principal = Depends(get_current_principal),
        guard: TenantScopeGuard = Depends(get_tenant_guard),
    ) -> Principal:
        await guard.assert_owned_or_admin(principal, request.path_params[param])
        return principal

    return _check
