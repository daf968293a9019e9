"""Multi-tenancy: restaurant ownership boundary.

A restaurant owner's principal id is also its restaurant id. Non-admin
principals may only act on records whose owner (restaurant_id) is their
own id; admin principals cross tenant boundaries.

Key components:
  - _principal_ctx          ContextVar holding the principal for the current request
  - set / get / clear helpers for the ContextVar
  - TenantScopeGuard        assert_owned_or_admin() / owner_filter()

This runs in-process before any mutation reaches the store, layered on top
of the store's own row-level policies rather than replacing them.
"""

import logging
from contextvars import ContextVar

from menuguard.middleware.exceptions import TenantViolation
from menuguard.rbac.hierarchy import is_admin_role
from menuguard.rbac.resolver import PermissionResolver
from menuguard.rbac.types import Principal, ResolvedPermissionSet

logger = logging.getLogger("menuguard.tenancy")

# ── Request-scoped principal context ────────────────────────

_principal_ctx: ContextVar[Principal | None] = ContextVar("_principal_ctx", default=None)


def set_current_principal(principal: Principal) -> None:
    _principal_ctx.set(principal)


def get_current_principal() -> Principal | None:
    return _principal_ctx.get()


def clear_principal_context() -> None:
    _principal_ctx.set(None)


# ── Ownership checks ────────────────────────────────────────

def _violation(principal: Principal, resource_owner_id: str) -> TenantViolation:
    logger.warning(
        f"Tenant violation: {principal.id} attempted to act on records of {resource_owner_id}",
        extra={"principal_id": principal.id, "owner_id": resource_owner_id},
    )
    return TenantViolation()


def assert_owned_or_admin_resolved(
    principal: Principal,
    resource_owner_id: str,
    resolved: ResolvedPermissionSet | None,
) -> None:
    """Synchronous check against an already-resolved permission set.

    A missing set (resolution failed) is treated as non-admin.
    """
    if principal.id == resource_owner_id:
        return
    if resolved is not None and resolved.principal_id == principal.id and is_admin_role(
        resolved.effective_role
    ):
        return
    raise _violation(principal, resource_owner_id)


class TenantScopeGuard:
    def __init__(self, resolver: PermissionResolver):
        self.resolver = resolver

    async def assert_owned_or_admin(
        self,
        principal: Principal | None,
        resource_owner_id: str,
    ) -> None:
        """Raise TenantViolation unless `principal` owns the record or is an admin.

        Falls back to the request's principal when none is passed. The
        error never says whether the target record exists.
        """
        principal = principal or get_current_principal()
        if principal is None:
            logger.warning(f"Tenant check without a principal for owner {resource_owner_id}")
            raise TenantViolation()
        if principal.id == resource_owner_id:
            return
        # is_admin fails closed on store errors
        if await self.resolver.is_admin(principal.id):
            return
        raise _violation(principal, resource_owner_id)

    async def owner_filter(self, principal: Principal) -> str | None:
        """Owner id to restrict a tenant-scoped read to, or None for admins."""
        if await self.resolver.is_admin(principal.id):
            return None
        return principal.id
