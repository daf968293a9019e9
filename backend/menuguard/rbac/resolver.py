"""Permission resolver: the authorization decision core.

Resolution:
  1. fetch the principal's active assignments from the store client
  2. keep those that are live at the resolution instant (active role,
     not expired; `expires_at == now` is expired)
  3. fetch each surviving role's permissions
  4. union them by (resource, action)

Results are cached per principal and replaced wholesale, never patched.
The cache holds at most `max_entries` principals, evicting the least
recently used.
There is no TTL: any mutation of a principal's assignments must be
followed by `invalidate(principal_id)`, which takes effect immediately.
A resolution that was in flight when `invalidate` ran does not write its
(possibly stale) result back to the cache.

Failure policy is fail closed: `resolve()` and `effective_role()`
propagate StoreUnavailable, while the boolean predicates return False.
"""

import asyncio
import logging
from collections import OrderedDict
from datetime import datetime
from typing import Callable, Iterable

from menuguard.middleware.exceptions import StoreUnavailable
from menuguard.rbac.hierarchy import (
    effective_role,
    is_admin_role,
    is_super_admin_role,
    live_assignments,
    utcnow,
)
from menuguard.rbac.store import PermissionStoreClient
from menuguard.rbac.types import PermissionInfo, ResolvedPermissionSet, RoleInfo

logger = logging.getLogger("menuguard.rbac")


class PermissionResolver:
    """Computes and caches ResolvedPermissionSets.

    Construct one per process with an injected store client and pass it to
    consumers explicitly.
    """

    def __init__(
        self,
        store: PermissionStoreClient,
        clock: Callable[[], datetime] = utcnow,
        max_entries: int = 10_000,
    ):
        self.store = store
        self._clock = clock
        self.max_entries = max_entries
        self._cache: OrderedDict[str, ResolvedPermissionSet] = OrderedDict()
        # Only principals with a resolution in flight have an entry here
        self._generations: dict[str, int] = {}
        self._in_flight: dict[str, int] = {}
        self._epoch = 0

    # ── Cache lifecycle ─────────────────────────────────────

    def _generation(self, principal_id: str) -> tuple[int, int]:
        return (self._epoch, self._generations.get(principal_id, 0))

    def invalidate(self, principal_id: str) -> None:
        """Drop the cached set for a principal. Call after any change to
        their role assignments (grant, revoke, role edit or delete)."""
        self._cache.pop(principal_id, None)
        if principal_id in self._in_flight:
            self._generations[principal_id] = self._generations.get(principal_id, 0) + 1
        logger.info(f"Invalidated resolved permissions for {principal_id}")

    def invalidate_many(self, principal_ids: Iterable[str]) -> None:
        for principal_id in principal_ids:
            self.invalidate(principal_id)

    def invalidate_all(self) -> None:
        self._cache = OrderedDict()
        self._epoch += 1
        logger.info("Invalidated all resolved permissions")

    def cached(self, principal_id: str) -> ResolvedPermissionSet | None:
        return self._cache.get(principal_id)

    def _store(self, principal_id: str, resolved: ResolvedPermissionSet) -> None:
        self._cache[principal_id] = resolved
        self._cache.move_to_end(principal_id)
        while len(self._cache) > self.max_entries:
            self._cache.popitem(last=False)

    def _expired(self, resolved: ResolvedPermissionSet, max_age: float | None) -> bool:
        if max_age is None:
            return False
        return (self._clock() - resolved.resolved_at).total_seconds() >= max_age

    # ── Resolution ──────────────────────────────────────────

    async def resolve(
        self,
        principal_id: str,
        max_age: float | None = None,
    ) -> ResolvedPermissionSet:
        """Return the principal's resolved permission set.

        `max_age` (seconds) bounds how old a cached set may be before it is
        recomputed. It narrows the window in which a change made by another
        process is not yet visible; changes made through this process are
        visible at once via `invalidate`.

        Raises StoreUnavailable if the store cannot answer.
        """
        hit = self._cache.get(principal_id)
        if hit is not None and not self._expired(hit, max_age):
            self._cache.move_to_end(principal_id)
            return hit

        self._in_flight[principal_id] = self._in_flight.get(principal_id, 0) + 1
        try:
            generation = self._generation(principal_id)
            resolved = await self._compute(principal_id)

            if self._generation(principal_id) == generation:
                self._store(principal_id, resolved)
            else:
                logger.debug(f"Discarding stale resolution for {principal_id}")
        finally:
            remaining = self._in_flight.pop(principal_id) - 1
            if remaining:
                self._in_flight[principal_id] = remaining
            else:
                self._generations.pop(principal_id, None)
        return resolved

    async def _compute(self, principal_id: str) -> ResolvedPermissionSet:
        assignments = await self.store.fetch_role_assignments(principal_id)
        now = self._clock()
        live = live_assignments(assignments, now)

        roles: dict[str, RoleInfo] = {}
        for assignment in live:
            roles.setdefault(assignment.role.id, assignment.role)

        role_ids = list(roles)
        grants = await asyncio.gather(
            *(self.store.fetch_role_permissions(role_id) for role_id in role_ids)
        )

        union: dict[tuple[str, str], PermissionInfo] = {}
        for permissions in grants:
            for permission in permissions:
                union.setdefault(permission.key, permission)

        return ResolvedPermissionSet(
            principal_id=principal_id,
            roles=tuple(roles.values()),
            effective_role=effective_role(live, now),
            permissions=tuple(sorted(union.values(), key=lambda p: p.key)),
            resolved_at=now,
        )

    async def _resolve_or_none(self, principal_id: str) -> ResolvedPermissionSet | None:
        try:
            return await self.resolve(principal_id)
        except StoreUnavailable:
            logger.warning(
                f"Failing closed for {principal_id}: permission store unavailable",
                extra={"principal_id": principal_id},
            )
            return None

    # ── Checks ──────────────────────────────────────────────

    async def can(self, principal_id: str, resource: str, action: str) -> bool:
        resolved = await self._resolve_or_none(principal_id)
        return resolved is not None and resolved.grants(resource, action)

    async def has_permission(self, principal_id: str, name: str) -> bool:
        """Check a permission by catalog name (e.g. ``manage_roles``)."""
        resolved = await self._resolve_or_none(principal_id)
        return resolved is not None and resolved.has_permission_name(name)

    async def has_role(self, principal_id: str, role_name: str) -> bool:
        resolved = await self._resolve_or_none(principal_id)
        return resolved is not None and resolved.has_role(role_name)

    async def has_any_role(self, principal_id: str, role_names: Iterable[str]) -> bool:
        resolved = await self._resolve_or_none(principal_id)
        return resolved is not None and any(resolved.has_role(n) for n in role_names)

    async def effective_role(self, principal_id: str) -> RoleInfo | None:
        return (await self.resolve(principal_id)).effective_role

    async def is_admin(self, principal_id: str) -> bool:
        resolved = await self._resolve_or_none(principal_id)
        return resolved is not None and is_admin_role(resolved.effective_role)

    async def is_super_admin(self, principal_id: str) -> bool:
        resolved = await self._resolve_or_none(principal_id)
        return resolved is not None and is_super_admin_role(resolved.effective_role)

    async def check_conditions(
        self,
        principal_id: str,
        *,
        permission: str | None = None,
        role: str | None = None,
        roles: Iterable[str] | None = None,
        resource: str | None = None,
        action: str | None = None,
        require_all: bool = False,
    ) -> bool:
        """Evaluate a guard's conditions against the resolved set.

        Each supplied condition contributes one boolean. With no conditions
        the guard is open; otherwise ``require_all`` selects all() over any().
        Role names here gate display only; privilege checks go through
        ``is_admin`` / ``is_super_admin``.
        """
        roles = list(roles or [])
        if not (permission or role or roles or (resource and action)):
            return True

        resolved = await self._resolve_or_none(principal_id)
        if resolved is None:
            return False

        conditions: list[bool] = []
        if permission:
            conditions.append(resolved.has_permission_name(permission))
        if role:
            conditions.append(resolved.has_role(role))
        if roles:
            conditions.append(any(resolved.has_role(n) for n in roles))
        if resource and action:
            conditions.append(resolved.grants(resource, action))

        return all(conditions) if require_all else any(conditions)
