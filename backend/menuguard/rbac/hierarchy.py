"""Role hierarchy: total order over roles by hierarchy_level.

Privilege checks compare levels against the thresholds below and never
match role names, so renaming a role cannot change who is an admin.
"""

from datetime import datetime, timezone
from typing import Iterable

from menuguard.rbac.types import Assignment, RoleInfo

SUPERADMIN_LEVEL = 100
ADMIN_LEVEL = 50
RESTAURANT_LEVEL = 1


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how assignment timestamps are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def is_assignment_live(assignment: Assignment, now: datetime) -> bool:
    """An assignment grants only while active, unexpired, and its role is active.

    `expires_at == now` counts as expired.
    """
    if not assignment.is_active:
        return False
    if assignment.role is None or not assignment.role.is_active:
        return False
    if assignment.expires_at is not None:
        return as_naive_utc(assignment.expires_at) > as_naive_utc(now)
    return True


def live_assignments(
    assignments: Iterable[Assignment],
    now: datetime | None = None,
) -> list[Assignment]:
    now = now or utcnow()
    return [a for a in assignments if is_assignment_live(a, now)]


def _rank(assignment: Assignment):
    # Highest level first, then earliest assignment, then id for a total order
    return (
        -assignment.role.hierarchy_level,
        as_naive_utc(assignment.assigned_at),
        assignment.id,
    )


def effective_role(
    assignments: Iterable[Assignment],
    now: datetime | None = None,
) -> RoleInfo | None:
    """Return the highest-ranked role among live assignments, or None.

    Ties on hierarchy_level go to the earliest `assigned_at`. A principal
    with no live assignments has no effective role (unprivileged, not an
    error).
    """
    live = live_assignments(assignments, now)
    if not live:
        return None
    return min(live, key=_rank).role


def is_admin_role(role: RoleInfo | None) -> bool:
    return role is not None and role.hierarchy_level >= ADMIN_LEVEL


def is_super_admin_role(role: RoleInfo | None) -> bool:
    return role is not None and role.hierarchy_level == SUPERADMIN_LEVEL
