"""Seed catalog for menuguard RBAC.

Design:
  - Permissions are reference data: seeded here, stored in `permissions`,
    never created by end users.
  - System roles are seeded with default grants and flagged
    `is_system_role` so they cannot be deleted.
  - Only the database is authoritative at runtime. This module feeds the
    initial migration and the `seed-roles` CLI command.

Permission naming: `<verb>_<resource>`, stored with an explicit
(resource, action) pair.
  Resources: restaurants, menu, tables, orders, subscriptions, payments,
             users, roles, system
"""

from __future__ import annotations

from menuguard.rbac.hierarchy import ADMIN_LEVEL, RESTAURANT_LEVEL, SUPERADMIN_LEVEL


# ── All known permissions: name → (resource, action, description) ──

PERMISSIONS: dict[str, tuple[str, str, str]] = {
    # Restaurant accounts
    "view_restaurants": ("restaurants", "read", "View all restaurant accounts"),
    "manage_restaurants": ("restaurants", "manage", "Edit or suspend restaurant accounts"),

    # Menu
    "view_menu": ("menu", "read", "View menu categories and items"),
    "manage_menu": ("menu", "write", "Create, edit and delete menu items"),

    # Tables / QR codes
    "manage_tables": ("tables", "write", "Create tables and generate QR codes"),

    # Orders
    "view_orders": ("orders", "read", "View incoming orders"),
    "manage_orders": ("orders", "write", "Update order status"),

    # Subscriptions & billing
    "view_subscriptions": ("subscriptions", "read", "View subscription status"),
    "approve_subscriptions": ("subscriptions", "approve", "Approve subscription orders"),
    "manage_payment_methods": ("payments", "manage", "Configure payment methods"),

    # Users & roles
    "view_users": ("users", "read", "View user accounts"),
    "manage_users": ("users", "manage", "Promote, suspend and delete users"),
    "manage_roles": ("roles", "manage", "Create, edit and delete roles"),

    # Platform
    "system_admin": ("system", "admin", "Full platform administration"),
}


# ── System roles: name → (hierarchy_level, description) ────────

SYSTEM_ROLES: dict[str, tuple[int, str]] = {
    "super_admin": (SUPERADMIN_LEVEL, "Platform owner with unrestricted access"),
    "admin": (ADMIN_LEVEL, "Platform staff managing restaurants and subscriptions"),
    "restaurant": (RESTAURANT_LEVEL, "Restaurant owner managing their own menu"),
}


# ── Role → default permissions ──────────────────────────────────

ROLE_DEFAULTS: dict[str, set[str]] = {
    "super_admin": set(PERMISSIONS),

    "admin": {
        "view_restaurants", "manage_restaurants",
        "view_menu",
        "view_orders",
        "view_subscriptions", "approve_subscriptions",
        "manage_payment_methods",
        "view_users", "manage_users",
    },

    "restaurant": {
        "view_menu", "manage_menu",
        "manage_tables",
        "view_orders", "manage_orders",
        "view_subscriptions",
    },
}


def permission_key(name: str) -> tuple[str, str]:
    """Return the (resource, action) pair for a catalog permission name."""
    resource, action, _ = PERMISSIONS[name]
    return (resource, action)
