"""RBAC tables and seed catalog.

Revision ID: 0001
Revises: (none)
Create Date: 2026-10-19

Creates users, roles, permissions, role_permissions and user_roles, then
seeds the permission catalog and the protected system roles.

Run with:
    alembic upgrade head
"""

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

import uuid

from alembic import op
import sqlalchemy as sa

from menuguard.rbac.permissions import PERMISSIONS, ROLE_DEFAULTS, SYSTEM_ROLES


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True, index=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )

    op.create_table(
        "roles",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False, unique=True, index=True),
        sa.Column("description", sa.Text()),
        sa.Column("hierarchy_level", sa.Integer(), nullable=False, server_default="10"),
        sa.Column("is_system_role", sa.Boolean(), server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        sa.Column("created_by", sa.String(36)),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )

    op.create_table(
        "permissions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False, unique=True),
        sa.Column("description", sa.Text()),
        sa.Column("resource", sa.String(100), nullable=False),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.UniqueConstraint("resource", "action", name="uq_permissions_resource_action"),
    )

    op.create_table(
        "role_permissions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "role_id", sa.String(36),
            sa.ForeignKey("roles.id", ondelete="CASCADE"), nullable=False, index=True,
        ),
        sa.Column(
            "permission_id", sa.String(36),
            sa.ForeignKey("permissions.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.UniqueConstraint("role_id", "permission_id", name="uq_role_permissions"),
    )

    op.create_table(
        "user_roles",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "user_id", sa.String(36),
            sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
        ),
        sa.Column(
            "role_id", sa.String(36),
            sa.ForeignKey("roles.id", ondelete="CASCADE"), nullable=False, index=True,
        ),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        sa.Column("assigned_by", sa.String(36)),
        sa.Column("assigned_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )

    # ── Seed catalog ─────────────────────────────────────────

    permissions_t = sa.table(
        "permissions",
        sa.column("id", sa.String), sa.column("name", sa.String),
        sa.column("description", sa.Text), sa.column("resource", sa.String),
        sa.column("action", sa.String),
    )
    roles_t = sa.table(
        "roles",
        sa.column("id", sa.String), sa.column("name", sa.String),
        sa.column("description", sa.Text), sa.column("hierarchy_level", sa.Integer),
        sa.column("is_system_role", sa.Boolean), sa.column("is_active", sa.Boolean),
    )
    role_permissions_t = sa.table(
        "role_permissions",
        sa.column("id", sa.String), sa.column("role_id", sa.String),
        sa.column("permission_id", sa.String),
    )

    permission_ids = {name: str(uuid.uuid4()) for name in PERMISSIONS}
    op.bulk_insert(permissions_t, [
        {
            "id": permission_ids[name],
            "name": name,
            "description": description,
            "resource": resource,
            "action": action,
        }
        for name, (resource, action, description) in PERMISSIONS.items()
    ])

    role_ids = {name: str(uuid.uuid4()) for name in SYSTEM_ROLES}
    op.bulk_insert(roles_t, [
        {
            "id": role_ids[name],
            "name": name,
            "description": description,
            "hierarchy_level": level,
            "is_system_role": True,
            "is_active": True,
        }
        for name, (level, description) in SYSTEM_ROLES.items()
    ])

    op.bulk_insert(role_permissions_t, [
        {
            "id": str(uuid.uuid4()),
            "role_id": role_ids[role_name],
            "permission_id": permission_ids[permission_name],
        }
        for role_name, granted in ROLE_DEFAULTS.items()
        for permission_name in sorted(granted)
    ])


def downgrade() -> None:
    op.drop_table("user_roles")
    op.drop_table("role_permissions")
    op.drop_table("permissions")
    op.drop_table("roles")
    op.drop_table("users")
