"""Immutable values passed between the store client, resolver and gates.

These are read models: the store client builds them from ORM rows and
nothing downstream mutates them.
"""

from datetime import datetime

from pydantic import BaseModel


class Principal(BaseModel):
    id: str
    email: str | None = None
    is_active: bool = True

    model_config = {"frozen": True, "from_attributes": True}


class PermissionInfo(BaseModel):
    id: str
    name: str
    resource: str
    action: str
    description: str | None = None

    model_config = {"frozen": True, "from_attributes": True}

    @property
    def key(self) -> tuple[str, str]:
        """Identity for set semantics: two permissions are equal on (resource, action)."""
        return (self.resource, self.action)


class RoleInfo(BaseModel):
    id: str
    name: str
    hierarchy_level: int = 0
    is_system_role: bool = False
    is_active: bool = True
    description: str | None = None

    model_config = {"frozen": True, "from_attributes": True}


class Assignment(BaseModel):
    """A user → role assignment with its embedded role.

    `role` is None when the join did not return a role (deleted or
    unreadable); such an assignment grants nothing.
    """

    id: str
    user_id: str
    role: RoleInfo | None
    is_active: bool = True
    assigned_at: datetime
    expires_at: datetime | None = None

    model_config = {"frozen": True}


class ResolvedPermissionSet(BaseModel):
    """Union of permissions across a principal's live role assignments.

    Derived per resolution and never persisted.
    """

    principal_id: str
    roles: tuple[RoleInfo, ...] = ()
    effective_role: RoleInfo | None = None
    permissions: tuple[PermissionInfo, ...] = ()
    resolved_at: datetime

    model_config = {"frozen": True}

    @property
    def permission_keys(self) -> frozenset[tuple[str, str]]:
        return frozenset(p.key for p in self.permissions)

    @property
    def permission_names(self) -> list[str]:
        return sorted(p.name for p in self.permissions)

    @property
    def role_names(self) -> list[str]:
        return [r.name for r in self.roles]

    def grants(self, resource: str, action: str) -> bool:
        return (resource, action) in self.permission_keys

    def has_permission_name(self, name: str) -> bool:
        return any(p.name == name for p in self.permissions)

    def has_role(self, name: str) -> bool:
        return any(r.name == name for r in self.roles)
