# Import all models here so Alembic autogenerate picks them up.

from menuguard.models.user import User  # noqa: F401
from menuguard.models.rbac import (  # noqa: F401
    Permission,
    Role,
    RolePermission,
    UserRole,
)
