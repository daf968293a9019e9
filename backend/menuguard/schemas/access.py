from pydantic import BaseModel

from menuguard.routing import AccessState


class MeOut(BaseModel):
    id: str
    effective_role: str | None
    is_admin: bool
    is_super_admin: bool
    roles: list[str]
    permissions: list[str]


class RouteAccessRequest(BaseModel):
    path: str
    query: str = ""
    require_auth: bool = True
    admin_only: bool = False
    redirect_to: str | None = None


class RouteAccessOut(BaseModel):
    state: AccessState
    redirect_to: str | None = None
    error_code: str | None = None
    message: str | None = None
    retryable: bool = False


class PermissionCheck(BaseModel):
    resource: str
    action: str


class PermissionCheckOut(BaseModel):
    allowed: bool
