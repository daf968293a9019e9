from datetime import datetime

from pydantic import BaseModel, Field


class PermissionOut(BaseModel):
    id: str
    name: str
    description: str | None
    resource: str
    action: str

    model_config = {"from_attributes": True}


class RoleOut(BaseModel):
    id: str
    name: str
    description: str | None
    hierarchy_level: int
    is_system_role: bool
    is_active: bool
    created_at: datetime | None = None
    permissions: list[PermissionOut] = []
    user_count: int = 0

    model_config = {"from_attributes": True}


class RoleCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = None
    hierarchy_level: int = Field(10, ge=0, le=100)
    permission_ids: list[str] = []


class RolePermissionsUpdate(BaseModel):
    permission_ids: list[str]


class RoleStatusUpdate(BaseModel):
    is_active: bool


class AssignmentCreate(BaseModel):
    role_id: str
    expires_at: datetime | None = None


class PromoteRequest(BaseModel):
    role_name: str = "admin"


class AssignmentOut(BaseModel):
    id: str
    user_id: str
    role_id: str
    is_active: bool
    assigned_at: datetime
    expires_at: datetime | None

    model_config = {"from_attributes": True}


class RevokeResult(BaseModel):
    revoked: int
