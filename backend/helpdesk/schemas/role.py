import uuid
from datetime import datetime

from pydantic import BaseModel, Field


class RoleCreate(BaseModel):
    label: str = Field(min_length=1, max_length=100)
    developer_name: str = Field(min_length=1, max_length=64, pattern=r"^[a-z0-9_]+$")
    permissions: list[str] = []


class RoleUpdate(BaseModel):
    label: str | None = Field(None, min_length=1, max_length=100)
    permissions: list[str] | None = None


class RoleResponse(BaseModel):
    id: uuid.UUID
    label: str
    developer_name: str
    permissions: int
    permission_names: list[str]
    is_built_in: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class PermissionResponse(BaseModel):
    label: str
    developer_name: str
    value: int
