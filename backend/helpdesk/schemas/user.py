import uuid
from datetime import datetime

from pydantic import BaseModel, Field


class UserCreate(BaseModel):
    username: str = Field(min_length=1, max_length=100)
    email: str = Field(pattern=r"^[^@\s]+@[^@\s]+$")
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field("", max_length=100)
    password: str = Field(min_length=8)
    is_admin: bool = False
    role_ids: list[uuid.UUID] = []


class UserUpdate(BaseModel):
    email: str | None = Field(None, pattern=r"^[^@\s]+@[^@\s]+$")
    first_name: str | None = Field(None, min_length=1, max_length=100)
    last_name: str | None = Field(None, max_length=100)
    is_active: bool | None = None
    is_admin: bool | None = None
    role_ids: list[uuid.UUID] | None = None


class SetPasswordRequest(BaseModel):
    new_password: str = Field(min_length=8)


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(min_length=8)


class UserResponse(BaseModel):
    id: uuid.UUID
    username: str
    email: str
    first_name: str
    last_name: str
    full_name: str
    is_active: bool
    is_admin: bool
    role_names: list[str] = []
    last_logged_in_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
