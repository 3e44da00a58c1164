import uuid
from datetime import datetime

from pydantic import BaseModel, Field


class TeamCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: str = ""
    round_robin_enabled: bool = True


class TeamUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=200)
    description: str | None = None
    round_robin_enabled: bool | None = None


class TeamMemberAdd(BaseModel):
    user_id: uuid.UUID
    is_assignable: bool = True


class TeamMemberUpdate(BaseModel):
    is_assignable: bool


class TeamMemberResponse(BaseModel):
    user_id: uuid.UUID
    username: str
    full_name: str
    is_active: bool
    is_assignable: bool
    last_assigned_at: datetime | None
    joined_at: datetime


class TeamResponse(BaseModel):
    id: uuid.UUID
    name: str
    description: str
    round_robin_enabled: bool
    member_count: int = 0
    created_at: datetime
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class TeamDetailResponse(TeamResponse):
    members: list[TeamMemberResponse] = []
