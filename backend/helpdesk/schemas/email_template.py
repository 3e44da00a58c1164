import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class EmailTemplateCreate(BaseModel):
    subject: str = Field(min_length=1, max_length=500)
    developer_name: str = Field(min_length=1, max_length=100, pattern=r"^[a-z0-9_]+$")
    cc: str | None = None
    bcc: str | None = None
    content: str = ""


class EmailTemplateUpdate(BaseModel):
    subject: str | None = Field(None, min_length=1, max_length=500)
    cc: str | None = None
    bcc: str | None = None
    content: str | None = None


class EmailTemplateResponse(BaseModel):
    id: uuid.UUID
    subject: str
    developer_name: str
    cc: str | None
    bcc: str | None
    content: str
    is_built_in: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class EmailTemplatePreviewRequest(BaseModel):
    context: dict[str, Any] = {}


class EmailTemplatePreviewResponse(BaseModel):
    subject: str
    content: str
