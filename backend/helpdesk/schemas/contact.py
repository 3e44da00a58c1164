import uuid
from datetime import datetime

from pydantic import BaseModel, Field


class ContactCreate(BaseModel):
    first_name: str = Field(min_length=1, max_length=200)
    last_name: str | None = Field(None, max_length=200)
    email: str | None = Field(None, pattern=r"^[^@\s]+@[^@\s]+$")
    phone_numbers: list[str] = []
    address: str | None = None
    organization_account: str | None = None


class ContactUpdate(BaseModel):
    first_name: str | None = Field(None, min_length=1, max_length=200)
    last_name: str | None = Field(None, max_length=200)
    email: str | None = Field(None, pattern=r"^[^@\s]+@[^@\s]+$")
    phone_numbers: list[str] | None = None
    address: str | None = None
    organization_account: str | None = None


class ContactResponse(BaseModel):
    id: uuid.UUID
    first_name: str
    last_name: str | None
    full_name: str
    email: str | None
    phone_numbers: list[str]
    address: str | None
    organization_account: str | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ContactCommentCreate(BaseModel):
    content: str = Field(min_length=1)


class ContactCommentResponse(BaseModel):
    id: uuid.UUID
    contact_id: uuid.UUID
    author_id: uuid.UUID | None
    author_name: str | None = None
    content: str
    created_at: datetime

    model_config = {"from_attributes": True}


class ContactAttachmentResponse(BaseModel):
    id: uuid.UUID
    contact_id: uuid.UUID
    original_filename: str
    display_name: str
    description: str | None
    file_size: int
    content_type: str
    uploaded_by_id: uuid.UUID | None
    uploaded_by_name: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}
