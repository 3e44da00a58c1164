import uuid
from datetime import datetime

from pydantic import BaseModel


class AttachmentResponse(BaseModel):
    id: uuid.UUID
    ticket_id: uuid.UUID
    comment_id: uuid.UUID | None
    original_filename: str
    file_size: int
    content_type: str
    uploaded_by_id: uuid.UUID | None
    uploaded_by_name: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}
