import uuid
from datetime import datetime

from pydantic import BaseModel

from helpdesk.models.base import NotificationEventType


class NotificationResponse(BaseModel):
    id: uuid.UUID
    event_type: NotificationEventType
    title: str
    message: str
    url: str | None
    ticket_id: uuid.UUID | None
    is_read: bool
    read_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}


class UnreadCountResponse(BaseModel):
    unread_count: int


class NotificationPreferenceItem(BaseModel):
    event_type: NotificationEventType
    in_app_enabled: bool


class NotificationPreferencesUpdate(BaseModel):
    preferences: list[NotificationPreferenceItem]
