import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel

from helpdesk.models.base import ActorType


class AuditLogResponse(BaseModel):
    id: uuid.UUID
    ticket_id: uuid.UUID
    ticket_number: str | None = None
    actor_id: uuid.UUID | None
    actor_type: ActorType
    actor_name: str | None = None
    action: str
    message: str | None = None
    field_changed: str | None
    old_value: str | None
    new_value: str | None
    metadata: dict[str, Any] | None = None
    created_at: datetime

    model_config = {"from_attributes": True}

    @classmethod
    def from_entry(cls, entry, ticket_number: str | None = None) -> "AuditLogResponse":
        return cls(
            id=entry.id,
            ticket_id=entry.ticket_id,
            ticket_number=ticket_number,
            actor_id=entry.actor_id,
            actor_type=entry.actor_type,
            actor_name=entry.actor_name,
            action=entry.action,
            message=entry.message,
            field_changed=entry.field_changed,
            old_value=entry.old_value,
            new_value=entry.new_value,
            metadata=entry.metadata_,
            created_at=entry.created_at,
        )
