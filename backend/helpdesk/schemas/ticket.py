import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, Field, field_validator

from helpdesk.models.base import SlaStatus, TicketPriority, TicketStatus
from helpdesk.schemas.attachment import AttachmentResponse
from helpdesk.schemas.audit_log import AuditLogResponse
from helpdesk.schemas.comment import CommentResponse


class TicketCreate(BaseModel):
    title: str = Field(min_length=1, max_length=500)
    description: str = ""
    priority: TicketPriority = TicketPriority.normal
    category: str | None = None
    language: str | None = None
    tags: list[str] = []
    owning_team_id: uuid.UUID | None = None
    assignee_id: uuid.UUID | None = None
    contact_id: uuid.UUID | None = None
    number: int | None = Field(None, ge=1, description="Custom ticket number; generated when omitted")


class TicketUpdate(BaseModel):
    title: str | None = Field(None, min_length=1, max_length=500)
    description: str | None = None
    status: TicketStatus | None = None
    priority: TicketPriority | None = None
    category: str | None = None
    language: str | None = None
    tags: list[str] | None = None
    contact_id: uuid.UUID | None = None


class TicketAssign(BaseModel):
    owning_team_id: uuid.UUID | None = None
    assignee_id: uuid.UUID | None = None


class TicketStatusChange(BaseModel):
    status: TicketStatus


class TicketExtendSla(BaseModel):
    minutes: int = Field(gt=0, le=60 * 24 * 365)


class TicketSnooze(BaseModel):
    snooze_until: datetime
    reason: str | None = Field(None, max_length=500)

    @field_validator("snooze_until")
    @classmethod
    def as_utc(cls, value: datetime) -> datetime:
        """Naive datetimes are taken as UTC."""
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class TicketFollowerAdd(BaseModel):
    user_id: uuid.UUID


class TicketFollowerResponse(BaseModel):
    user_id: uuid.UUID
    user_name: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class TicketListResponse(BaseModel):
    id: uuid.UUID
    number: int
    ticket_number: str
    title: str
    status: TicketStatus
    priority: TicketPriority
    category: str | None
    owning_team_id: uuid.UUID | None
    owning_team_name: str | None = None
    assignee_id: uuid.UUID | None
    assignee_name: str | None = None
    contact_id: uuid.UUID | None
    contact_name: str | None = None
    sla_status: SlaStatus | None
    sla_due_at: datetime | None
    is_snoozed: bool = False
    snoozed_until: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class TicketResponse(TicketListResponse):
    description: str
    language: str | None
    tags: list[str]
    assigned_at: datetime | None
    created_by_id: uuid.UUID | None
    created_by_name: str | None = None
    resolved_at: datetime | None
    closed_at: datetime | None
    closed_by_id: uuid.UUID | None
    sla_rule_id: uuid.UUID | None
    sla_rule_name: str | None = None
    sla_breached_at: datetime | None
    sla_extension_count: int = 0
    snoozed_at: datetime | None = None
    snoozed_by_id: uuid.UUID | None = None
    snoozed_reason: str | None = None
    unsnoozed_at: datetime | None = None


class TicketDetailResponse(TicketResponse):
    comments: list[CommentResponse] = []
    attachments: list[AttachmentResponse] = []
    audit_log: list[AuditLogResponse] = []
    followers: list[TicketFollowerResponse] = []
