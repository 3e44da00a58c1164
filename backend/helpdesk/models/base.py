import enum
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import JSON, Boolean, DateTime, TypeDecorator, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime that always comes back in UTC.

    SQLite drops tzinfo on the way in, so naive values read back are UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            if value.tzinfo is None:
                value = value.replace(tzinfo=timezone.utc)
            value = value.astimezone(timezone.utc)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


class Base(DeclarativeBase):
    pass


class TimestampMixin:
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow)


class AuditableMixin(TimestampMixin):
    """Stamped by the ``before_flush`` listener in ``helpdesk.auditing``."""

    creator_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    last_modifier_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)


class SoftDeleteMixin:
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)


class TicketStatus(str, enum.Enum):
    open = "open"
    in_progress = "in_progress"
    pending = "pending"
    resolved = "resolved"
    closed = "closed"


class TicketPriority(str, enum.Enum):
    low = "low"
    normal = "normal"
    high = "high"
    urgent = "urgent"


class SlaStatus(str, enum.Enum):
    on_track = "on_track"
    approaching_breach = "approaching_breach"
    breached = "breached"
    completed = "completed"


class ActorType(str, enum.Enum):
    user = "user"
    api_key = "api_key"
    system = "system"


class JobStatus(str, enum.Enum):
    queued = "queued"
    running = "running"
    completed = "completed"
    failed = "failed"


class ImportMode(str, enum.Enum):
    insert_if_not_exists = "insert_if_not_exists"
    update_existing_only = "update_existing_only"
    upsert = "upsert"


class ImportEntityType(str, enum.Enum):
    contacts = "contacts"
    tickets = "tickets"


class NotificationEventType(str, enum.Enum):
    ticket_assigned = "ticket_assigned"
    ticket_assigned_team = "ticket_assigned_team"
    comment_added = "comment_added"
    status_changed = "status_changed"
    ticket_closed = "ticket_closed"
    ticket_reopened = "ticket_reopened"
    sla_approaching = "sla_approaching"
    sla_breached = "sla_breached"
    ticket_unsnoozed = "ticket_unsnoozed"
    appointment_reminder = "appointment_reminder"


class AppointmentStatus(str, enum.Enum):
    scheduled = "scheduled"
    confirmed = "confirmed"
    in_progress = "in_progress"
    completed = "completed"
    cancelled = "cancelled"
    no_show = "no_show"


class AppointmentMode(str, enum.Enum):
    virtual = "virtual"
    in_person = "in_person"
    either = "either"
