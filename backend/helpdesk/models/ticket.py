import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Enum, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from helpdesk.models.base import (
    AuditableMixin,
    Base,
    JSONType,
    SlaStatus,
    SoftDeleteMixin,
    TicketPriority,
    TicketStatus,
    UTCDateTime,
)

if TYPE_CHECKING:
    from helpdesk.models.attachment import Attachment
    from helpdesk.models.audit_log import AuditLog
    from helpdesk.models.contact import Contact
    from helpdesk.models.sla_rule import SlaRule
    from helpdesk.models.team import Team
    from helpdesk.models.ticket_comment import TicketComment
    from helpdesk.models.ticket_follower import TicketFollower
    from helpdesk.models.user import User

TICKET_NUMBER_PREFIX = "HD"
MIN_TICKET_NUMBER = 1_000_000


class Ticket(AuditableMixin, SoftDeleteMixin, Base):
    __tablename__ = "tickets"
    __table_args__ = (
        Index("ix_tickets_status", "status"),
        Index("ix_tickets_priority", "priority"),
        Index("ix_tickets_owning_team_id", "owning_team_id"),
        Index("ix_tickets_assignee_id", "assignee_id"),
        Index("ix_tickets_sla_status", "sla_status"),
        Index("ix_tickets_created_at", "created_at"),
        Index("ix_tickets_snoozed_until", "snoozed_until"),
    )

    number: Mapped[int] = mapped_column(Integer, unique=True, nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    status: Mapped[TicketStatus] = mapped_column(
        Enum(TicketStatus, name="ticketstatus"), default=TicketStatus.open, nullable=False
    )
    priority: Mapped[TicketPriority] = mapped_column(
        Enum(TicketPriority, name="ticketpriority"), default=TicketPriority.normal, nullable=False
    )
    category: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    language: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    tags: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    owning_team_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("teams.id"), nullable=True
    )
    assignee_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    assigned_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    contact_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("contacts.id"), nullable=True
    )
    created_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    resolved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    closed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    closed_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )

    # SLA tracking
    sla_rule_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("sla_rules.id", ondelete="SET NULL"), nullable=True
    )
    sla_due_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    sla_breached_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    sla_status: Mapped[Optional[SlaStatus]] = mapped_column(
        Enum(SlaStatus, name="slastatus"), nullable=True
    )
    sla_extension_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Snooze
    snoozed_until: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    snoozed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    snoozed_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    snoozed_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    unsnoozed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    # Relationships
    owning_team: Mapped[Optional["Team"]] = relationship(
        "Team", foreign_keys=[owning_team_id], lazy="raise"
    )
    assignee: Mapped[Optional["User"]] = relationship(
        "User", foreign_keys=[assignee_id], lazy="raise"
    )
    created_by: Mapped[Optional["User"]] = relationship(
        "User", foreign_keys=[created_by_id], lazy="raise"
    )
    contact: Mapped[Optional["Contact"]] = relationship(
        "Contact", foreign_keys=[contact_id], lazy="raise"
    )
    sla_rule: Mapped[Optional["SlaRule"]] = relationship(
        "SlaRule", foreign_keys=[sla_rule_id], lazy="raise"
    )
    comments: Mapped[list["TicketComment"]] = relationship(
        "TicketComment", back_populates="ticket", lazy="raise"
    )
    attachments: Mapped[list["Attachment"]] = relationship(
        "Attachment", back_populates="ticket", lazy="raise"
    )
    audit_entries: Mapped[list["AuditLog"]] = relationship(
        "AuditLog", back_populates="ticket", lazy="raise"
    )
    followers: Mapped[list["TicketFollower"]] = relationship(
        "TicketFollower", back_populates="ticket", cascade="all, delete-orphan", lazy="raise"
    )

    @property
    def ticket_number(self) -> str:
        return f"{TICKET_NUMBER_PREFIX}-{self.number}"

    @property
    def url(self) -> str:
        return f"/tickets/{self.number}"

    @property
    def is_open(self) -> bool:
        return self.status not in (TicketStatus.resolved, TicketStatus.closed)

    @property
    def is_snoozed(self) -> bool:
        return self.snoozed_until is not None

    @property
    def created_by_name(self) -> str | None:
        try:
            return self.created_by.full_name if self.created_by else None
        except Exception:
            return None

    @property
    def assignee_name(self) -> str | None:
        try:
            return self.assignee.full_name if self.assignee else None
        except Exception:
            return None

    @property
    def owning_team_name(self) -> str | None:
        try:
            return self.owning_team.name if self.owning_team else None
        except Exception:
            return None

    @property
    def contact_name(self) -> str | None:
        try:
            return self.contact.full_name if self.contact else None
        except Exception:
            return None

    @property
    def sla_rule_name(self) -> str | None:
        try:
            return self.sla_rule.name if self.sla_rule else None
        except Exception:
            return None
