import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import Enum, ForeignKey, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from helpdesk.models.base import ActorType, Base, JSONType, UTCDateTime, utcnow

if TYPE_CHECKING:
    from helpdesk.models.ticket import Ticket
    from helpdesk.models.user import User


class AuditLog(Base):
    """Ticket change log. Entries are immutable, so there is no updated_at column."""

    __tablename__ = "audit_log"
    __table_args__ = (
        Index("ix_audit_log_ticket_id", "ticket_id"),
        Index("ix_audit_log_created_at", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    ticket_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("tickets.id"), nullable=False)
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    actor_type: Mapped[ActorType] = mapped_column(Enum(ActorType, name="actortype"), nullable=False)
    action: Mapped[str] = mapped_column(String, nullable=False)
    message: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    field_changed: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    old_value: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    new_value: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    metadata_: Mapped[Optional[dict[str, Any]]] = mapped_column("metadata", JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)

    # Relationships
    ticket: Mapped["Ticket"] = relationship("Ticket", back_populates="audit_entries")
    actor: Mapped[Optional["User"]] = relationship("User", foreign_keys=[actor_id])

    @property
    def actor_name(self) -> str | None:
        try:
            return self.actor.full_name if self.actor else None
        except Exception:
            return None
