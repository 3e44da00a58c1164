import uuid
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Boolean, ForeignKey, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from helpdesk.models.base import AuditableMixin, Base

if TYPE_CHECKING:
    from helpdesk.models.ticket import Ticket
    from helpdesk.models.user import User


class TicketComment(AuditableMixin, Base):
    __tablename__ = "ticket_comments"

    ticket_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tickets.id"), nullable=False, index=True
    )
    author_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    is_internal: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Relationships
    author: Mapped[Optional["User"]] = relationship("User", foreign_keys=[author_id], lazy="raise")
    ticket: Mapped["Ticket"] = relationship("Ticket", back_populates="comments", lazy="raise")

    @property
    def author_name(self) -> str | None:
        try:
            return self.author.full_name if self.author else None
        except Exception:
            return None
