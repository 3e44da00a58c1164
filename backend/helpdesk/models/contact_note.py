import uuid
from typing import TYPE_CHECKING, Optional

from sqlalchemy import ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from helpdesk.models.base import AuditableMixin, Base, TimestampMixin

if TYPE_CHECKING:
    from helpdesk.models.user import User


class ContactComment(AuditableMixin, Base):
    __tablename__ = "contact_comments"

    contact_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    author_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)

    author: Mapped[Optional["User"]] = relationship("User", foreign_keys=[author_id], lazy="raise")

    @property
    def author_name(self) -> str | None:
        try:
            return self.author.full_name if self.author else None
        except Exception:
            return None


class ContactAttachment(TimestampMixin, Base):
    __tablename__ = "contact_attachments"

    contact_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    original_filename: Mapped[str] = mapped_column(String, nullable=False)
    display_name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    object_key: Mapped[str] = mapped_column(String, nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False)
    content_type: Mapped[str] = mapped_column(String, nullable=False)
    uploaded_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )

    uploaded_by: Mapped[Optional["User"]] = relationship(
        "User", foreign_keys=[uploaded_by_id], lazy="raise"
    )

    @property
    def uploaded_by_name(self) -> str | None:
        try:
            return self.uploaded_by.full_name if self.uploaded_by else None
        except Exception:
            return None
