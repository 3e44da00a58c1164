from typing import Optional

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from helpdesk.models.base import AuditableMixin, Base, JSONType, SoftDeleteMixin


class Contact(AuditableMixin, SoftDeleteMixin, Base):
    __tablename__ = "contacts"

    first_name: Mapped[str] = mapped_column(String, nullable=False)
    last_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String, nullable=True, index=True)
    phone_numbers: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    organization_account: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name or ''}".strip()
