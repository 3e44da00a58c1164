from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from helpdesk.models.base import AuditableMixin, Base, UTCDateTime


class OrganizationSettings(AuditableMixin, Base):
    """Single row holding deployment-wide settings."""

    __tablename__ = "organization_settings"

    organization_name: Mapped[str] = mapped_column(String, nullable=False)
    time_zone: Mapped[str] = mapped_column(String, default="UTC", nullable=False)
    website_url: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    smtp_default_from_address: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    smtp_default_from_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    pause_sla_on_snooze: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    initial_setup_completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
