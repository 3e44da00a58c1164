import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import Boolean, Enum, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from helpdesk.models.base import Base, JobStatus, JSONType, TimestampMixin, UTCDateTime


class ExportJob(TimestampMixin, Base):
    """Ticket export. ``snapshot_payload`` freezes the filters and columns at request time."""

    __tablename__ = "export_jobs"

    requester_user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False, index=True
    )
    status: Mapped[JobStatus] = mapped_column(
        Enum(JobStatus, name="jobstatus"), default=JobStatus.queued, nullable=False
    )
    progress_stage: Mapped[str] = mapped_column(String, default="Queued", nullable=False)
    progress_percent: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    snapshot_payload: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    object_key: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    row_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    is_cleaned_up: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    started_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
