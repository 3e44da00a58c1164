import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, Enum, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from helpdesk.models.base import (
    Base,
    ImportEntityType,
    ImportMode,
    JobStatus,
    TimestampMixin,
    UTCDateTime,
)


class ImportJob(TimestampMixin, Base):
    __tablename__ = "import_jobs"

    entity_type: Mapped[ImportEntityType] = mapped_column(
        Enum(ImportEntityType, name="importentitytype"), nullable=False
    )
    mode: Mapped[ImportMode] = mapped_column(Enum(ImportMode, name="importmode"), nullable=False)
    is_dry_run: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    status: Mapped[JobStatus] = mapped_column(
        Enum(JobStatus, name="jobstatus"), default=JobStatus.queued, nullable=False
    )
    progress_stage: Mapped[str] = mapped_column(String, default="Queued", nullable=False)
    progress_percent: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    original_filename: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    source_object_key: Mapped[str] = mapped_column(String, nullable=False)
    error_object_key: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    total_rows: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    rows_processed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    rows_inserted: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    rows_updated: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    rows_skipped: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    rows_with_errors: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    requester_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    @property
    def has_error_file(self) -> bool:
        return self.error_object_key is not None
