import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel

from helpdesk.models.base import ImportEntityType, ImportMode, JobStatus, SlaStatus, TicketPriority, TicketStatus


class ImportJobResponse(BaseModel):
    id: uuid.UUID
    entity_type: ImportEntityType
    mode: ImportMode
    is_dry_run: bool
    status: JobStatus
    progress_stage: str
    progress_percent: int
    original_filename: str | None
    total_rows: int
    rows_processed: int
    rows_inserted: int
    rows_updated: int
    rows_skipped: int
    rows_with_errors: int
    has_error_file: bool = False
    error_message: str | None
    requester_user_id: uuid.UUID | None
    started_at: datetime | None
    completed_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}


class ExportFilters(BaseModel):
    status: list[TicketStatus] | None = None
    priority: list[TicketPriority] | None = None
    owning_team_id: uuid.UUID | None = None
    assignee_id: uuid.UUID | None = None
    sla_status: SlaStatus | None = None
    search: str | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None


class ExportCreate(BaseModel):
    columns: list[str] = []
    filters: ExportFilters = ExportFilters()


class ExportJobResponse(BaseModel):
    id: uuid.UUID
    status: JobStatus
    progress_stage: str
    progress_percent: int
    snapshot_payload: dict[str, Any]
    row_count: int
    error_message: str | None
    expires_at: datetime
    is_cleaned_up: bool
    requester_user_id: uuid.UUID
    started_at: datetime | None
    completed_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}


class ExportColumnInfo(BaseModel):
    name: str
    header: str
