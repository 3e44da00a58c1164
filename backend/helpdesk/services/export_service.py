"""Ticket exports to CSV.

A request freezes its filters and column selection into ``snapshot_payload``;
a background worker writes the file through the storage provider. Files are
kept until ``expires_at`` and then removed by :func:`cleanup_expired`.
"""
import csv
import io
import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from helpdesk.api.dependencies import CurrentUser
from helpdesk.config import settings
from helpdesk.exceptions import BusinessError, ForbiddenError, NotFoundError, ValidationFailed
from helpdesk.models.base import JobStatus, utcnow
from helpdesk.models.export_job import ExportJob
from helpdesk.models.ticket import Ticket
from helpdesk.schemas.jobs import ExportCreate, ExportFilters
from helpdesk.services import ticket_service
from helpdesk.storage import get_storage
from helpdesk.storage.base import build_object_key

logger = logging.getLogger(__name__)

EXPORT_BATCH_SIZE = 500


def _date(value: datetime | None) -> str:
    return value.isoformat() if value else ""


def _enum(value) -> str:
    return value.value if value is not None else ""


# name -> (header, getter)
EXPORT_COLUMNS: dict[str, tuple[str, Callable[[Ticket], Any]]] = {
    "number": ("Id", lambda t: t.number),
    "ticket_number": ("TicketNumber", lambda t: t.ticket_number),
    "title": ("Title", lambda t: t.title),
    "description": ("Description", lambda t: t.description),
    "status": ("Status", lambda t: _enum(t.status)),
    "priority": ("Priority", lambda t: _enum(t.priority)),
    "category": ("Category", lambda t: t.category or ""),
    "tags": ("Tags", lambda t: ";".join(t.tags or [])),
    "owning_team": ("OwningTeam", lambda t: t.owning_team_name or ""),
    "assignee": ("Assignee", lambda t: t.assignee.username if t.assignee else ""),
    "contact": ("Contact", lambda t: t.contact_name or ""),
    "contact_email": ("ContactEmail", lambda t: t.contact.email if t.contact else ""),
    "created_by": ("CreatedBy", lambda t: t.created_by_name or ""),
    "created_at": ("CreatedAt", lambda t: _date(t.created_at)),
    "updated_at": ("UpdatedAt", lambda t: _date(t.updated_at)),
    "resolved_at": ("ResolvedAt", lambda t: _date(t.resolved_at)),
    "closed_at": ("ClosedAt", lambda t: _date(t.closed_at)),
    "sla_status": ("SlaStatus", lambda t: _enum(t.sla_status)),
    "sla_due_at": ("SlaDueAt", lambda t: _date(t.sla_due_at)),
    "sla_breached_at": ("SlaBreachedAt", lambda t: _date(t.sla_breached_at)),
}


def available_columns() -> list[dict[str, str]]:
    return [{"name": name, "header": header} for name, (header, _) in EXPORT_COLUMNS.items()]


def write_csv(tickets: list[Ticket], columns: list[str]) -> bytes:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow([EXPORT_COLUMNS[c][0] for c in columns])
    for ticket in tickets:
        writer.writerow([EXPORT_COLUMNS[c][1](ticket) for c in columns])
    return buffer.getvalue().encode("utf-8")


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

async def create_export_job(db: AsyncSession, current_user: CurrentUser, data: ExportCreate) -> ExportJob:
    if not data.columns:
        raise ValidationFailed.single("columns", "At least one column must be selected for export.")
    unknown = [c for c in data.columns if c not in EXPORT_COLUMNS]
    if unknown:
        raise ValidationFailed({"columns": [f"Unknown column: {c}" for c in unknown]})

    now = utcnow()
    job = ExportJob(
        requester_user_id=current_user.user.id,
        status=JobStatus.queued,
        progress_stage="Queued",
        progress_percent=0,
        snapshot_payload={
            "columns": list(dict.fromkeys(data.columns)),
            "filters": data.filters.model_dump(mode="json", exclude_none=True),
        },
        expires_at=now + timedelta(hours=settings.export_retention_hours),
    )
    db.add(job)
    await db.flush()
    logger.info("Queued export %s for user %s", job.id, current_user.user.id)
    return job


async def get_export_job(db: AsyncSession, current_user: CurrentUser, job_id: uuid.UUID) -> ExportJob:
    """Requesters see their own exports; administrators see all."""
    job = await db.get(ExportJob, job_id)
    if job is None:
        raise NotFoundError("Export job", job_id)
    if job.requester_user_id != current_user.user.id and not current_user.user.is_admin:
        raise ForbiddenError("You can only access your own exports")
    return job


async def list_my_exports(
    db: AsyncSession,
    current_user: CurrentUser,
    page: int = 1,
    page_size: int = 25,
) -> tuple[list[ExportJob], int]:
    query = select(ExportJob).where(ExportJob.requester_user_id == current_user.user.id)
    count_result = await db.execute(select(func.count()).select_from(query.subquery()))
    total = count_result.scalar_one()
    result = await db.execute(
        query.order_by(ExportJob.created_at.desc()).offset((page - 1) * page_size).limit(page_size)
    )
    return list(result.scalars().all()), total


async def retry_export_job(db: AsyncSession, current_user: CurrentUser, job_id: uuid.UUID) -> ExportJob:
    job = await get_export_job(db, current_user, job_id)
    if job.status != JobStatus.failed:
        raise BusinessError("Only failed exports can be retried")
    job.status = JobStatus.queued
    job.progress_stage = "Queued"
    job.progress_percent = 0
    job.error_message = None
    job.started_at = None
    job.completed_at = None
    job.expires_at = utcnow() + timedelta(hours=settings.export_retention_hours)
    job.is_cleaned_up = False
    job.object_key = None
    job.row_count = 0
    await db.flush()
    logger.info("Export %s re-queued", job.id)
    return job


async def download_export(
    db: AsyncSession, current_user: CurrentUser, job_id: uuid.UUID
) -> tuple[ExportJob, bytes]:
    job = await get_export_job(db, current_user, job_id)
    if job.status != JobStatus.completed or job.object_key is None:
        raise BusinessError("Export is not ready for download")
    if job.is_cleaned_up or job.expires_at <= utcnow():
        raise BusinessError("Export has expired")
    return job, await get_storage().read(job.object_key)


def download_filename(job: ExportJob) -> str:
    return f"tickets-export-{job.created_at:%Y%m%d-%H%M%S}.csv"


async def queued_job_ids(db: AsyncSession) -> list[uuid.UUID]:
    result = await db.execute(
        select(ExportJob.id).where(ExportJob.status == JobStatus.queued).order_by(ExportJob.created_at)
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Background work
# ---------------------------------------------------------------------------

async def _load_tickets(db: AsyncSession, filters: dict) -> list[Ticket]:
    conditions = ticket_service.build_filter_conditions(filters)
    tickets: list[Ticket] = []
    last_number = 0
    while True:
        result = await db.execute(
            select(Ticket)
            .where(*conditions, Ticket.number > last_number)
            .order_by(Ticket.number)
            .limit(EXPORT_BATCH_SIZE)
            .options(
                selectinload(Ticket.owning_team),
                selectinload(Ticket.assignee),
                selectinload(Ticket.contact),
                selectinload(Ticket.created_by),
            )
        )
        batch = list(result.scalars().all())
        tickets.extend(batch)
        if len(batch) < EXPORT_BATCH_SIZE:
            return tickets
        last_number = batch[-1].number


async def _process(db: AsyncSession, job: ExportJob) -> None:
    job.status = JobStatus.running
    job.progress_stage = "Loading tickets"
    job.progress_percent = 10
    job.started_at = utcnow()
    await db.commit()

    columns = job.snapshot_payload.get("columns") or []
    filters = ExportFilters.model_validate(job.snapshot_payload.get("filters") or {}).model_dump()
    tickets = await _load_tickets(db, filters)

    job.progress_stage = "Writing CSV"
    job.progress_percent = 50
    await db.commit()
    content = write_csv(tickets, columns)

    job.progress_stage = "Uploading"
    job.progress_percent = 90
    await db.commit()
    key = build_object_key("exports", str(job.id), filename=download_filename(job))
    await get_storage().save(key, content, "text/csv")

    job.object_key = key
    job.row_count = len(tickets)
    job.status = JobStatus.completed
    job.progress_stage = "Completed"
    job.progress_percent = 100
    job.completed_at = utcnow()
    await db.commit()
    logger.info("Export %s completed with %d rows", job.id, len(tickets))


async def run_export_job(job_id: uuid.UUID, session_factory: async_sessionmaker | None = None) -> None:
    """Background entry point. Failures are recorded on the job, never raised."""
    if session_factory is None:
        from helpdesk.database import async_session as session_factory

    async with session_factory() as db:
        job = await db.get(ExportJob, job_id)
        if job is None:
            logger.error("Export job %s not found", job_id)
            return
        if job.status != JobStatus.queued:
            logger.info("Export job %s is %s, not running it", job_id, job.status.value)
            return
        try:
            await _process(db, job)
        except Exception as exc:
            logger.exception("Export job %s failed", job_id)
            await db.rollback()
            job = await db.get(ExportJob, job_id)
            job.status = JobStatus.failed
            job.error_message = str(exc) or exc.__class__.__name__
            job.completed_at = utcnow()
            await db.commit()


async def cleanup_expired(db: AsyncSession, now: datetime | None = None) -> int:
    """Delete files of expired exports and flag them cleaned up."""
    now = now or utcnow()
    result = await db.execute(
        select(ExportJob).where(ExportJob.expires_at <= now, ExportJob.is_cleaned_up == False)
    )
    jobs = list(result.scalars().all())
    storage = get_storage()
    for job in jobs:
        if job.object_key:
            try:
                await storage.delete(job.object_key)
            except Exception:
                logger.exception("Failed to delete export file %s", job.object_key)
                continue
        job.is_cleaned_up = True
    await db.commit()
    if jobs:
        logger.info("Cleaned up %d expired exports", len(jobs))
    return len(jobs)
