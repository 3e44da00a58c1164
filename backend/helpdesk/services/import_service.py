"""CSV imports of contacts and tickets.

An upload is stored through the file storage provider and recorded as a
queued ``ImportJob``; a background worker then runs :func:`run_import_job`.
Each row is inserted, updated or skipped according to the job's mode. Rows
that fail validation are collected into an error CSV (the original columns
plus ``Error``) stored next to the source file.

Cell conventions: an empty cell leaves the field unchanged, ``[NULL]`` clears
it. Phone numbers and tags are separated by semicolons.
"""
import csv
import io
import logging
import re
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field

import nh3
from fastapi import HTTPException, UploadFile
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from helpdesk.api.dependencies import CurrentUser
from helpdesk.auditing import reset_current_user_id, set_current_user_id
from helpdesk.config import settings
from helpdesk.exceptions import BusinessError, NotFoundError
from helpdesk.models.base import (
    ActorType,
    ImportEntityType,
    ImportMode,
    JobStatus,
    SlaStatus,
    TicketPriority,
    TicketStatus,
    utcnow,
)
from helpdesk.models.contact import Contact
from helpdesk.models.import_job import ImportJob
from helpdesk.models.sla_rule import SlaRule
from helpdesk.models.team import Team
from helpdesk.models.ticket import Ticket
from helpdesk.models.user import User
from helpdesk.services import audit_service, phone_numbers, sla_service, ticket_service
from helpdesk.storage import get_storage
from helpdesk.storage.base import build_object_key, sanitize_filename

logger = logging.getLogger(__name__)

NULL_MARKER = "[NULL]"
BATCH_SIZE = 100
ERROR_COLUMN = "Error"
LIST_SEPARATOR = ";"

CONTACT_COLUMNS = ("Id", "FirstName", "LastName", "Email", "PhoneNumbers", "Address", "OrganizationAccount")
TICKET_COLUMNS = (
    "Id", "Title", "Description", "Status", "Priority", "Category",
    "OwningTeam", "Assignee", "Contact", "Tags",
)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+$")


class ImportFileError(Exception):
    """The file as a whole cannot be imported."""


class RowError(Exception):
    """A single row is invalid; it goes to the error file."""


@dataclass
class ImportCounts:
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    errors: list[tuple[dict[str, str], str]] = field(default_factory=list)

    def record(self, action: str) -> None:
        if action == "inserted":
            self.inserted += 1
        elif action == "updated":
            self.updated += 1
        else:
            self.skipped += 1


# ---------------------------------------------------------------------------
# CSV helpers
# ---------------------------------------------------------------------------

def required_columns(entity_type: ImportEntityType, mode: ImportMode) -> tuple[str, ...]:
    if mode == ImportMode.update_existing_only:
        return ("Id",)
    if entity_type == ImportEntityType.contacts:
        return ("FirstName",)
    return ("Title",)


def parse_csv(data: bytes, required: tuple[str, ...] = ()) -> tuple[list[str], list[dict[str, str]]]:
    """Return the header and rows of a UTF-8 CSV file (a BOM is allowed)."""
    try:
        text = data.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise ImportFileError("File is not valid UTF-8 text") from exc

    reader = csv.DictReader(io.StringIO(text, newline=""))
    try:
        headers = [(h or "").strip() for h in reader.fieldnames or []]
        reader.fieldnames = headers
        rows = [
            {key: (value or "") for key, value in row.items() if key}
            for row in reader
        ]
    except csv.Error as exc:
        raise ImportFileError(f"CSV parsing failed: {exc}") from exc

    if not headers:
        raise ImportFileError("File has no header row")
    missing = [column for column in required if column not in headers]
    if missing:
        raise ImportFileError(f"Missing required column(s): {', '.join(missing)}")
    return headers, rows


def build_error_csv(headers: list[str], errors: list[tuple[dict[str, str], str]]) -> bytes:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow([*headers, ERROR_COLUMN])
    for row, message in errors:
        writer.writerow([*(row.get(h, "") for h in headers), message])
    return buffer.getvalue().encode("utf-8")


def _cell_updates(row: dict[str, str], columns: dict[str, tuple[str, Callable]]) -> dict:
    """Map non-empty cells to model fields; ``[NULL]`` maps to None."""
    updates = {}
    for column, (attribute, convert) in columns.items():
        raw = (row.get(column) or "").strip()
        if not raw:
            continue
        updates[attribute] = None if raw == NULL_MARKER else convert(raw)
    return updates


def _text(value: str) -> str:
    return value


def _email(value: str) -> str:
    if not _EMAIL_RE.match(value):
        raise RowError(f"Invalid email: {value}")
    return value


def _phone_list(value: str) -> list[str]:
    parts = [p.strip() for p in value.split(LIST_SEPARATOR) if p.strip()]
    invalid = [p for p in parts if phone_numbers.normalize(p) is None]
    if invalid:
        raise RowError(f"Invalid phone number: {invalid[0]}")
    return phone_numbers.normalize_many(parts)


def _tag_list(value: str) -> list[str]:
    return [t.strip() for t in value.split(LIST_SEPARATOR) if t.strip()]


def _enum_parser(enum_cls, column: str):
    def parse(value: str):
        try:
            return enum_cls(value.strip().lower().replace(" ", "_"))
        except ValueError:
            allowed = ", ".join(e.value for e in enum_cls)
            raise RowError(f"Invalid {column}: {value} (expected one of {allowed})") from None

    return parse


def _decide(mode: ImportMode, exists: bool) -> str:
    if exists:
        return "skip" if mode == ImportMode.insert_if_not_exists else "update"
    return "skip" if mode == ImportMode.update_existing_only else "insert"


# ---------------------------------------------------------------------------
# Contacts
# ---------------------------------------------------------------------------

CONTACT_FIELDS = {
    "FirstName": ("first_name", _text),
    "LastName": ("last_name", _text),
    "Email": ("email", _email),
    "PhoneNumbers": ("phone_numbers", _phone_list),
    "Address": ("address", _text),
    "OrganizationAccount": ("organization_account", _text),
}


class ContactRowProcessor:
    def __init__(self, db: AsyncSession, job: ImportJob):
        self.db = db
        self.job = job
        self.existing: dict[uuid.UUID, Contact] = {}
        self.seen: set[uuid.UUID] = set()

    async def prepare(self, rows: list[dict[str, str]]) -> None:
        ids = set()
        for row in rows:
            try:
                ids.add(uuid.UUID((row.get("Id") or "").strip()))
            except ValueError:
                continue
        if ids:
            result = await self.db.execute(select(Contact).where(Contact.id.in_(ids)))
            self.existing = {c.id: c for c in result.scalars().all()}

    async def process(self, row: dict[str, str]) -> str:
        raw_id = (row.get("Id") or "").strip()
        contact_id = None
        if raw_id:
            try:
                contact_id = uuid.UUID(raw_id)
            except ValueError:
                raise RowError(f"Invalid ID format: {raw_id}") from None
            if contact_id in self.seen:
                raise RowError(f"Duplicate Id in file: {raw_id}")
            self.seen.add(contact_id)

        contact = self.existing.get(contact_id) if contact_id else None
        if contact is not None and contact.is_deleted:
            raise RowError(f"Contact {raw_id} has been deleted")

        action = _decide(self.job.mode, contact is not None)
        if action == "skip":
            return "skipped"

        updates = _cell_updates(row, CONTACT_FIELDS)
        if "phone_numbers" in updates and updates["phone_numbers"] is None:
            updates["phone_numbers"] = []

        if action == "insert":
            if not updates.get("first_name"):
                raise RowError("Missing required field: FirstName")
            if not self.job.is_dry_run:
                self.db.add(Contact(id=contact_id or uuid.uuid4(), **{"phone_numbers": [], **updates}))
            return "inserted"

        if "first_name" in updates and not updates["first_name"]:
            raise RowError("FirstName cannot be cleared")
        if not self.job.is_dry_run:
            for attribute, value in updates.items():
                setattr(contact, attribute, value)
        return "updated"


# ---------------------------------------------------------------------------
# Tickets
# ---------------------------------------------------------------------------

class TicketRowProcessor:
    """Tickets are matched on their number (the ``Id`` column)."""

    def __init__(self, db: AsyncSession, job: ImportJob):
        self.db = db
        self.job = job
        self.existing: dict[int, Ticket] = {}
        self.seen: set[int] = set()
        self.teams: dict[str, Team] = {}
        self.users: dict[str, User] = {}
        self.rules: list[SlaRule] = []
        self.next_number = 0

    async def prepare(self, rows: list[dict[str, str]]) -> None:
        numbers = set()
        for row in rows:
            raw = (row.get("Id") or "").strip().upper().removeprefix("HD-")
            if raw.isdigit():
                numbers.add(int(raw))
        if numbers:
            result = await self.db.execute(select(Ticket).where(Ticket.number.in_(numbers)))
            self.existing = {t.number: t for t in result.scalars().all()}

        result = await self.db.execute(select(Team))
        self.teams = {t.name.lower(): t for t in result.scalars().all()}
        result = await self.db.execute(select(User).where(User.is_active == True))
        self.users = {u.username.lower(): u for u in result.scalars().all()}
        self.rules = await sla_service.get_active_rules(self.db)
        self.next_number = await ticket_service.next_ticket_number(self.db)

    def _team(self, value: str) -> uuid.UUID:
        team = self.teams.get(value.lower())
        if team is None:
            raise RowError(f"Unknown team: {value}")
        return team.id

    def _assignee(self, value: str) -> uuid.UUID:
        user = self.users.get(value.lower())
        if user is None:
            raise RowError(f"Unknown or inactive user: {value}")
        return user.id

    def _contact_id(self, value: str) -> uuid.UUID:
        try:
            return uuid.UUID(value)
        except ValueError:
            raise RowError(f"Invalid contact ID: {value}") from None

    def fields(self) -> dict[str, tuple[str, Callable]]:
        return {
            "Title": ("title", _text),
            "Description": ("description", nh3.clean),
            "Status": ("status", _enum_parser(TicketStatus, "Status")),
            "Priority": ("priority", _enum_parser(TicketPriority, "Priority")),
            "Category": ("category", _text),
            "OwningTeam": ("owning_team_id", self._team),
            "Assignee": ("assignee_id", self._assignee),
            "Contact": ("contact_id", self._contact_id),
            "Tags": ("tags", _tag_list),
        }

    async def _check_contact(self, contact_id: uuid.UUID | None) -> None:
        if contact_id is None:
            return
        result = await self.db.execute(
            select(Contact.id).where(Contact.id == contact_id, Contact.is_deleted == False)
        )
        if result.scalar_one_or_none() is None:
            raise RowError(f"Contact {contact_id} not found")

    def _apply_status_dates(self, ticket: Ticket) -> None:
        now = utcnow()
        if ticket.status in ticket_service.CLOSED_STATUSES:
            ticket.resolved_at = ticket.resolved_at or now
            if ticket.status == TicketStatus.closed:
                ticket.closed_at = ticket.closed_at or now
        else:
            ticket.resolved_at = None
            ticket.closed_at = None

    def _apply_sla(self, ticket: Ticket) -> None:
        sla_service.assign_sla(ticket, self.rules, start=ticket.created_at)
        if ticket.sla_rule_id and ticket.status in ticket_service.CLOSED_STATUSES:
            ticket.sla_status = SlaStatus.completed

    async def process(self, row: dict[str, str]) -> str:
        raw_id = (row.get("Id") or "").strip()
        number = None
        if raw_id:
            digits = raw_id.upper().removeprefix("HD-")
            if not digits.isdigit():
                raise RowError(f"Invalid ID format: {raw_id}")
            number = int(digits)
            if number in self.seen:
                raise RowError(f"Duplicate Id in file: {raw_id}")
            self.seen.add(number)

        ticket = self.existing.get(number) if number is not None else None
        if ticket is not None and ticket.is_deleted:
            raise RowError(f"Ticket {raw_id} has been deleted")

        action = _decide(self.job.mode, ticket is not None)
        if action == "skip":
            return "skipped"

        updates = _cell_updates(row, self.fields())
        if "tags" in updates and updates["tags"] is None:
            updates["tags"] = []
        if "title" in updates and not updates["title"]:
            raise RowError("Title cannot be cleared")
        for attribute in ("status", "priority", "description"):
            if attribute in updates and updates[attribute] is None:
                raise RowError(f"{attribute.capitalize()} cannot be cleared")
        await self._check_contact(updates.get("contact_id"))

        if action == "insert":
            if not updates.get("title"):
                raise RowError("Missing required field: Title")
            if number is None:
                number = self.next_number
            elif number < 1:
                raise RowError(f"Invalid ID format: {raw_id}")
            self.next_number = max(self.next_number, number + 1)
            if self.job.is_dry_run:
                return "inserted"

            now = utcnow()
            ticket = Ticket(
                id=uuid.uuid4(),
                number=number,
                created_by_id=self.job.requester_user_id,
                created_at=now,
                **{
                    "description": "",
                    "status": TicketStatus.open,
                    "priority": TicketPriority.normal,
                    "tags": [],
                    **updates,
                },
            )
            if ticket.assignee_id:
                ticket.assigned_at = now
            self._apply_status_dates(ticket)
            self._apply_sla(ticket)
            self.db.add(ticket)
            await self.db.flush()
            await audit_service.log_action(
                self.db, ticket.id, self.job.requester_user_id, ActorType.user,
                "created", message="Ticket created by import",
            )
            return "inserted"

        if self.job.is_dry_run:
            return "updated"

        changed = [a for a, v in updates.items() if getattr(ticket, a) != v]
        for attribute in changed:
            setattr(ticket, attribute, updates[attribute])
        if "assignee_id" in changed:
            ticket.assigned_at = utcnow() if ticket.assignee_id else None
        if "status" in changed:
            self._apply_status_dates(ticket)
        if {"priority", "category", "owning_team_id", "status"} & set(changed):
            self._apply_sla(ticket)
        if changed:
            await self.db.flush()
            await audit_service.log_action(
                self.db, ticket.id, self.job.requester_user_id, ActorType.user,
                "updated", message="Ticket updated by import",
                metadata={"fields": sorted(changed)},
            )
        return "updated"


_PROCESSORS = {
    ImportEntityType.contacts: ContactRowProcessor,
    ImportEntityType.tickets: TicketRowProcessor,
}


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------

async def create_import_job(
    db: AsyncSession,
    current_user: CurrentUser,
    file: UploadFile,
    entity_type: ImportEntityType,
    mode: ImportMode,
    is_dry_run: bool = False,
) -> ImportJob:
    """Store the uploaded CSV and queue an import job for it."""
    filename = file.filename or "import.csv"
    if not filename.lower().endswith(".csv"):
        raise BusinessError("Only CSV files can be imported")

    content = await file.read()
    max_bytes = settings.import_max_file_size_mb * 1024 * 1024
    if len(content) > max_bytes:
        raise BusinessError(f"File size exceeds maximum of {settings.import_max_file_size_mb} MB")
    if not content:
        raise BusinessError("The uploaded file is empty")

    key = build_object_key("imports", entity_type.value, filename=filename)
    await get_storage().save(key, content, "text/csv")

    job = ImportJob(
        entity_type=entity_type,
        mode=mode,
        is_dry_run=is_dry_run,
        status=JobStatus.queued,
        progress_stage="Queued",
        progress_percent=0,
        original_filename=sanitize_filename(filename),
        source_object_key=key,
        requester_user_id=current_user.user.id,
    )
    db.add(job)
    await db.flush()
    logger.info("Queued %s import %s (%s, dry run: %s)", entity_type.value, job.id, mode.value, is_dry_run)
    return job


async def get_import_job(db: AsyncSession, job_id: uuid.UUID) -> ImportJob:
    job = await db.get(ImportJob, job_id)
    if job is None:
        raise NotFoundError("Import job", job_id)
    return job


async def list_import_jobs(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 25,
    entity_type: ImportEntityType | None = None,
) -> tuple[list[ImportJob], int]:
    query = select(ImportJob)
    if entity_type is not None:
        query = query.where(ImportJob.entity_type == entity_type)
    count_result = await db.execute(select(func.count()).select_from(query.subquery()))
    total = count_result.scalar_one()
    result = await db.execute(
        query.order_by(ImportJob.created_at.desc()).offset((page - 1) * page_size).limit(page_size)
    )
    return list(result.scalars().all()), total


async def read_error_file(db: AsyncSession, job_id: uuid.UUID) -> tuple[ImportJob, bytes]:
    job = await get_import_job(db, job_id)
    if job.error_object_key is None:
        raise NotFoundError("Error file for import job", job_id)
    return job, await get_storage().read(job.error_object_key)


async def queued_job_ids(db: AsyncSession) -> list[uuid.UUID]:
    result = await db.execute(
        select(ImportJob.id).where(ImportJob.status == JobStatus.queued).order_by(ImportJob.created_at)
    )
    return list(result.scalars().all())


def _error_message(exc: Exception) -> str:
    if isinstance(exc, HTTPException):
        if isinstance(exc.detail, list):
            return "; ".join(item.get("msg", str(item)) for item in exc.detail)
        return str(exc.detail)
    return str(exc) or exc.__class__.__name__


async def _process(db: AsyncSession, job: ImportJob) -> None:
    job.status = JobStatus.running
    job.progress_stage = "Loading file"
    job.progress_percent = 0
    job.started_at = utcnow()
    await db.commit()

    data = await get_storage().read(job.source_object_key)
    if len(data) > settings.import_max_file_size_mb * 1024 * 1024:
        raise ImportFileError(f"File size exceeds maximum of {settings.import_max_file_size_mb} MB")

    job.progress_stage = "Parsing CSV"
    job.progress_percent = 10
    await db.commit()
    headers, rows = parse_csv(data, required_columns(job.entity_type, job.mode))

    job.progress_stage = "Processing rows"
    job.progress_percent = 20
    job.total_rows = len(rows)
    await db.commit()

    processor = _PROCESSORS[job.entity_type](db, job)
    await processor.prepare(rows)
    counts = ImportCounts()

    for index, row in enumerate(rows, start=1):
        try:
            counts.record(await processor.process(row))
        except RowError as exc:
            counts.errors.append((row, str(exc)))
        if index % BATCH_SIZE == 0:
            job.rows_processed = index
            job.progress_percent = 20 + int(index / len(rows) * 60)
            await db.commit()

    if counts.errors:
        key = build_object_key("imports", str(job.id), filename="errors.csv")
        await get_storage().save(key, build_error_csv(headers, counts.errors), "text/csv")
        job.error_object_key = key

    job.status = JobStatus.completed
    job.progress_stage = "Dry run completed" if job.is_dry_run else "Completed"
    job.progress_percent = 100
    job.rows_processed = len(rows)
    job.rows_inserted = counts.inserted
    job.rows_updated = counts.updated
    job.rows_skipped = counts.skipped
    job.rows_with_errors = len(counts.errors)
    job.completed_at = utcnow()
    await db.commit()
    logger.info(
        "Import %s completed. Processed: %d, Inserted: %d, Updated: %d, Skipped: %d, Errors: %d",
        job.id, len(rows), counts.inserted, counts.updated, counts.skipped, len(counts.errors),
    )


async def run_import_job(
    job_id: uuid.UUID,
    session_factory: async_sessionmaker | None = None,
) -> None:
    """Background entry point. Failures are recorded on the job, never raised."""
    if session_factory is None:
        from helpdesk.database import async_session as session_factory

    async with session_factory() as db:
        job = await db.get(ImportJob, job_id)
        if job is None:
            logger.error("Import job %s not found", job_id)
            return
        if job.status != JobStatus.queued:
            logger.info("Import job %s is %s, not running it", job_id, job.status.value)
            return

        token = set_current_user_id(job.requester_user_id)
        try:
            await _process(db, job)
        except Exception as exc:
            if isinstance(exc, ImportFileError):
                logger.warning("Import job %s rejected: %s", job_id, exc)
            else:
                logger.exception("Import job %s failed", job_id)
            await db.rollback()
            job = await db.get(ImportJob, job_id)
            job.status = JobStatus.failed
            job.error_message = _error_message(exc)
            job.completed_at = utcnow()
            await db.commit()
        finally:
            reset_current_user_id(token)
