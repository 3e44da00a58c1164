import uuid
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from helpdesk.models.audit_log import AuditLog
from helpdesk.models.base import ActorType
from helpdesk.models.ticket import TICKET_NUMBER_PREFIX, Ticket


async def log_action(
    db: AsyncSession,
    ticket_id: uuid.UUID,
    actor_id: uuid.UUID | None,
    actor_type: ActorType,
    action: str,
    message: str | None = None,
    field_changed: str | None = None,
    old_value: str | None = None,
    new_value: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> AuditLog:
    """Append a change log entry for a ticket action."""
    entry = AuditLog(
        ticket_id=ticket_id,
        actor_id=actor_id,
        actor_type=actor_type,
        action=action,
        message=message,
        field_changed=field_changed,
        old_value=old_value,
        new_value=new_value,
    )
    # Mapped as metadata_ because Base reserves "metadata"
    if metadata is not None:
        entry.metadata_ = metadata
    db.add(entry)
    await db.flush()
    return entry


async def get_audit_log(
    db: AsyncSession,
    ticket_id: uuid.UUID,
) -> list[AuditLog]:
    """Get all change log entries for a ticket, newest first."""
    result = await db.execute(
        select(AuditLog)
        .where(AuditLog.ticket_id == ticket_id)
        .order_by(AuditLog.created_at.desc())
        .options(selectinload(AuditLog.actor))
    )
    return list(result.scalars().all())


async def list_recent_activity(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 25,
    actor_id: uuid.UUID | None = None,
    action: str | None = None,
) -> tuple[list[tuple[AuditLog, str]], int]:
    """Change log entries across tickets, newest first, with their ticket numbers."""
    query = (
        select(AuditLog, Ticket.number)
        .join(Ticket, AuditLog.ticket_id == Ticket.id)
        .where(Ticket.is_deleted == False)
    )
    if actor_id is not None:
        query = query.where(AuditLog.actor_id == actor_id)
    if action is not None:
        query = query.where(AuditLog.action == action)

    count_result = await db.execute(select(func.count()).select_from(query.subquery()))
    total = count_result.scalar_one()

    offset = (page - 1) * page_size
    result = await db.execute(
        query.options(selectinload(AuditLog.actor))
        .order_by(AuditLog.created_at.desc())
        .offset(offset)
        .limit(page_size)
    )
    items = [(entry, f"{TICKET_NUMBER_PREFIX}-{number}") for entry, number in result.all()]
    return items, total
