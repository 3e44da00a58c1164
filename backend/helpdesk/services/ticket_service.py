import logging
import uuid
from datetime import datetime, timedelta

import nh3
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from helpdesk.api.dependencies import CurrentUser
from helpdesk.config import settings
from helpdesk.exceptions import BusinessError, ConflictError, ForbiddenError, NotFoundError, ValidationFailed
from helpdesk.models.attachment import Attachment
from helpdesk.models.audit_log import AuditLog
from helpdesk.models.base import (
    ActorType,
    NotificationEventType,
    SlaStatus,
    TicketPriority,
    TicketStatus,
    utcnow,
)
from helpdesk.models.contact import Contact
from helpdesk.models.role import SystemPermission
from helpdesk.models.team import Team
from helpdesk.models.ticket import MIN_TICKET_NUMBER, Ticket
from helpdesk.models.ticket_comment import TicketComment
from helpdesk.models.ticket_follower import TicketFollower
from helpdesk.models.user import User
from helpdesk.schemas.ticket import TicketAssign, TicketCreate, TicketUpdate
from helpdesk.services import (
    audit_service,
    notification_service,
    organization_service,
    sla_service,
    team_service,
)

logger = logging.getLogger(__name__)

CLOSED_STATUSES = (TicketStatus.resolved, TicketStatus.closed)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def next_ticket_number(db: AsyncSession) -> int:
    """Next number after the highest in use, deleted tickets included."""
    result = await db.execute(select(func.max(Ticket.number)))
    current = result.scalar()
    return max((current or 0) + 1, MIN_TICKET_NUMBER)


def _display(value) -> str | None:
    if value is None:
        return None
    if isinstance(value, (TicketStatus, TicketPriority, SlaStatus)):
        return value.value
    if isinstance(value, list):
        return ", ".join(str(v) for v in value)
    return str(value)


async def _get_team(db: AsyncSession, team_id: uuid.UUID) -> Team:
    team = await db.get(Team, team_id)
    if team is None:
        raise ValidationFailed.single("owning_team_id", "Team not found")
    return team


async def _get_assignee(db: AsyncSession, user_id: uuid.UUID) -> User:
    result = await db.execute(select(User).where(User.id == user_id, User.is_active == True))
    user = result.scalar_one_or_none()
    if user is None:
        raise ValidationFailed.single("assignee_id", "Assignee not found or inactive")
    return user


async def _check_contact(db: AsyncSession, contact_id: uuid.UUID) -> None:
    result = await db.execute(
        select(Contact.id).where(Contact.id == contact_id, Contact.is_deleted == False)
    )
    if result.scalar_one_or_none() is None:
        raise ValidationFailed.single("contact_id", "Contact not found")


async def _check_membership(db: AsyncSession, team_id: uuid.UUID | None, user_id: uuid.UUID | None) -> None:
    if team_id is None or user_id is None:
        return
    if not await team_service.is_member(db, team_id, user_id):
        raise ValidationFailed.single("assignee_id", "Assignee must be a member of the specified team")


async def can_edit(db: AsyncSession, current_user: CurrentUser, ticket: Ticket) -> bool:
    """Ticket managers, the assignee and members of the owning team may edit."""
    if current_user.has_permission(SystemPermission.manage_tickets):
        return True
    if ticket.assignee_id == current_user.user.id:
        return True
    if ticket.owning_team_id is not None:
        return await team_service.is_member(db, ticket.owning_team_id, current_user.user.id)
    return False


async def _require_can_edit(db: AsyncSession, current_user: CurrentUser, ticket: Ticket) -> None:
    if not await can_edit(db, current_user, ticket):
        raise ForbiddenError("You do not have permission to edit this ticket")


def _require_can_manage(current_user: CurrentUser) -> None:
    if not current_user.has_permission(SystemPermission.manage_tickets):
        raise ForbiddenError("Managing tickets requires the manage_tickets permission")


async def _log(
    db: AsyncSession,
    current_user: CurrentUser,
    ticket: Ticket,
    action: str,
    message: str | None = None,
    field_changed: str | None = None,
    old_value=None,
    new_value=None,
    metadata: dict | None = None,
) -> None:
    await audit_service.log_action(
        db=db,
        ticket_id=ticket.id,
        actor_id=current_user.user.id,
        actor_type=current_user.actor_type,
        action=action,
        message=message,
        field_changed=field_changed,
        old_value=_display(old_value),
        new_value=_display(new_value),
        metadata=metadata,
    )


async def _notify_assigned(db: AsyncSession, current_user: CurrentUser, ticket: Ticket) -> None:
    await notification_service.notify(
        db,
        ticket.assignee_id,
        NotificationEventType.ticket_assigned,
        f"Ticket assigned: {ticket.ticket_number}",
        f"'{ticket.title}' has been assigned to you.",
        url=ticket.url,
        ticket_id=ticket.id,
        exclude_user_id=current_user.user.id,
    )


async def _notify_team(db: AsyncSession, current_user: CurrentUser, ticket: Ticket) -> None:
    members = await team_service.get_memberships(db, ticket.owning_team_id)
    await notification_service.notify_many(
        db,
        [m.user_id for m in members if m.user.is_active],
        NotificationEventType.ticket_assigned_team,
        f"Ticket assigned to your team: {ticket.ticket_number}",
        f"'{ticket.title}' has been assigned to your team.",
        url=ticket.url,
        ticket_id=ticket.id,
        exclude_user_id=current_user.user.id,
    )


async def follower_ids(db: AsyncSession, ticket_id: uuid.UUID) -> list[uuid.UUID]:
    result = await db.execute(
        select(TicketFollower.user_id)
        .where(TicketFollower.ticket_id == ticket_id)
        .order_by(TicketFollower.created_at)
    )
    return list(result.scalars().all())


async def participant_ids(db: AsyncSession, ticket: Ticket) -> list[uuid.UUID]:
    """Assignee, creator and followers of a ticket."""
    recipients = [uid for uid in (ticket.assignee_id, ticket.created_by_id) if uid is not None]
    return recipients + await follower_ids(db, ticket.id)


async def _notify_participants(
    db: AsyncSession,
    current_user: CurrentUser,
    ticket: Ticket,
    event_type: NotificationEventType,
    title: str,
    message: str,
) -> None:
    await notification_service.notify_many(
        db,
        await participant_ids(db, ticket),
        event_type,
        title,
        message,
        url=ticket.url,
        ticket_id=ticket.id,
        exclude_user_id=current_user.user.id,
    )


# ---------------------------------------------------------------------------
# Eager-load options (shared across get functions)
# ---------------------------------------------------------------------------

_LIST_LOAD_OPTIONS = [
    selectinload(Ticket.owning_team),
    selectinload(Ticket.assignee),
    selectinload(Ticket.contact),
]

_TICKET_LOAD_OPTIONS = [
    *_LIST_LOAD_OPTIONS,
    selectinload(Ticket.created_by),
    selectinload(Ticket.sla_rule),
    selectinload(Ticket.comments).selectinload(TicketComment.author),
    selectinload(Ticket.attachments).selectinload(Attachment.uploaded_by),
    selectinload(Ticket.audit_entries).selectinload(AuditLog.actor),
    selectinload(Ticket.followers).selectinload(TicketFollower.user),
]


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------

async def create_ticket(
    db: AsyncSession,
    current_user: CurrentUser,
    data: TicketCreate,
) -> Ticket:
    """Create a ticket, auto-assigning via round-robin when only a team is given."""
    team = await _get_team(db, data.owning_team_id) if data.owning_team_id else None
    if data.assignee_id is not None:
        await _get_assignee(db, data.assignee_id)
        await _check_membership(db, data.owning_team_id, data.assignee_id)
    if data.contact_id is not None:
        await _check_contact(db, data.contact_id)

    if data.number is not None:
        result = await db.execute(select(Ticket.id).where(Ticket.number == data.number))
        if result.scalar_one_or_none() is not None:
            raise ConflictError("A ticket with this number already exists")
        number = data.number
    else:
        number = await next_ticket_number(db)

    assignee_id = data.assignee_id
    auto_assigned = False
    if team is not None and assignee_id is None:
        picked = await team_service.assign_round_robin(db, team)
        if picked is not None:
            assignee_id = picked.id
            auto_assigned = True

    now = utcnow()
    ticket = Ticket(
        number=number,
        title=data.title,
        description=nh3.clean(data.description),
        status=TicketStatus.open,
        priority=data.priority,
        category=data.category,
        language=data.language,
        tags=data.tags,
        owning_team_id=data.owning_team_id,
        assignee_id=assignee_id,
        assigned_at=now if assignee_id else None,
        contact_id=data.contact_id,
        created_by_id=current_user.user.id,
        created_at=now,
    )
    db.add(ticket)
    await db.flush()

    await sla_service.apply_sla(db, ticket)

    message = "Ticket created (auto-assigned via round-robin)" if auto_assigned else "Ticket created"
    await _log(db, current_user, ticket, "created", message=message)

    if ticket.assignee_id:
        await _notify_assigned(db, current_user, ticket)
    elif team is not None:
        await _notify_team(db, current_user, ticket)

    logger.info("Created ticket %s", ticket.ticket_number)
    return ticket


async def get_ticket(db: AsyncSession, ticket_id: uuid.UUID) -> Ticket:
    """Get a single ticket by ID with all relationships eager-loaded."""
    result = await db.execute(
        select(Ticket)
        .where(Ticket.id == ticket_id, Ticket.is_deleted == False)
        .options(*_TICKET_LOAD_OPTIONS)
        .execution_options(populate_existing=True)
    )
    ticket = result.scalar_one_or_none()
    if ticket is None:
        raise NotFoundError("Ticket", ticket_id)
    return ticket


async def get_ticket_by_number(db: AsyncSession, number: int) -> Ticket:
    result = await db.execute(
        select(Ticket)
        .where(Ticket.number == number, Ticket.is_deleted == False)
        .options(*_TICKET_LOAD_OPTIONS)
        .execution_options(populate_existing=True)
    )
    ticket = result.scalar_one_or_none()
    if ticket is None:
        raise NotFoundError("Ticket", number)
    return ticket


def build_filter_conditions(filters: dict) -> list:
    """Translate list/export filters into SQL conditions."""
    conditions = [Ticket.is_deleted == False]

    statuses = filters.get("status")
    if statuses:
        if isinstance(statuses, str):
            statuses = [s.strip() for s in statuses.split(",") if s.strip()]
        conditions.append(Ticket.status.in_(statuses))

    priorities = filters.get("priority")
    if priorities:
        if isinstance(priorities, str):
            priorities = [p.strip() for p in priorities.split(",") if p.strip()]
        conditions.append(Ticket.priority.in_(priorities))

    if filters.get("owning_team_id") is not None:
        conditions.append(Ticket.owning_team_id == filters["owning_team_id"])

    if filters.get("assignee_id") is not None:
        conditions.append(Ticket.assignee_id == filters["assignee_id"])

    if filters.get("unassigned"):
        conditions.append(Ticket.assignee_id.is_(None))

    if filters.get("contact_id") is not None:
        conditions.append(Ticket.contact_id == filters["contact_id"])

    if filters.get("created_by_id") is not None:
        conditions.append(Ticket.created_by_id == filters["created_by_id"])

    if filters.get("sla_status") is not None:
        conditions.append(Ticket.sla_status == filters["sla_status"])

    if filters.get("snoozed") is True:
        conditions.append(Ticket.snoozed_until.isnot(None))
    elif filters.get("snoozed") is False:
        conditions.append(Ticket.snoozed_until.is_(None))

    if filters.get("category"):
        conditions.append(func.lower(Ticket.category) == filters["category"].lower())

    if filters.get("created_from") is not None:
        conditions.append(Ticket.created_at >= filters["created_from"])

    if filters.get("created_to") is not None:
        conditions.append(Ticket.created_at <= filters["created_to"])

    search = (filters.get("search") or "").strip()
    if search:
        pattern = f"%{search}%"
        search_conditions = [Ticket.title.ilike(pattern), Ticket.description.ilike(pattern)]
        digits = search.upper().removeprefix("HD-")
        if digits.isdigit():
            search_conditions.append(Ticket.number == int(digits))
        conditions.append(or_(*search_conditions))

    return conditions


async def list_tickets(
    db: AsyncSession,
    filters: dict,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[Ticket], int]:
    """List tickets with filtering, search, sorting, and pagination."""
    conditions = build_filter_conditions(filters)
    query = select(Ticket).where(*conditions).options(*_LIST_LOAD_OPTIONS)
    count_query = select(func.count()).select_from(Ticket).where(*conditions)

    # --- Sorting ---
    sort_by = filters.get("sort_by", "created_at")
    sort_order = filters.get("sort_order", "desc")

    allowed_sort_fields = {
        "created_at", "updated_at", "title", "status", "priority",
        "number", "sla_due_at", "resolved_at",
    }
    if sort_by not in allowed_sort_fields:
        sort_by = "created_at"

    sort_column = getattr(Ticket, sort_by)
    if sort_order == "asc":
        query = query.order_by(sort_column.asc(), Ticket.number.asc())
    else:
        query = query.order_by(sort_column.desc(), Ticket.number.desc())

    offset = (page - 1) * page_size
    query = query.offset(offset).limit(page_size)

    total_result = await db.execute(count_query)
    total_count = total_result.scalar() or 0

    items_result = await db.execute(query)
    items = list(items_result.scalars().all())

    return items, total_count


async def update_ticket(
    db: AsyncSession,
    current_user: CurrentUser,
    ticket_id: uuid.UUID,
    data: TicketUpdate,
) -> Ticket:
    """Update ticket fields, logging each change. Status goes through change_status."""
    ticket = await get_ticket(db, ticket_id)
    await _require_can_edit(db, current_user, ticket)

    update_fields = data.model_dump(exclude_unset=True)
    new_status = update_fields.pop("status", None)

    if "title" in update_fields and not update_fields["title"]:
        raise ValidationFailed.single("title", "Title is required")
    if update_fields.get("contact_id") is not None:
        await _check_contact(db, update_fields["contact_id"])

    resla = False
    for field, new_value in update_fields.items():
        if field == "description" and new_value is not None:
            new_value = nh3.clean(new_value)
        if field == "tags" and new_value is None:
            new_value = []
        if field == "priority" and new_value is None:
            continue

        old_value = getattr(ticket, field)
        if _display(old_value) == _display(new_value):
            continue

        setattr(ticket, field, new_value)
        if field in ("priority", "category"):
            resla = True

        await _log(
            db, current_user, ticket, "updated",
            message=f"{field.replace('_', ' ').capitalize()} changed",
            field_changed=field,
            old_value=old_value,
            new_value=new_value,
        )

    if resla:
        await sla_service.apply_sla(db, ticket)
        await sla_service.update_sla_status(db, ticket)

    await db.flush()

    if new_status is not None:
        await change_status(db, current_user, ticket.id, new_status)

    return ticket


async def assign_ticket(
    db: AsyncSession,
    current_user: CurrentUser,
    ticket_id: uuid.UUID,
    data: TicketAssign,
) -> Ticket:
    """Set the owning team and assignee.

    Moving to a different team without naming an assignee picks one by
    round-robin when the team allows it.
    """
    _require_can_manage(current_user)
    ticket = await get_ticket(db, ticket_id)

    old_team_id = ticket.owning_team_id
    old_assignee_id = ticket.assignee_id
    old_team_name = ticket.owning_team_name
    old_assignee_name = ticket.assignee_name

    new_team = await _get_team(db, data.owning_team_id) if data.owning_team_id else None
    new_assignee_id = data.assignee_id
    new_assignee = await _get_assignee(db, new_assignee_id) if new_assignee_id else None
    await _check_membership(db, data.owning_team_id, new_assignee_id)

    auto_assigned = False
    if new_team is not None and new_team.id != old_team_id and new_assignee_id is None:
        new_assignee = await team_service.assign_round_robin(db, new_team)
        if new_assignee is not None:
            new_assignee_id = new_assignee.id
            auto_assigned = True

    team_changed = data.owning_team_id != old_team_id
    assignee_changed = new_assignee_id != old_assignee_id

    if not team_changed and not assignee_changed:
        return ticket

    if team_changed:
        ticket.owning_team_id = data.owning_team_id
        await _log(
            db, current_user, ticket, "assigned",
            message=f"Team changed from {old_team_name or 'None'} to {new_team.name if new_team else 'None'}",
            field_changed="owning_team_id",
            old_value=old_team_id,
            new_value=data.owning_team_id,
        )

    if assignee_changed:
        ticket.assignee_id = new_assignee_id
        ticket.assigned_at = utcnow() if new_assignee_id else None
        new_name = new_assignee.full_name if new_assignee else "Unassigned"
        message = f"Assignee changed from {old_assignee_name or 'Unassigned'} to {new_name}"
        if auto_assigned:
            message += " (auto-assigned via round-robin)"
        await _log(
            db, current_user, ticket, "assigned",
            message=message,
            field_changed="assignee_id",
            old_value=old_assignee_id,
            new_value=new_assignee_id,
        )

    if team_changed:
        await sla_service.apply_sla(db, ticket)
        await sla_service.update_sla_status(db, ticket)

    await db.flush()

    if assignee_changed and ticket.assignee_id:
        await _notify_assigned(db, current_user, ticket)
    elif team_changed and ticket.owning_team_id and not ticket.assignee_id:
        await _notify_team(db, current_user, ticket)

    return ticket


async def change_status(
    db: AsyncSession,
    current_user: CurrentUser,
    ticket_id: uuid.UUID,
    new_status: TicketStatus,
) -> Ticket:
    """Move a ticket to a new status, maintaining resolved/closed timestamps."""
    ticket = await get_ticket(db, ticket_id)
    await _require_can_edit(db, current_user, ticket)

    old_status = ticket.status
    if old_status == new_status:
        return ticket

    now = utcnow()
    ticket.status = new_status
    if new_status == TicketStatus.resolved:
        ticket.resolved_at = ticket.resolved_at or now
    elif new_status == TicketStatus.closed:
        ticket.resolved_at = ticket.resolved_at or now
        ticket.closed_at = now
        ticket.closed_by_id = current_user.user.id
    elif old_status in CLOSED_STATUSES:
        ticket.resolved_at = None
        ticket.closed_at = None
        ticket.closed_by_id = None
        if ticket.sla_status == SlaStatus.completed:
            ticket.sla_status = SlaStatus.on_track

    if new_status in CLOSED_STATUSES and ticket.sla_status not in (None, SlaStatus.breached):
        ticket.sla_status = SlaStatus.completed

    await _log(
        db, current_user, ticket, "status_changed",
        message=f"Status changed from {old_status.value} to {new_status.value}",
        field_changed="status",
        old_value=old_status,
        new_value=new_status,
    )
    await db.flush()

    await _notify_participants(
        db, current_user, ticket,
        NotificationEventType.status_changed,
        f"Status changed: {ticket.ticket_number}",
        f"'{ticket.title}' moved from {old_status.value} to {new_status.value}.",
    )
    return ticket


async def close_ticket(db: AsyncSession, current_user: CurrentUser, ticket_id: uuid.UUID) -> Ticket:
    _require_can_manage(current_user)
    ticket = await get_ticket(db, ticket_id)
    if ticket.status == TicketStatus.closed:
        return ticket

    now = utcnow()
    old_status = ticket.status
    ticket.status = TicketStatus.closed
    ticket.closed_at = now
    ticket.closed_by_id = current_user.user.id
    ticket.resolved_at = ticket.resolved_at or now
    if ticket.sla_status is not None and ticket.sla_status != SlaStatus.breached:
        ticket.sla_status = SlaStatus.completed

    await _log(
        db, current_user, ticket, "closed",
        message="Ticket closed",
        field_changed="status",
        old_value=old_status,
        new_value=TicketStatus.closed,
    )
    await db.flush()

    await _notify_participants(
        db, current_user, ticket,
        NotificationEventType.ticket_closed,
        f"Ticket closed: {ticket.ticket_number}",
        f"'{ticket.title}' has been closed.",
    )
    return ticket


async def reopen_ticket(db: AsyncSession, current_user: CurrentUser, ticket_id: uuid.UUID) -> Ticket:
    _require_can_manage(current_user)
    ticket = await get_ticket(db, ticket_id)
    if ticket.status not in CLOSED_STATUSES:
        return ticket

    old_status = ticket.status
    ticket.status = TicketStatus.open
    ticket.closed_at = None
    ticket.closed_by_id = None
    ticket.resolved_at = None
    if ticket.sla_status == SlaStatus.completed:
        ticket.sla_status = SlaStatus.on_track

    await _log(
        db, current_user, ticket, "reopened",
        message="Ticket reopened",
        field_changed="status",
        old_value=old_status,
        new_value=TicketStatus.open,
    )
    await db.flush()

    await _notify_participants(
        db, current_user, ticket,
        NotificationEventType.ticket_reopened,
        f"Ticket reopened: {ticket.ticket_number}",
        f"'{ticket.title}' has been reopened.",
    )
    return ticket


async def delete_ticket(
    db: AsyncSession,
    current_user: CurrentUser,
    ticket_id: uuid.UUID,
) -> None:
    """Soft-delete a ticket. Its number stays reserved."""
    _require_can_manage(current_user)
    ticket = await get_ticket(db, ticket_id)
    ticket.is_deleted = True
    ticket.deleted_at = utcnow()
    await _log(db, current_user, ticket, "deleted", message="Ticket deleted")
    await db.flush()


# ---------------------------------------------------------------------------
# SLA
# ---------------------------------------------------------------------------

async def refresh_sla(db: AsyncSession, current_user: CurrentUser, ticket_id: uuid.UUID) -> Ticket:
    """Re-match the ticket against the current SLA rules."""
    ticket = await get_ticket(db, ticket_id)
    await _require_can_edit(db, current_user, ticket)

    old_rule_name = ticket.sla_rule_name
    old_due = ticket.sla_due_at
    rule = await sla_service.apply_sla(db, ticket)
    await sla_service.update_sla_status(db, ticket, rule)

    await _log(
        db, current_user, ticket, "sla_refreshed",
        message=f"SLA refreshed: {old_rule_name or 'None'} -> {rule.name if rule else 'None'}",
        field_changed="sla_due_at",
        old_value=old_due,
        new_value=ticket.sla_due_at,
    )
    await db.flush()
    return ticket


async def extend_sla(
    db: AsyncSession,
    current_user: CurrentUser,
    ticket_id: uuid.UUID,
    minutes: int,
) -> Ticket:
    """Push the SLA due date back. A breached SLA returns to on track."""
    ticket = await get_ticket(db, ticket_id)
    if ticket.status in CLOSED_STATUSES:
        raise BusinessError("Cannot extend SLA on closed or resolved tickets.")
    await _require_can_edit(db, current_user, ticket)

    # Ticket managers are not limited
    if not current_user.has_permission(SystemPermission.manage_tickets):
        max_count = settings.sla_extension_max_count
        if ticket.sla_extension_count >= max_count:
            raise ForbiddenError(
                f"Maximum extensions ({max_count}) reached. Contact a manager to extend further."
            )
        max_hours = settings.sla_extension_max_hours
        if minutes > max_hours * 60:
            raise BusinessError(
                f"Extension cannot exceed {max_hours} hours. You requested {minutes / 60:g} hours."
            )

    now = utcnow()
    old_due: datetime | None = ticket.sla_due_at
    new_due = (old_due or now) + timedelta(minutes=minutes)
    if new_due <= now:
        raise BusinessError("Extension would result in a due date in the past.")

    old_status = ticket.sla_status
    ticket.sla_due_at = new_due
    ticket.sla_extension_count += 1
    if ticket.sla_status in (SlaStatus.breached, SlaStatus.approaching_breach, None):
        ticket.sla_status = SlaStatus.on_track
        ticket.sla_breached_at = None

    await _log(
        db, current_user, ticket, "sla_extended",
        message=f"SLA extended by {minutes} minutes",
        field_changed="sla_due_at",
        old_value=old_due,
        new_value=new_due,
        metadata={
            "minutes": minutes,
            "old_status": _display(old_status),
            "extension_count": ticket.sla_extension_count,
        },
    )
    await db.flush()
    return ticket


# ---------------------------------------------------------------------------
# Followers
# ---------------------------------------------------------------------------

async def list_followers(db: AsyncSession, ticket_id: uuid.UUID) -> list[TicketFollower]:
    await get_ticket(db, ticket_id)
    result = await db.execute(
        select(TicketFollower)
        .where(TicketFollower.ticket_id == ticket_id)
        .order_by(TicketFollower.created_at)
        .options(selectinload(TicketFollower.user))
    )
    return list(result.scalars().all())


async def add_follower(
    db: AsyncSession,
    current_user: CurrentUser,
    ticket_id: uuid.UUID,
    user_id: uuid.UUID,
) -> list[TicketFollower]:
    """Add a follower. Following twice is a no-op."""
    ticket = await get_ticket(db, ticket_id)
    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundError("User", user_id)

    if user_id not in await follower_ids(db, ticket.id):
        db.add(TicketFollower(ticket_id=ticket.id, user_id=user_id))
        if user_id == current_user.user.id:
            message = f"{user.full_name} started following this ticket"
        else:
            message = f"{current_user.user.full_name} added {user.full_name} as a follower"
        await _log(
            db, current_user, ticket, "follower_added",
            message=message,
            metadata={"user_id": str(user_id)},
        )
    return await list_followers(db, ticket.id)


async def remove_follower(
    db: AsyncSession,
    current_user: CurrentUser,
    ticket_id: uuid.UUID,
    user_id: uuid.UUID,
) -> None:
    """Remove a follower. Removing someone who does not follow is a no-op."""
    ticket = await get_ticket(db, ticket_id)
    result = await db.execute(
        select(TicketFollower)
        .where(TicketFollower.ticket_id == ticket.id, TicketFollower.user_id == user_id)
        .options(selectinload(TicketFollower.user))
    )
    follower = result.scalar_one_or_none()
    if follower is None:
        return

    if user_id == current_user.user.id:
        message = f"{current_user.user.full_name} stopped following this ticket"
    else:
        message = f"{current_user.user.full_name} removed {follower.user_name} as a follower"
    await db.delete(follower)
    await _log(
        db, current_user, ticket, "follower_removed",
        message=message,
        metadata={"user_id": str(user_id)},
    )
    await db.flush()


async def unfollow(db: AsyncSession, current_user: CurrentUser, ticket_id: uuid.UUID) -> None:
    await remove_follower(db, current_user, ticket_id, current_user.user.id)


# ---------------------------------------------------------------------------
# Snooze
# ---------------------------------------------------------------------------

async def snooze_ticket(
    db: AsyncSession,
    current_user: CurrentUser,
    ticket_id: uuid.UUID,
    snooze_until: datetime,
    reason: str | None = None,
) -> Ticket:
    """Hide a ticket until ``snooze_until``; the snooze evaluator wakes it up."""
    ticket = await get_ticket(db, ticket_id)
    now = utcnow()
    if snooze_until <= now:
        raise ValidationFailed.single("snooze_until", "Snooze time must be in the future.")
    max_days = settings.snooze_max_duration_days
    if snooze_until > now + timedelta(days=max_days):
        raise ValidationFailed.single("snooze_until", f"Snooze duration cannot exceed {max_days} days.")
    if ticket.status in CLOSED_STATUSES:
        raise BusinessError("Cannot snooze a closed ticket.")
    if ticket.assignee_id is None:
        raise BusinessError("Ticket must be assigned to an individual before snoozing.")
    await _require_can_edit(db, current_user, ticket)

    reason = reason.strip() if reason else None
    ticket.snoozed_until = snooze_until
    ticket.snoozed_at = now
    ticket.snoozed_by_id = current_user.user.id
    ticket.snoozed_reason = reason or None
    ticket.unsnoozed_at = None

    message = f"Snoozed until {snooze_until:%Y-%m-%d %H:%M} UTC"
    if reason:
        message = f"{message}: {reason}"
    await _log(
        db, current_user, ticket, "snoozed",
        message=message,
        field_changed="snoozed_until",
        new_value=snooze_until,
        metadata={"reason": reason} if reason else None,
    )
    await db.flush()
    return ticket


async def _end_snooze(db: AsyncSession, ticket: Ticket, now: datetime) -> timedelta | None:
    """Clear the snooze. Returns how far the SLA was pushed when the organization pauses it."""
    paused = None
    org = await organization_service.get_settings_row(db)
    if org is not None and org.pause_sla_on_snooze and ticket.sla_due_at and ticket.snoozed_at:
        paused = max(now - ticket.snoozed_at, timedelta(0))
        ticket.sla_due_at = ticket.sla_due_at + paused

    ticket.snoozed_until = None
    ticket.snoozed_at = None
    ticket.snoozed_by_id = None
    ticket.snoozed_reason = None
    ticket.unsnoozed_at = now
    return paused


async def _notify_unsnoozed(
    db: AsyncSession,
    ticket: Ticket,
    auto: bool,
    exclude_user_id: uuid.UUID | None = None,
) -> None:
    if not ticket.is_open:
        return
    recipients = [ticket.assignee_id] if ticket.assignee_id else []
    recipients += await follower_ids(db, ticket.id)
    suffix = "snooze expired" if auto else "unsnoozed"
    await notification_service.notify_many(
        db,
        recipients,
        NotificationEventType.ticket_unsnoozed,
        f"Ticket {ticket.ticket_number} {suffix}",
        f"'{ticket.title}' is back in the queue.",
        url=ticket.url,
        ticket_id=ticket.id,
        exclude_user_id=exclude_user_id,
    )


async def unsnooze_ticket(db: AsyncSession, current_user: CurrentUser, ticket_id: uuid.UUID) -> Ticket:
    ticket = await get_ticket(db, ticket_id)
    if not ticket.is_snoozed:
        raise BusinessError("Ticket is not snoozed.")
    await _require_can_edit(db, current_user, ticket)

    paused = await _end_snooze(db, ticket, utcnow())
    await _log(
        db, current_user, ticket, "unsnoozed",
        message="Manually unsnoozed",
        metadata={"sla_paused_seconds": int(paused.total_seconds())} if paused else None,
    )
    await _notify_unsnoozed(db, ticket, auto=False, exclude_user_id=current_user.user.id)
    await db.flush()
    return ticket


SNOOZE_BATCH_SIZE = 100


async def unsnooze_due_tickets(db: AsyncSession, now: datetime | None = None) -> int:
    """Wake every ticket whose snooze has expired. Returns the number woken."""
    now = now or utcnow()
    woken = 0
    while True:
        result = await db.execute(
            select(Ticket)
            .where(
                Ticket.is_deleted == False,
                Ticket.snoozed_until.isnot(None),
                Ticket.snoozed_until <= now,
            )
            .order_by(Ticket.snoozed_until)
            .limit(SNOOZE_BATCH_SIZE)
        )
        batch = list(result.scalars().all())
        if not batch:
            break
        for ticket in batch:
            snoozed_until = ticket.snoozed_until
            paused = await _end_snooze(db, ticket, now)
            metadata = {"was_auto_unsnooze": True}
            if paused:
                metadata["sla_paused_seconds"] = int(paused.total_seconds())
            await audit_service.log_action(
                db=db,
                ticket_id=ticket.id,
                actor_id=None,
                actor_type=ActorType.system,
                action="unsnoozed",
                message="Snooze expired",
                field_changed="snoozed_until",
                old_value=_display(snoozed_until),
                metadata=metadata,
            )
            await _notify_unsnoozed(db, ticket, auto=True)
            woken += 1
        await db.commit()
    return woken


async def get_change_log(db: AsyncSession, ticket_id: uuid.UUID) -> list[AuditLog]:
    await get_ticket(db, ticket_id)
    return await audit_service.get_audit_log(db, ticket_id)
