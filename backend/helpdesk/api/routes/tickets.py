import math
import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, Form, Query, Response, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.api.dependencies import CurrentUser, get_current_user
from helpdesk.database import get_db
from helpdesk.models.base import SlaStatus
from helpdesk.schemas.attachment import AttachmentResponse
from helpdesk.schemas.audit_log import AuditLogResponse
from helpdesk.schemas.comment import CommentCreate, CommentResponse, CommentUpdate
from helpdesk.schemas.common import PaginatedResponse
from helpdesk.schemas.ticket import (
    TicketAssign,
    TicketCreate,
    TicketDetailResponse,
    TicketExtendSla,
    TicketFollowerAdd,
    TicketFollowerResponse,
    TicketListResponse,
    TicketResponse,
    TicketSnooze,
    TicketStatusChange,
    TicketUpdate,
)
from helpdesk.services import attachment_service, comment_service, ticket_service

router = APIRouter()


def _detail(ticket) -> TicketDetailResponse:
    response = TicketResponse.model_validate(ticket)
    return TicketDetailResponse(
        **response.model_dump(),
        comments=[CommentResponse.model_validate(c) for c in ticket.comments],
        attachments=[AttachmentResponse.model_validate(a) for a in ticket.attachments],
        audit_log=[
            AuditLogResponse.from_entry(entry, ticket.ticket_number)
            for entry in sorted(ticket.audit_entries, key=lambda e: e.created_at, reverse=True)
        ],
        followers=[TicketFollowerResponse.model_validate(f) for f in ticket.followers],
    )


# ---------------------------------------------------------------------------
# Attachment routes (non-ticket-scoped). Defined before {ticket_id}
# routes so that "attachments" is not captured as a ticket_id path param.
# ---------------------------------------------------------------------------


@router.get("/attachments/{attachment_id}/download")
async def download_attachment(
    attachment_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Download an attachment file by attachment ID."""
    attachment, content = await attachment_service.read_attachment(db, attachment_id)
    return Response(
        content=content,
        media_type=attachment.content_type,
        headers={"Content-Disposition": f'attachment; filename="{attachment.original_filename}"'},
    )


@router.delete(
    "/attachments/{attachment_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def delete_attachment(
    attachment_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Delete an attachment by ID."""
    await attachment_service.delete_attachment(db, current_user, attachment_id)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# Comment routes (non-ticket-scoped)
# ---------------------------------------------------------------------------


@router.patch("/comments/{comment_id}", response_model=CommentResponse)
async def edit_comment(
    comment_id: uuid.UUID,
    data: CommentUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Edit a comment. Only the author or a ticket manager may edit."""
    comment = await comment_service.edit_comment(db, current_user, comment_id, data.content)
    response = CommentResponse.model_validate(comment)
    await db.commit()
    return response


@router.delete("/comments/{comment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_comment(
    comment_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    await comment_service.delete_comment(db, current_user, comment_id)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# Ticket CRUD
# ---------------------------------------------------------------------------


@router.post("/", response_model=TicketResponse, status_code=status.HTTP_201_CREATED)
async def create_ticket(
    data: TicketCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Create a new ticket."""
    ticket = await ticket_service.create_ticket(db, current_user, data)
    await db.commit()
    # Re-fetch with relationships loaded so serialization works after commit
    return await ticket_service.get_ticket(db, ticket.id)


@router.get("/", response_model=PaginatedResponse[TicketListResponse])
async def list_tickets(
    status_filter: str | None = Query(None, alias="status", description="Comma-separated statuses"),
    priority: str | None = Query(None, description="Comma-separated priorities"),
    owning_team_id: uuid.UUID | None = Query(None),
    assignee_id: uuid.UUID | None = Query(None),
    unassigned: bool | None = Query(None),
    contact_id: uuid.UUID | None = Query(None),
    created_by_id: uuid.UUID | None = Query(None),
    sla_status: SlaStatus | None = Query(None),
    snoozed: bool | None = Query(None),
    category: str | None = Query(None),
    created_from: datetime | None = Query(None),
    created_to: datetime | None = Query(None),
    search: str | None = Query(None),
    sort_by: str = Query("created_at"),
    sort_order: str = Query("desc"),
    page: int = Query(1, ge=1),
    page_size: int = Query(25, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """List tickets with filtering, sorting, and pagination."""
    filters = {
        "status": status_filter,
        "priority": priority,
        "owning_team_id": owning_team_id,
        "assignee_id": assignee_id,
        "unassigned": unassigned,
        "contact_id": contact_id,
        "created_by_id": created_by_id,
        "sla_status": sla_status,
        "snoozed": snoozed,
        "category": category,
        "created_from": created_from,
        "created_to": created_to,
        "search": search,
        "sort_by": sort_by,
        "sort_order": sort_order,
    }
    tickets, total = await ticket_service.list_tickets(
        db, filters=filters, page=page, page_size=page_size
    )
    pages = math.ceil(total / page_size) if total > 0 else 0
    return PaginatedResponse(
        items=tickets,
        total=total,
        page=page,
        page_size=page_size,
        pages=pages,
    )


@router.get("/by-number/{number}", response_model=TicketDetailResponse)
async def get_ticket_by_number(
    number: int,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    return _detail(await ticket_service.get_ticket_by_number(db, number))


@router.get("/{ticket_id}", response_model=TicketDetailResponse)
async def get_ticket(
    ticket_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Get a single ticket with comments, attachments, and change log."""
    return _detail(await ticket_service.get_ticket(db, ticket_id))


@router.patch("/{ticket_id}", response_model=TicketResponse)
async def update_ticket(
    ticket_id: uuid.UUID,
    data: TicketUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Update a ticket."""
    ticket = await ticket_service.update_ticket(db, current_user, ticket_id, data)
    await db.commit()
    return await ticket_service.get_ticket(db, ticket.id)


@router.delete("/{ticket_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_ticket(
    ticket_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Soft-delete a ticket."""
    await ticket_service.delete_ticket(db, current_user, ticket_id)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------------


@router.post("/{ticket_id}/assign", response_model=TicketResponse)
async def assign_ticket(
    ticket_id: uuid.UUID,
    data: TicketAssign,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Set the owning team and/or assignee. A team without assignee uses round-robin."""
    ticket = await ticket_service.assign_ticket(db, current_user, ticket_id, data)
    await db.commit()
    return await ticket_service.get_ticket(db, ticket.id)


@router.post("/{ticket_id}/status", response_model=TicketResponse)
async def change_status(
    ticket_id: uuid.UUID,
    data: TicketStatusChange,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    ticket = await ticket_service.change_status(db, current_user, ticket_id, data.status)
    await db.commit()
    return await ticket_service.get_ticket(db, ticket.id)


@router.post("/{ticket_id}/close", response_model=TicketResponse)
async def close_ticket(
    ticket_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    ticket = await ticket_service.close_ticket(db, current_user, ticket_id)
    await db.commit()
    return await ticket_service.get_ticket(db, ticket.id)


@router.post("/{ticket_id}/reopen", response_model=TicketResponse)
async def reopen_ticket(
    ticket_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    ticket = await ticket_service.reopen_ticket(db, current_user, ticket_id)
    await db.commit()
    return await ticket_service.get_ticket(db, ticket.id)


@router.post("/{ticket_id}/refresh-sla", response_model=TicketResponse)
async def refresh_sla(
    ticket_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Re-match the ticket against the active SLA rules."""
    ticket = await ticket_service.refresh_sla(db, current_user, ticket_id)
    await db.commit()
    return await ticket_service.get_ticket(db, ticket.id)


@router.post("/{ticket_id}/extend-sla", response_model=TicketResponse)
async def extend_sla(
    ticket_id: uuid.UUID,
    data: TicketExtendSla,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    ticket = await ticket_service.extend_sla(db, current_user, ticket_id, data.minutes)
    await db.commit()
    return await ticket_service.get_ticket(db, ticket.id)


@router.post("/{ticket_id}/snooze", response_model=TicketResponse)
async def snooze_ticket(
    ticket_id: uuid.UUID,
    data: TicketSnooze,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Snooze an assigned ticket until the given time."""
    ticket = await ticket_service.snooze_ticket(
        db, current_user, ticket_id, data.snooze_until, data.reason
    )
    await db.commit()
    return await ticket_service.get_ticket(db, ticket.id)


@router.post("/{ticket_id}/unsnooze", response_model=TicketResponse)
async def unsnooze_ticket(
    ticket_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    ticket = await ticket_service.unsnooze_ticket(db, current_user, ticket_id)
    await db.commit()
    return await ticket_service.get_ticket(db, ticket.id)


# ---------------------------------------------------------------------------
# Followers (nested under ticket)
# ---------------------------------------------------------------------------


@router.get("/{ticket_id}/followers", response_model=list[TicketFollowerResponse])
async def list_followers(
    ticket_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    return await ticket_service.list_followers(db, ticket_id)


@router.post("/{ticket_id}/followers", response_model=list[TicketFollowerResponse])
async def add_follower(
    ticket_id: uuid.UUID,
    data: TicketFollowerAdd,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Add a follower to a ticket. Adding an existing follower changes nothing."""
    followers = await ticket_service.add_follower(db, current_user, ticket_id, data.user_id)
    response = [TicketFollowerResponse.model_validate(f) for f in followers]
    await db.commit()
    return response


@router.post("/{ticket_id}/unfollow", status_code=status.HTTP_204_NO_CONTENT)
async def unfollow_ticket(
    ticket_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Stop following a ticket."""
    await ticket_service.unfollow(db, current_user, ticket_id)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/{ticket_id}/followers/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_follower(
    ticket_id: uuid.UUID,
    user_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    await ticket_service.remove_follower(db, current_user, ticket_id, user_id)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# Comments (nested under ticket)
# ---------------------------------------------------------------------------


@router.post(
    "/{ticket_id}/comments",
    response_model=CommentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_comment(
    ticket_id: uuid.UUID,
    data: CommentCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Add a comment or internal note to a ticket."""
    comment = await comment_service.add_comment(
        db, current_user, ticket_id, data.content, data.is_internal
    )
    response = CommentResponse.model_validate(comment)
    await db.commit()
    return response


@router.get("/{ticket_id}/comments", response_model=list[CommentResponse])
async def list_comments(
    ticket_id: uuid.UUID,
    include_internal: bool = Query(True),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    return await comment_service.list_comments(db, ticket_id, include_internal=include_internal)


# ---------------------------------------------------------------------------
# Attachments (nested under ticket)
# ---------------------------------------------------------------------------


@router.post(
    "/{ticket_id}/attachments",
    response_model=AttachmentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def upload_attachment(
    ticket_id: uuid.UUID,
    file: UploadFile,
    comment_id: uuid.UUID | None = Form(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Upload a file attachment to a ticket, optionally linked to a comment."""
    attachment = await attachment_service.upload_file(
        db, current_user, ticket_id, file, comment_id=comment_id
    )
    response = AttachmentResponse.model_validate(attachment)
    await db.commit()
    return response


@router.get("/{ticket_id}/attachments", response_model=list[AttachmentResponse])
async def list_attachments(
    ticket_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """List all attachments for a ticket."""
    return await attachment_service.list_attachments(db, ticket_id)


# ---------------------------------------------------------------------------
# Change log (nested under ticket)
# ---------------------------------------------------------------------------


@router.get("/{ticket_id}/change-log", response_model=list[AuditLogResponse])
async def get_change_log(
    ticket_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Get the change log for a ticket, newest first."""
    ticket = await ticket_service.get_ticket(db, ticket_id)
    entries = await ticket_service.get_change_log(db, ticket_id)
    return [AuditLogResponse.from_entry(entry, ticket.ticket_number) for entry in entries]
