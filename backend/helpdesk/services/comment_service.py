import uuid

import nh3
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from helpdesk.api.dependencies import CurrentUser
from helpdesk.exceptions import ForbiddenError, NotFoundError
from helpdesk.models.attachment import Attachment
from helpdesk.models.base import NotificationEventType
from helpdesk.models.role import SystemPermission
from helpdesk.models.ticket import Ticket
from helpdesk.models.ticket_comment import TicketComment
from helpdesk.services import audit_service, notification_service, ticket_service


async def _get_ticket(db: AsyncSession, ticket_id: uuid.UUID) -> Ticket:
    result = await db.execute(
        select(Ticket).where(Ticket.id == ticket_id, Ticket.is_deleted == False)
    )
    ticket = result.scalar_one_or_none()
    if not ticket:
        raise NotFoundError("Ticket", ticket_id)
    return ticket


async def add_comment(
    db: AsyncSession,
    current_user: CurrentUser,
    ticket_id: uuid.UUID,
    content: str,
    is_internal: bool = False,
) -> TicketComment:
    """Add a comment to a ticket. Sanitizes HTML content."""
    ticket = await _get_ticket(db, ticket_id)

    comment = TicketComment(
        ticket_id=ticket_id,
        author_id=current_user.user.id,
        content=nh3.clean(content),
        is_internal=is_internal,
    )
    db.add(comment)
    await db.flush()

    await audit_service.log_action(
        db=db,
        ticket_id=ticket_id,
        actor_id=current_user.user.id,
        actor_type=current_user.actor_type,
        action="comment_added",
        message="Internal note added" if is_internal else "Comment added",
        metadata={"comment_id": str(comment.id), "is_internal": is_internal},
    )

    await notification_service.notify_many(
        db,
        await ticket_service.participant_ids(db, ticket),
        NotificationEventType.comment_added,
        f"New comment on {ticket.ticket_number}",
        f"{current_user.user.full_name} commented on '{ticket.title}'.",
        url=ticket.url,
        ticket_id=ticket.id,
        exclude_user_id=current_user.user.id,
    )

    return await get_comment(db, comment.id)


async def get_comment(db: AsyncSession, comment_id: uuid.UUID) -> TicketComment:
    result = await db.execute(
        select(TicketComment)
        .where(TicketComment.id == comment_id)
        .options(selectinload(TicketComment.author))
    )
    comment = result.scalar_one_or_none()
    if not comment:
        raise NotFoundError("Comment", comment_id)
    return comment


async def edit_comment(
    db: AsyncSession,
    current_user: CurrentUser,
    comment_id: uuid.UUID,
    content: str,
) -> TicketComment:
    """Edit an existing comment. Only the author or a ticket manager may edit."""
    comment = await get_comment(db, comment_id)
    if comment.author_id != current_user.user.id and not current_user.has_permission(
        SystemPermission.manage_tickets
    ):
        raise ForbiddenError("Only the author can edit this comment")

    comment.content = nh3.clean(content)
    await db.flush()
    return comment


async def delete_comment(db: AsyncSession, current_user: CurrentUser, comment_id: uuid.UUID) -> None:
    comment = await get_comment(db, comment_id)
    if comment.author_id != current_user.user.id and not current_user.has_permission(
        SystemPermission.manage_tickets
    ):
        raise ForbiddenError("Only the author can delete this comment")
    await audit_service.log_action(
        db=db,
        ticket_id=comment.ticket_id,
        actor_id=current_user.user.id,
        actor_type=current_user.actor_type,
        action="comment_deleted",
        message="Comment deleted",
        metadata={"comment_id": str(comment.id)},
    )
    # Attachments stay on the ticket
    await db.execute(
        update(Attachment).where(Attachment.comment_id == comment.id).values(comment_id=None)
    )
    await db.delete(comment)
    await db.flush()


async def list_comments(
    db: AsyncSession,
    ticket_id: uuid.UUID,
    include_internal: bool = True,
) -> list[TicketComment]:
    """List all comments for a ticket, oldest first."""
    await _get_ticket(db, ticket_id)
    query = (
        select(TicketComment)
        .where(TicketComment.ticket_id == ticket_id)
        .order_by(TicketComment.created_at.asc())
        .options(selectinload(TicketComment.author))
    )
    if not include_internal:
        query = query.where(TicketComment.is_internal == False)
    result = await db.execute(query)
    return list(result.scalars().all())
