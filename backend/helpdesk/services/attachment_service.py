import logging
import uuid

from fastapi import UploadFile
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from helpdesk.api.dependencies import CurrentUser
from helpdesk.config import settings
from helpdesk.exceptions import BusinessError, ForbiddenError, NotFoundError
from helpdesk.models.attachment import Attachment
from helpdesk.models.role import SystemPermission
from helpdesk.models.ticket import Ticket
from helpdesk.models.ticket_comment import TicketComment
from helpdesk.services import audit_service
from helpdesk.storage import get_storage
from helpdesk.storage.base import build_object_key, sanitize_filename

logger = logging.getLogger(__name__)

ALLOWED_CONTENT_TYPES = {
    # Images
    "image/png", "image/jpeg", "image/gif", "image/webp",
    # Documents
    "application/pdf",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "text/plain", "text/csv",
    "application/json", "application/xml", "text/yaml",
    # Archives
    "application/zip",
}


def detect_content_type(content: bytes) -> str:
    """Sniff the real content type; the client header is not trusted."""
    import magic

    return magic.from_buffer(content, mime=True)


async def read_upload(file: UploadFile) -> tuple[bytes, str]:
    """Read an upload, enforcing the size limit and the allowed content types."""
    if file.content_type not in ALLOWED_CONTENT_TYPES:
        raise BusinessError(f"File type {file.content_type} not allowed")

    max_bytes = settings.max_upload_size_mb * 1024 * 1024
    content = await file.read()
    if len(content) > max_bytes:
        raise BusinessError(f"File size exceeds {settings.max_upload_size_mb}MB limit")

    detected_type = detect_content_type(content)
    if detected_type not in ALLOWED_CONTENT_TYPES:
        raise BusinessError(f"Detected file type {detected_type} not allowed")
    return content, detected_type


async def upload_file(
    db: AsyncSession,
    current_user: CurrentUser,
    ticket_id: uuid.UUID,
    file: UploadFile,
    comment_id: uuid.UUID | None = None,
) -> Attachment:
    """Store an uploaded file and attach it to a ticket (optionally a comment)."""
    result = await db.execute(select(Ticket).where(Ticket.id == ticket_id, Ticket.is_deleted == False))
    if not result.scalar_one_or_none():
        raise NotFoundError("Ticket", ticket_id)

    if comment_id is not None:
        result = await db.execute(
            select(TicketComment.id).where(
                TicketComment.id == comment_id, TicketComment.ticket_id == ticket_id
            )
        )
        if result.scalar_one_or_none() is None:
            raise NotFoundError("Comment", comment_id)

    content, detected_type = await read_upload(file)
    original_filename = sanitize_filename(file.filename or "unnamed")
    object_key = build_object_key("tickets", str(ticket_id), filename=original_filename)
    await get_storage().save(object_key, content, detected_type)

    attachment = Attachment(
        ticket_id=ticket_id,
        comment_id=comment_id,
        original_filename=original_filename,
        object_key=object_key,
        file_size=len(content),
        content_type=detected_type,
        uploaded_by_id=current_user.user.id,
    )
    db.add(attachment)
    await db.flush()

    await audit_service.log_action(
        db=db,
        ticket_id=ticket_id,
        actor_id=current_user.user.id,
        actor_type=current_user.actor_type,
        action="file_uploaded",
        message=f"Attachment {original_filename} added",
        metadata={"attachment_id": str(attachment.id), "filename": original_filename},
    )

    return await get_attachment(db, attachment.id)


async def list_attachments(
    db: AsyncSession,
    ticket_id: uuid.UUID,
) -> list[Attachment]:
    """List all attachments for a ticket."""
    result = await db.execute(
        select(Attachment)
        .where(Attachment.ticket_id == ticket_id)
        .order_by(Attachment.created_at.asc())
        .options(selectinload(Attachment.uploaded_by))
    )
    return list(result.scalars().all())


async def get_attachment(
    db: AsyncSession,
    attachment_id: uuid.UUID,
) -> Attachment:
    """Get a single attachment by ID."""
    result = await db.execute(
        select(Attachment)
        .where(Attachment.id == attachment_id)
        .options(selectinload(Attachment.uploaded_by))
    )
    attachment = result.scalar_one_or_none()
    if not attachment:
        raise NotFoundError("Attachment", attachment_id)
    return attachment


async def read_attachment(db: AsyncSession, attachment_id: uuid.UUID) -> tuple[Attachment, bytes]:
    attachment = await get_attachment(db, attachment_id)
    return attachment, await get_storage().read(attachment.object_key)


async def delete_attachment(
    db: AsyncSession,
    current_user: CurrentUser,
    attachment_id: uuid.UUID,
) -> None:
    """Delete an attachment from storage and the database."""
    attachment = await get_attachment(db, attachment_id)

    if (
        current_user.user.id != attachment.uploaded_by_id
        and not current_user.has_permission(SystemPermission.manage_tickets)
    ):
        raise ForbiddenError("Only the uploader or a ticket manager can delete this attachment")

    await get_storage().delete(attachment.object_key)

    await audit_service.log_action(
        db=db,
        ticket_id=attachment.ticket_id,
        actor_id=current_user.user.id,
        actor_type=current_user.actor_type,
        action="file_deleted",
        message=f"Attachment {attachment.original_filename} removed",
        metadata={"attachment_id": str(attachment.id), "filename": attachment.original_filename},
    )

    await db.delete(attachment)
    await db.flush()
