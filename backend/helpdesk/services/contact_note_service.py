"""Comments and file attachments kept on a contact."""

import logging
import uuid

import nh3
from fastapi import UploadFile
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from helpdesk.api.dependencies import CurrentUser
from helpdesk.exceptions import ForbiddenError, NotFoundError, ValidationFailed
from helpdesk.models.contact_note import ContactAttachment, ContactComment
from helpdesk.models.role import SystemPermission
from helpdesk.services import attachment_service, contact_service
from helpdesk.storage import get_storage
from helpdesk.storage.base import build_object_key, sanitize_filename

logger = logging.getLogger(__name__)


async def add_comment(
    db: AsyncSession,
    current_user: CurrentUser,
    contact_id: uuid.UUID,
    content: str,
) -> ContactComment:
    contact = await contact_service.get_contact(db, contact_id)
    body = nh3.clean(content).strip()
    if not body:
        raise ValidationFailed.single("content", "Comment body is required.")

    comment = ContactComment(contact_id=contact.id, author_id=current_user.user.id, content=body)
    db.add(comment)
    await db.flush()
    logger.info("Comment added to contact %s by %s", contact.id, current_user.user.username)
    return await _get_comment(db, comment.id)


async def _get_comment(db: AsyncSession, comment_id: uuid.UUID) -> ContactComment:
    result = await db.execute(
        select(ContactComment)
        .where(ContactComment.id == comment_id)
        .options(selectinload(ContactComment.author))
    )
    return result.scalar_one()


async def list_comments(db: AsyncSession, contact_id: uuid.UUID) -> list[ContactComment]:
    """Comments on a contact, newest first."""
    await contact_service.get_contact(db, contact_id)
    result = await db.execute(
        select(ContactComment)
        .where(ContactComment.contact_id == contact_id)
        .order_by(ContactComment.created_at.desc())
        .options(selectinload(ContactComment.author))
    )
    return list(result.scalars().all())


async def add_attachment(
    db: AsyncSession,
    current_user: CurrentUser,
    contact_id: uuid.UUID,
    file: UploadFile,
    display_name: str | None = None,
    description: str | None = None,
) -> ContactAttachment:
    """Store an uploaded file on a contact. The display name defaults to the filename."""
    contact = await contact_service.get_contact(db, contact_id)
    content, detected_type = await attachment_service.read_upload(file)

    original_filename = sanitize_filename(file.filename or "unnamed")
    object_key = build_object_key("contacts", str(contact.id), filename=original_filename)
    await get_storage().save(object_key, content, detected_type)

    attachment = ContactAttachment(
        contact_id=contact.id,
        original_filename=original_filename,
        display_name=(display_name or "").strip() or original_filename,
        description=(description or "").strip() or None,
        object_key=object_key,
        file_size=len(content),
        content_type=detected_type,
        uploaded_by_id=current_user.user.id,
    )
    db.add(attachment)
    await db.flush()
    logger.info('Attached file "%s" to contact %s', attachment.display_name, contact.id)
    return await get_attachment(db, attachment.id)


async def list_attachments(db: AsyncSession, contact_id: uuid.UUID) -> list[ContactAttachment]:
    await contact_service.get_contact(db, contact_id)
    result = await db.execute(
        select(ContactAttachment)
        .where(ContactAttachment.contact_id == contact_id)
        .order_by(ContactAttachment.created_at.asc())
        .options(selectinload(ContactAttachment.uploaded_by))
    )
    return list(result.scalars().all())


async def get_attachment(db: AsyncSession, attachment_id: uuid.UUID) -> ContactAttachment:
    result = await db.execute(
        select(ContactAttachment)
        .where(ContactAttachment.id == attachment_id)
        .options(selectinload(ContactAttachment.uploaded_by))
    )
    attachment = result.scalar_one_or_none()
    if attachment is None:
        raise NotFoundError("Attachment", attachment_id)
    return attachment


async def read_attachment(db: AsyncSession, attachment_id: uuid.UUID) -> tuple[ContactAttachment, bytes]:
    attachment = await get_attachment(db, attachment_id)
    return attachment, await get_storage().read(attachment.object_key)


async def remove_attachment(
    db: AsyncSession,
    current_user: CurrentUser,
    attachment_id: uuid.UUID,
) -> None:
    attachment = await get_attachment(db, attachment_id)
    if (
        current_user.user.id != attachment.uploaded_by_id
        and not current_user.has_permission(SystemPermission.manage_tickets)
    ):
        raise ForbiddenError("Only the uploader or a ticket manager can remove this file")

    await get_storage().delete(attachment.object_key)
    await db.delete(attachment)
    await db.flush()
    logger.info('Removed file "%s" from contact %s', attachment.display_name, attachment.contact_id)
