import math
from uuid import UUID

from fastapi import APIRouter, Depends, Form, Query, Response, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.api.dependencies import CurrentUser, get_current_user, require_permission
from helpdesk.database import get_db
from helpdesk.models.role import SystemPermission
from helpdesk.schemas.common import PaginatedResponse
from helpdesk.schemas.contact import (
    ContactAttachmentResponse,
    ContactCommentCreate,
    ContactCommentResponse,
    ContactCreate,
    ContactResponse,
    ContactUpdate,
)
from helpdesk.services import contact_note_service, contact_service

router = APIRouter()


@router.get("/attachments/{attachment_id}/download")
async def download_contact_attachment(
    attachment_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    attachment, content = await contact_note_service.read_attachment(db, attachment_id)
    return Response(
        content=content,
        media_type=attachment.content_type,
        headers={"Content-Disposition": f'attachment; filename="{attachment.original_filename}"'},
    )


@router.delete("/attachments/{attachment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_contact_attachment(
    attachment_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Remove a file from a contact. Only the uploader or a ticket manager may."""
    await contact_note_service.remove_attachment(db, current_user, attachment_id)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/", response_model=ContactResponse, status_code=status.HTTP_201_CREATED)
async def create_contact(
    data: ContactCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    contact = await contact_service.create_contact(db, data)
    await db.commit()
    return contact


@router.get("/", response_model=PaginatedResponse[ContactResponse])
async def list_contacts(
    search: str | None = Query(None, description="Name, email, organization or phone number"),
    page: int = Query(1, ge=1),
    page_size: int = Query(25, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    contacts, total = await contact_service.list_contacts(db, page=page, page_size=page_size, search=search)
    pages = math.ceil(total / page_size) if total > 0 else 0
    return PaginatedResponse(
        items=contacts,
        total=total,
        page=page,
        page_size=page_size,
        pages=pages,
    )


@router.get("/{contact_id}", response_model=ContactResponse)
async def get_contact(
    contact_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    return await contact_service.get_contact(db, contact_id)


@router.patch("/{contact_id}", response_model=ContactResponse)
async def update_contact(
    contact_id: UUID,
    data: ContactUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    contact = await contact_service.update_contact(db, contact_id, data)
    await db.commit()
    return contact


@router.delete("/{contact_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_contact(
    contact_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_permission(SystemPermission.manage_tickets)),
):
    """Soft-delete a contact. Requires the manage tickets permission."""
    await contact_service.delete_contact(db, contact_id)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{contact_id}/comments", response_model=list[ContactCommentResponse])
async def list_contact_comments(
    contact_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    return await contact_note_service.list_comments(db, contact_id)


@router.post(
    "/{contact_id}/comments",
    response_model=ContactCommentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_contact_comment(
    contact_id: UUID,
    data: ContactCommentCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    comment = await contact_note_service.add_comment(db, current_user, contact_id, data.content)
    response = ContactCommentResponse.model_validate(comment)
    await db.commit()
    return response


@router.get("/{contact_id}/attachments", response_model=list[ContactAttachmentResponse])
async def list_contact_attachments(
    contact_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    return await contact_note_service.list_attachments(db, contact_id)


@router.post(
    "/{contact_id}/attachments",
    response_model=ContactAttachmentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_contact_attachment(
    contact_id: UUID,
    file: UploadFile,
    display_name: str | None = Form(None, max_length=255),
    description: str | None = Form(None, max_length=1000),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Upload a file to a contact."""
    attachment = await contact_note_service.add_attachment(
        db, current_user, contact_id, file, display_name=display_name, description=description
    )
    response = ContactAttachmentResponse.model_validate(attachment)
    await db.commit()
    return response
