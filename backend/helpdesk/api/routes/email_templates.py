from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.api.dependencies import CurrentUser, require_permission
from helpdesk.database import get_db
from helpdesk.models.role import SystemPermission
from helpdesk.schemas.email_template import (
    EmailTemplateCreate,
    EmailTemplatePreviewRequest,
    EmailTemplatePreviewResponse,
    EmailTemplateResponse,
    EmailTemplateUpdate,
)
from helpdesk.services import email_template_service

router = APIRouter()

manage_templates = require_permission(SystemPermission.manage_templates)


@router.get("/", response_model=list[EmailTemplateResponse])
async def list_templates(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(manage_templates),
):
    return await email_template_service.list_templates(db)


@router.post("/", response_model=EmailTemplateResponse, status_code=status.HTTP_201_CREATED)
async def create_template(
    data: EmailTemplateCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(manage_templates),
):
    template = await email_template_service.create_template(db, data)
    await db.commit()
    return template


@router.get("/{template_id}", response_model=EmailTemplateResponse)
async def get_template(
    template_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(manage_templates),
):
    return await email_template_service.get_template(db, template_id)


@router.patch("/{template_id}", response_model=EmailTemplateResponse)
async def update_template(
    template_id: UUID,
    data: EmailTemplateUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(manage_templates),
):
    template = await email_template_service.update_template(db, template_id, data)
    await db.commit()
    return template


@router.delete("/{template_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_template(
    template_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(manage_templates),
):
    """Delete a custom template. Built-in templates can only be reverted."""
    await email_template_service.delete_template(db, template_id)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{template_id}/revert", response_model=EmailTemplateResponse)
async def revert_template(
    template_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(manage_templates),
):
    template = await email_template_service.revert_template(db, template_id)
    await db.commit()
    return template


@router.post("/{template_id}/preview", response_model=EmailTemplatePreviewResponse)
async def preview_template(
    template_id: UUID,
    data: EmailTemplatePreviewRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(manage_templates),
):
    """Render subject and content against sample placeholder values."""
    subject, content = await email_template_service.preview_template(db, template_id, data.context)
    return EmailTemplatePreviewResponse(subject=subject, content=content)
