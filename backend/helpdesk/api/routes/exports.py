import math
import uuid

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.api.dependencies import CurrentUser, require_permission
from helpdesk.database import get_db
from helpdesk.models.role import SystemPermission
from helpdesk.schemas.common import PaginatedResponse
from helpdesk.schemas.jobs import ExportColumnInfo, ExportCreate, ExportJobResponse
from helpdesk.services import export_service
from helpdesk.tasks.queue import task_queue

router = APIRouter()

import_export = require_permission(SystemPermission.import_export_tickets)


@router.get("/columns", response_model=list[ExportColumnInfo])
async def list_columns(
    current_user: CurrentUser = Depends(import_export),
):
    """Columns that can be selected for a ticket export."""
    return export_service.available_columns()


@router.post("/", response_model=ExportJobResponse, status_code=status.HTTP_202_ACCEPTED)
async def create_export(
    data: ExportCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(import_export),
):
    """Queue a ticket export with the chosen columns and filters."""
    job = await export_service.create_export_job(db, current_user, data)
    await db.commit()
    task_queue.enqueue("export_job", job.id)
    return job


@router.get("/", response_model=PaginatedResponse[ExportJobResponse])
async def list_my_exports(
    page: int = Query(1, ge=1),
    page_size: int = Query(25, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(import_export),
):
    """List the current user's exports, newest first."""
    jobs, total = await export_service.list_my_exports(db, current_user, page=page, page_size=page_size)
    pages = math.ceil(total / page_size) if total > 0 else 0
    return PaginatedResponse(
        items=jobs,
        total=total,
        page=page,
        page_size=page_size,
        pages=pages,
    )


@router.get("/{job_id}", response_model=ExportJobResponse)
async def get_export(
    job_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(import_export),
):
    return await export_service.get_export_job(db, current_user, job_id)


@router.post("/{job_id}/retry", response_model=ExportJobResponse)
async def retry_export(
    job_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(import_export),
):
    """Re-queue a failed export."""
    job = await export_service.retry_export_job(db, current_user, job_id)
    await db.commit()
    task_queue.enqueue("export_job", job.id)
    return job


@router.get("/{job_id}/download")
async def download_export(
    job_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(import_export),
):
    job, content = await export_service.download_export(db, current_user, job_id)
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{export_service.download_filename(job)}"'},
    )
