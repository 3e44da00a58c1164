import math
import uuid

from fastapi import APIRouter, Depends, File, Form, Query, Response, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.api.dependencies import CurrentUser, require_permission
from helpdesk.database import get_db
from helpdesk.models.base import ImportEntityType, ImportMode
from helpdesk.models.role import SystemPermission
from helpdesk.schemas.common import PaginatedResponse
from helpdesk.schemas.jobs import ImportJobResponse
from helpdesk.services import import_service
from helpdesk.tasks.queue import task_queue

router = APIRouter()

import_export = require_permission(SystemPermission.import_export_tickets)


@router.post("/", response_model=ImportJobResponse, status_code=status.HTTP_202_ACCEPTED)
async def create_import(
    file: UploadFile = File(...),
    entity_type: ImportEntityType = Form(...),
    mode: ImportMode = Form(ImportMode.insert_if_not_exists),
    is_dry_run: bool = Form(False),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(import_export),
):
    """Upload a CSV and queue it for import. Poll the job for progress."""
    job = await import_service.create_import_job(db, current_user, file, entity_type, mode, is_dry_run)
    await db.commit()
    task_queue.enqueue("import_job", job.id)
    return job


@router.get("/", response_model=PaginatedResponse[ImportJobResponse])
async def list_imports(
    entity_type: ImportEntityType | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(25, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(import_export),
):
    jobs, total = await import_service.list_import_jobs(db, page=page, page_size=page_size, entity_type=entity_type)
    pages = math.ceil(total / page_size) if total > 0 else 0
    return PaginatedResponse(
        items=jobs,
        total=total,
        page=page,
        page_size=page_size,
        pages=pages,
    )


@router.get("/{job_id}", response_model=ImportJobResponse)
async def get_import(
    job_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(import_export),
):
    return await import_service.get_import_job(db, job_id)


@router.get("/{job_id}/errors")
async def download_error_file(
    job_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(import_export),
):
    """Download the failed rows with an extra Error column."""
    job, content = await import_service.read_error_file(db, job_id)
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="import-errors-{job.id}.csv"'},
    )
