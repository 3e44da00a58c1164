from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.api.dependencies import CurrentUser, get_current_user, require_permission
from helpdesk.database import get_db
from helpdesk.models.role import SystemPermission
from helpdesk.schemas.organization import (
    InitialSetupRequest,
    OrganizationSettingsResponse,
    OrganizationSettingsUpdate,
)
from helpdesk.services import organization_service

setup_router = APIRouter()
router = APIRouter()


@setup_router.get("/status")
async def setup_status(db: AsyncSession = Depends(get_db)):
    """Report whether initial setup has run. Unauthenticated."""
    return {"setup_complete": await organization_service.is_setup_complete(db)}


@setup_router.post("/", response_model=OrganizationSettingsResponse, status_code=status.HTTP_201_CREATED)
async def run_initial_setup(
    data: InitialSetupRequest,
    db: AsyncSession = Depends(get_db),
):
    """Create the organization and the first administrator. Only allowed once."""
    org, _ = await organization_service.run_initial_setup(db, data)
    await db.commit()
    return org


@router.get("/", response_model=OrganizationSettingsResponse)
async def get_organization(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    return await organization_service.get_organization(db)


@router.patch("/", response_model=OrganizationSettingsResponse)
async def update_organization(
    data: OrganizationSettingsUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_permission(SystemPermission.manage_system_settings)),
):
    """Update organization settings. Requires system settings permission."""
    org = await organization_service.update_organization(db, data)
    await db.commit()
    return org
