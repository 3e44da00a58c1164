from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.api.dependencies import CurrentUser, require_permission
from helpdesk.database import get_db
from helpdesk.models.role import SystemPermission
from helpdesk.schemas.scheduler import (
    AppointmentTypeCreate,
    AppointmentTypeResponse,
    AppointmentTypeUpdate,
    SchedulerConfigurationResponse,
    SchedulerConfigurationUpdate,
    StaffMemberCreate,
    StaffMemberResponse,
    StaffMemberUpdate,
)
from helpdesk.services import scheduler_admin_service

router = APIRouter()

manage_scheduler = require_permission(SystemPermission.manage_scheduler)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@router.get("/configuration", response_model=SchedulerConfigurationResponse)
async def get_configuration(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(manage_scheduler),
):
    config = await scheduler_admin_service.get_configuration(db)
    await db.commit()
    return config


@router.put("/configuration", response_model=SchedulerConfigurationResponse)
async def update_configuration(
    data: SchedulerConfigurationUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(manage_scheduler),
):
    """Organization hours, default durations, notice period and reminder lead time."""
    config = await scheduler_admin_service.update_configuration(db, data)
    await db.commit()
    return config


# ---------------------------------------------------------------------------
# Staff
# ---------------------------------------------------------------------------


@router.get("/staff", response_model=list[StaffMemberResponse])
async def list_staff(
    include_inactive: bool = Query(True),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(manage_scheduler),
):
    return await scheduler_admin_service.list_staff(db, include_inactive=include_inactive)


@router.post("/staff", response_model=StaffMemberResponse, status_code=status.HTTP_201_CREATED)
async def add_staff(
    data: StaffMemberCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(manage_scheduler),
):
    """Make a user a scheduler staff member, reactivating a removed one."""
    staff = await scheduler_admin_service.add_staff(db, data)
    await db.commit()
    return staff


@router.get("/staff/{staff_member_id}", response_model=StaffMemberResponse)
async def get_staff(
    staff_member_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(manage_scheduler),
):
    return await scheduler_admin_service.get_staff(db, staff_member_id)


@router.patch("/staff/{staff_member_id}", response_model=StaffMemberResponse)
async def update_staff(
    staff_member_id: UUID,
    data: StaffMemberUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(manage_scheduler),
):
    staff = await scheduler_admin_service.update_staff(db, staff_member_id, data)
    await db.commit()
    return staff


@router.delete("/staff/{staff_member_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_staff(
    staff_member_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(manage_scheduler),
):
    """Deactivate a staff member. Refused while they have upcoming appointments."""
    await scheduler_admin_service.remove_staff(db, staff_member_id)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# Appointment types
# ---------------------------------------------------------------------------


@router.get("/appointment-types", response_model=list[AppointmentTypeResponse])
async def list_appointment_types(
    active_only: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(manage_scheduler),
):
    types = await scheduler_admin_service.list_appointment_types(db, active_only=active_only)
    return [scheduler_admin_service.type_to_dict(t) for t in types]


@router.post("/appointment-types", response_model=AppointmentTypeResponse, status_code=status.HTTP_201_CREATED)
async def create_appointment_type(
    data: AppointmentTypeCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(manage_scheduler),
):
    appointment_type = await scheduler_admin_service.create_appointment_type(db, data)
    response = scheduler_admin_service.type_to_dict(appointment_type)
    await db.commit()
    return response


@router.get("/appointment-types/{type_id}", response_model=AppointmentTypeResponse)
async def get_appointment_type(
    type_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(manage_scheduler),
):
    return scheduler_admin_service.type_to_dict(await scheduler_admin_service.get_appointment_type(db, type_id))


@router.patch("/appointment-types/{type_id}", response_model=AppointmentTypeResponse)
async def update_appointment_type(
    type_id: UUID,
    data: AppointmentTypeUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(manage_scheduler),
):
    """Update an appointment type; ``eligible_staff_ids`` replaces the whole list."""
    appointment_type = await scheduler_admin_service.update_appointment_type(db, type_id, data)
    response = scheduler_admin_service.type_to_dict(appointment_type)
    await db.commit()
    return response
