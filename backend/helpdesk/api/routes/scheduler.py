import math
import uuid
from datetime import date, datetime, timedelta

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.api.dependencies import CurrentUser, get_current_user
from helpdesk.database import get_db
from helpdesk.exceptions import ValidationFailed
from helpdesk.models.base import AppointmentStatus
from helpdesk.schemas.common import PaginatedResponse
from helpdesk.schemas.scheduler import (
    AppointmentCreate,
    AppointmentHistoryResponse,
    AppointmentReschedule,
    AppointmentResponse,
    AppointmentStatusChange,
    AppointmentTypeResponse,
    AppointmentUpdate,
    AvailabilityResponse,
    AvailableSlot,
    BlockOutTimeCreate,
    BlockOutTimeResponse,
    StaffMemberResponse,
    StaffScheduleResponse,
)
from helpdesk.services import appointment_service, availability_service, scheduler_admin_service

router = APIRouter()

MAX_SCHEDULE_DAYS = 62


async def scheduler_user(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    """Active scheduler staff or users with the manage scheduler permission."""
    await appointment_service.require_scheduler_staff(db, current_user)
    return current_user


# ---------------------------------------------------------------------------
# Lookups for booking
# ---------------------------------------------------------------------------


@router.get("/staff", response_model=list[StaffMemberResponse])
async def list_active_staff(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(scheduler_user),
):
    return await scheduler_admin_service.list_staff(db, include_inactive=False)


@router.get("/appointment-types", response_model=list[AppointmentTypeResponse])
async def list_active_types(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(scheduler_user),
):
    types = await scheduler_admin_service.list_appointment_types(db, active_only=True)
    return [scheduler_admin_service.type_to_dict(t) for t in types]


@router.get("/availability", response_model=AvailabilityResponse)
async def get_availability(
    staff_member_id: uuid.UUID = Query(...),
    day: date = Query(..., alias="date"),
    appointment_type_id: uuid.UUID | None = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(scheduler_user),
):
    """Free slots for a staff member on a day, honouring bookings and block-outs."""
    slots, duration, buffer = await availability_service.get_available_slots(
        db, staff_member_id, day, appointment_type_id
    )
    return AvailabilityResponse(
        staff_member_id=staff_member_id,
        date=day,
        duration_minutes=duration,
        buffer_minutes=buffer,
        slots=[AvailableSlot(start=start, end=end) for start, end in slots],
    )


@router.get("/schedule", response_model=StaffScheduleResponse)
async def get_schedule(
    date_from: datetime = Query(...),
    date_to: datetime = Query(...),
    staff_member_id: list[uuid.UUID] | None = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(scheduler_user),
):
    """Appointments and block-out times in a date range, for a calendar view."""
    if date_to <= date_from:
        raise ValidationFailed.single("date_to", "date_to must be after date_from")
    if date_to - date_from > timedelta(days=MAX_SCHEDULE_DAYS):
        raise ValidationFailed.single("date_to", f"Range cannot exceed {MAX_SCHEDULE_DAYS} days")
    appointments, _ = await appointment_service.list_appointments(
        db,
        staff_member_ids=staff_member_id,
        date_from=date_from,
        date_to=date_to,
        page_size=10_000,
    )
    block_outs = await appointment_service.list_block_outs(db, staff_member_id, date_from, date_to)
    return StaffScheduleResponse(
        date_from=date_from,
        date_to=date_to,
        appointments=appointments,
        block_outs=block_outs,
    )


# ---------------------------------------------------------------------------
# Appointments
# ---------------------------------------------------------------------------


@router.get("/appointments", response_model=PaginatedResponse[AppointmentResponse])
async def list_appointments(
    staff_member_id: list[uuid.UUID] | None = Query(None),
    contact_id: uuid.UUID | None = Query(None),
    status_filter: list[AppointmentStatus] | None = Query(None, alias="status"),
    date_from: datetime | None = Query(None),
    date_to: datetime | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(scheduler_user),
):
    items, total = await appointment_service.list_appointments(
        db,
        staff_member_ids=staff_member_id,
        contact_id=contact_id,
        statuses=status_filter,
        date_from=date_from,
        date_to=date_to,
        page=page,
        page_size=page_size,
    )
    pages = math.ceil(total / page_size) if total > 0 else 0
    return PaginatedResponse(
        items=items,
        total=total,
        page=page,
        page_size=page_size,
        pages=pages,
    )


@router.post("/appointments", response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
async def create_appointment(
    data: AppointmentCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Book an appointment. The slot must be free and the staff member eligible."""
    appointment = await appointment_service.create_appointment(db, current_user, data)
    await db.commit()
    return await appointment_service.get_appointment(db, appointment.id)


@router.get("/appointments/{appointment_id}", response_model=AppointmentResponse)
async def get_appointment(
    appointment_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(scheduler_user),
):
    return await appointment_service.get_appointment(db, appointment_id)


@router.patch("/appointments/{appointment_id}", response_model=AppointmentResponse)
async def update_appointment(
    appointment_id: uuid.UUID,
    data: AppointmentUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    appointment = await appointment_service.update_appointment(db, current_user, appointment_id, data)
    await db.commit()
    return await appointment_service.get_appointment(db, appointment.id)


@router.post("/appointments/{appointment_id}/reschedule", response_model=AppointmentResponse)
async def reschedule_appointment(
    appointment_id: uuid.UUID,
    data: AppointmentReschedule,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Move an active appointment. Inside the notice window an override reason is required."""
    appointment = await appointment_service.reschedule_appointment(db, current_user, appointment_id, data)
    await db.commit()
    return await appointment_service.get_appointment(db, appointment.id)


@router.post("/appointments/{appointment_id}/status", response_model=AppointmentResponse)
async def change_appointment_status(
    appointment_id: uuid.UUID,
    data: AppointmentStatusChange,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    appointment = await appointment_service.change_status(db, current_user, appointment_id, data)
    await db.commit()
    return await appointment_service.get_appointment(db, appointment.id)


@router.post("/appointments/{appointment_id}/no-show", response_model=AppointmentResponse)
async def mark_no_show(
    appointment_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    appointment = await appointment_service.mark_no_show(db, current_user, appointment_id)
    await db.commit()
    return await appointment_service.get_appointment(db, appointment.id)


@router.get("/appointments/{appointment_id}/history", response_model=list[AppointmentHistoryResponse])
async def get_appointment_history(
    appointment_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(scheduler_user),
):
    return await appointment_service.get_history(db, appointment_id)


# ---------------------------------------------------------------------------
# Block-out times
# ---------------------------------------------------------------------------


@router.post(
    "/staff/{staff_member_id}/block-outs",
    response_model=BlockOutTimeResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_block_out(
    staff_member_id: uuid.UUID,
    data: BlockOutTimeCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    block_out = await appointment_service.create_block_out(db, current_user, staff_member_id, data)
    await db.commit()
    return block_out


@router.put("/block-outs/{block_out_id}", response_model=BlockOutTimeResponse)
async def update_block_out(
    block_out_id: uuid.UUID,
    data: BlockOutTimeCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    block_out = await appointment_service.update_block_out(db, current_user, block_out_id, data)
    await db.commit()
    return block_out


@router.delete("/block-outs/{block_out_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_block_out(
    block_out_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    await appointment_service.delete_block_out(db, current_user, block_out_id)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
