import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from helpdesk.exceptions import BusinessError, ConflictError, NotFoundError, ValidationFailed
from helpdesk.models.scheduler import (
    ACTIVE_APPOINTMENT_STATUSES,
    Appointment,
    AppointmentType,
    SchedulerConfiguration,
    SchedulerStaffMember,
)
from helpdesk.models.base import utcnow
from helpdesk.models.user import User
from helpdesk.schemas.scheduler import (
    AppointmentTypeCreate,
    AppointmentTypeUpdate,
    SchedulerConfigurationUpdate,
    StaffMemberCreate,
    StaffMemberUpdate,
)
from helpdesk.services import availability_service

logger = logging.getLogger(__name__)


def _hours_to_json(hours) -> dict | None:
    if hours is None:
        return None
    return {day: schedule.model_dump() for day, schedule in hours.items()}


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

async def get_configuration(db: AsyncSession) -> SchedulerConfiguration:
    return await availability_service.get_configuration(db)


async def update_configuration(db: AsyncSession, data: SchedulerConfigurationUpdate) -> SchedulerConfiguration:
    config = await availability_service.get_configuration(db)
    update_data = data.model_dump(exclude_unset=True)
    if "available_hours" in update_data:
        update_data["available_hours"] = _hours_to_json(data.available_hours) or {}
    for field, value in update_data.items():
        if value is None and field != "available_hours":
            continue
        setattr(config, field, value)
    await db.flush()
    return config


# ---------------------------------------------------------------------------
# Staff
# ---------------------------------------------------------------------------

async def list_staff(db: AsyncSession, include_inactive: bool = True) -> list[SchedulerStaffMember]:
    query = select(SchedulerStaffMember).options(selectinload(SchedulerStaffMember.user))
    if not include_inactive:
        query = query.where(SchedulerStaffMember.is_active == True)
    result = await db.execute(query.order_by(SchedulerStaffMember.created_at))
    return list(result.scalars().all())


async def get_staff(db: AsyncSession, staff_member_id: UUID) -> SchedulerStaffMember:
    result = await db.execute(
        select(SchedulerStaffMember)
        .where(SchedulerStaffMember.id == staff_member_id)
        .options(selectinload(SchedulerStaffMember.user))
        .execution_options(populate_existing=True)
    )
    staff = result.scalar_one_or_none()
    if staff is None:
        raise NotFoundError("Scheduler staff member", staff_member_id)
    return staff


async def add_staff(db: AsyncSession, data: StaffMemberCreate) -> SchedulerStaffMember:
    user = await db.get(User, data.user_id)
    if user is None or not user.is_active:
        raise ValidationFailed.single("user_id", "User not found or inactive")

    result = await db.execute(select(SchedulerStaffMember).where(SchedulerStaffMember.user_id == user.id))
    existing = result.scalar_one_or_none()
    if existing is not None:
        if existing.is_active:
            raise ConflictError("User is already a scheduler staff member")
        existing.is_active = True
        staff = existing
    else:
        staff = SchedulerStaffMember(user_id=user.id)
        db.add(staff)

    staff.can_manage_others_calendars = data.can_manage_others_calendars
    staff.default_meeting_link = data.default_meeting_link
    staff.availability = _hours_to_json(data.availability)
    await db.flush()
    logger.info("Added user %s to scheduler staff", user.id)
    return await get_staff(db, staff.id)


async def update_staff(db: AsyncSession, staff_member_id: UUID, data: StaffMemberUpdate) -> SchedulerStaffMember:
    staff = await get_staff(db, staff_member_id)
    update_data = data.model_dump(exclude_unset=True)
    if "availability" in update_data:
        update_data["availability"] = _hours_to_json(data.availability)
    for field, value in update_data.items():
        if value is None and field in ("can_manage_others_calendars", "is_active"):
            continue
        setattr(staff, field, value)
    await db.flush()
    return staff


async def remove_staff(db: AsyncSession, staff_member_id: UUID) -> None:
    """Deactivate a staff member with no upcoming active appointments."""
    staff = await get_staff(db, staff_member_id)
    result = await db.execute(
        select(Appointment.number).where(
            Appointment.staff_member_id == staff.id,
            Appointment.status.in_(ACTIVE_APPOINTMENT_STATUSES),
            Appointment.scheduled_start_time > utcnow(),
        )
    )
    numbers = sorted(result.scalars().all())
    if numbers:
        codes = ", ".join(f"APT-{n:04d}" for n in numbers)
        raise BusinessError(
            f"Cannot remove staff member: there are future active appointments ({codes}). "
            "Please reschedule or cancel those appointments first."
        )
    staff.is_active = False
    await db.flush()
    logger.info("Removed staff member %s", staff.id)


# ---------------------------------------------------------------------------
# Appointment types
# ---------------------------------------------------------------------------

def type_to_dict(appointment_type: AppointmentType) -> dict:
    return {
        "id": appointment_type.id,
        "name": appointment_type.name,
        "mode": appointment_type.mode,
        "default_duration_minutes": appointment_type.default_duration_minutes,
        "buffer_time_minutes": appointment_type.buffer_time_minutes,
        "booking_horizon_days": appointment_type.booking_horizon_days,
        "is_active": appointment_type.is_active,
        "sort_order": appointment_type.sort_order,
        "eligible_staff": [
            {"staff_member_id": s.id, "full_name": s.full_name} for s in appointment_type.eligible_staff
        ],
        "created_at": appointment_type.created_at,
    }


_TYPE_LOAD_OPTIONS = [
    selectinload(AppointmentType.eligible_staff).selectinload(SchedulerStaffMember.user),
]


async def list_appointment_types(db: AsyncSession, active_only: bool = False) -> list[AppointmentType]:
    query = select(AppointmentType).options(*_TYPE_LOAD_OPTIONS)
    if active_only:
        query = query.where(AppointmentType.is_active == True)
    result = await db.execute(query.order_by(AppointmentType.sort_order, AppointmentType.name))
    return list(result.scalars().all())


async def get_appointment_type(db: AsyncSession, type_id: UUID) -> AppointmentType:
    result = await db.execute(
        select(AppointmentType)
        .where(AppointmentType.id == type_id)
        .options(*_TYPE_LOAD_OPTIONS)
        .execution_options(populate_existing=True)
    )
    appointment_type = result.scalar_one_or_none()
    if appointment_type is None:
        raise NotFoundError("Appointment type", type_id)
    return appointment_type


async def _load_eligible(db: AsyncSession, staff_ids: list[UUID]) -> list[SchedulerStaffMember]:
    if not staff_ids:
        return []
    result = await db.execute(
        select(SchedulerStaffMember).where(SchedulerStaffMember.id.in_(staff_ids))
    )
    staff = list(result.scalars().all())
    missing = set(staff_ids) - {s.id for s in staff}
    if missing:
        raise ValidationFailed.single(
            "eligible_staff_ids", f"Staff member(s) not found: {', '.join(str(m) for m in sorted(missing, key=str))}"
        )
    return staff


async def create_appointment_type(db: AsyncSession, data: AppointmentTypeCreate) -> AppointmentType:
    eligible = await _load_eligible(db, data.eligible_staff_ids)
    appointment_type = AppointmentType(
        name=data.name.strip(),
        mode=data.mode,
        default_duration_minutes=data.default_duration_minutes,
        buffer_time_minutes=data.buffer_time_minutes,
        booking_horizon_days=data.booking_horizon_days,
        is_active=data.is_active,
        sort_order=data.sort_order,
        eligible_staff=eligible,
    )
    db.add(appointment_type)
    await db.flush()
    return await get_appointment_type(db, appointment_type.id)


async def update_appointment_type(db: AsyncSession, type_id: UUID, data: AppointmentTypeUpdate) -> AppointmentType:
    appointment_type = await get_appointment_type(db, type_id)
    update_data = data.model_dump(exclude_unset=True)
    staff_ids = update_data.pop("eligible_staff_ids", None)
    for field, value in update_data.items():
        if value is None and field in ("name", "mode", "is_active", "sort_order"):
            continue
        setattr(appointment_type, field, value)
    if staff_ids is not None:
        appointment_type.eligible_staff = await _load_eligible(db, staff_ids)
    await db.flush()
    return await get_appointment_type(db, appointment_type.id)
