import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from helpdesk.api.dependencies import CurrentUser
from helpdesk.exceptions import BusinessError, ForbiddenError, NotFoundError, ValidationFailed
from helpdesk.models.base import AppointmentMode, AppointmentStatus, NotificationEventType, utcnow
from helpdesk.models.contact import Contact
from helpdesk.models.role import SystemPermission
from helpdesk.models.scheduler import (
    Appointment,
    AppointmentHistory,
    AppointmentType,
    SchedulerStaffMember,
    StaffBlockOutTime,
    appointment_type_staff,
    can_transition,
)
from helpdesk.schemas.scheduler import (
    AppointmentCreate,
    AppointmentReschedule,
    AppointmentStatusChange,
    AppointmentUpdate,
    BlockOutTimeCreate,
)
from helpdesk.services import availability_service, notification_service

logger = logging.getLogger(__name__)

_LOAD_OPTIONS = [
    selectinload(Appointment.staff_member).selectinload(SchedulerStaffMember.user),
    selectinload(Appointment.appointment_type),
]


# ---------------------------------------------------------------------------
# Access
# ---------------------------------------------------------------------------

async def get_staff_for_user(db: AsyncSession, user_id: uuid.UUID) -> SchedulerStaffMember | None:
    result = await db.execute(
        select(SchedulerStaffMember).where(
            SchedulerStaffMember.user_id == user_id, SchedulerStaffMember.is_active == True
        )
    )
    return result.scalar_one_or_none()


async def require_scheduler_staff(db: AsyncSession, current_user: CurrentUser) -> SchedulerStaffMember | None:
    """Active staff members and scheduler managers may use the scheduler."""
    staff = await get_staff_for_user(db, current_user.user.id)
    if staff is None and not current_user.has_permission(SystemPermission.manage_scheduler):
        raise ForbiddenError("You must be an active scheduler staff member to access this area.")
    return staff


def _require_calendar_access(
    current_user: CurrentUser, own_staff: SchedulerStaffMember | None, staff_member_id: uuid.UUID
) -> None:
    if own_staff is not None and own_staff.id == staff_member_id:
        return
    if own_staff is not None and own_staff.can_manage_others_calendars:
        return
    if current_user.has_permission(SystemPermission.manage_scheduler):
        return
    raise ForbiddenError("You can only manage your own calendar")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _next_number(db: AsyncSession) -> int:
    result = await db.execute(select(func.max(Appointment.number)))
    return (result.scalar() or 0) + 1


async def _get_active_staff(db: AsyncSession, staff_member_id: uuid.UUID) -> SchedulerStaffMember:
    result = await db.execute(
        select(SchedulerStaffMember)
        .where(SchedulerStaffMember.id == staff_member_id, SchedulerStaffMember.is_active == True)
        .options(selectinload(SchedulerStaffMember.user))
    )
    staff = result.scalar_one_or_none()
    if staff is None:
        raise ValidationFailed.single("staff_member_id", "Staff member not found or inactive.")
    return staff


async def _is_eligible(db: AsyncSession, appointment_type_id: uuid.UUID, staff_member_id: uuid.UUID) -> bool:
    result = await db.execute(
        select(appointment_type_staff.c.staff_member_id).where(
            appointment_type_staff.c.appointment_type_id == appointment_type_id,
            appointment_type_staff.c.staff_member_id == staff_member_id,
        )
    )
    return result.first() is not None


def resolve_mode(type_mode: AppointmentMode, requested: AppointmentMode) -> AppointmentMode:
    """``either`` types accept virtual or in-person; other types must match."""
    mismatch = type_mode != AppointmentMode.either and requested != type_mode
    if requested == AppointmentMode.either or mismatch:
        raise ValidationFailed.single(
            "mode",
            "Mode must match the appointment type. For 'either' types, choose 'virtual' or 'in_person'.",
        )
    return requested


def requires_notice_override(start: datetime, min_notice_hours: int, now: datetime) -> bool:
    hours_until = (start - now).total_seconds() / 3600
    return hours_until < min_notice_hours


def _history(
    appointment: Appointment,
    current_user: CurrentUser | None,
    action: str,
    details: str | None = None,
    old_status: AppointmentStatus | None = None,
    new_status: AppointmentStatus | None = None,
) -> AppointmentHistory:
    return AppointmentHistory(
        appointment_id=appointment.id,
        changed_by_id=current_user.user.id if current_user else None,
        action=action,
        old_status=old_status.value if old_status else None,
        new_status=new_status.value if new_status else None,
        details=details,
    )


# ---------------------------------------------------------------------------
# Appointments
# ---------------------------------------------------------------------------

async def create_appointment(db: AsyncSession, current_user: CurrentUser, data: AppointmentCreate) -> Appointment:
    own_staff = await require_scheduler_staff(db, current_user)
    _require_calendar_access(current_user, own_staff, data.staff_member_id)

    contact = await db.get(Contact, data.contact_id)
    if contact is None or contact.is_deleted:
        raise ValidationFailed.single("contact_id", "Contact not found.")

    appointment_type = await db.get(AppointmentType, data.appointment_type_id)
    if appointment_type is None or not appointment_type.is_active:
        raise ValidationFailed.single("appointment_type_id", "Appointment type not found or inactive.")

    staff = await _get_active_staff(db, data.staff_member_id)
    if not await _is_eligible(db, appointment_type.id, staff.id):
        raise ValidationFailed.single("staff_member_id", "Staff member is not eligible for this appointment type.")

    mode = resolve_mode(appointment_type.mode, data.mode)
    meeting_link = (data.meeting_link or "").strip() or None
    if mode == AppointmentMode.virtual:
        meeting_link = meeting_link or staff.default_meeting_link
        if not meeting_link:
            raise ValidationFailed.single(
                "meeting_link",
                "Meeting link is required for virtual appointments "
                "(no default meeting link configured for this staff member).",
            )

    now = utcnow()
    if data.scheduled_start_time <= now:
        raise ValidationFailed.single("scheduled_start_time", "Scheduled start time must be in the future.")

    config = await availability_service.get_configuration(db)
    duration = data.duration_minutes or availability_service.effective_durations(config, appointment_type)[0]

    if not await availability_service.is_slot_available(db, staff.id, data.scheduled_start_time, duration):
        raise BusinessError("The selected time slot is not available. There is a scheduling conflict.")

    phone = contact.phone_numbers[0] if contact.phone_numbers else None
    appointment = Appointment(
        number=await _next_number(db),
        contact_id=contact.id,
        staff_member_id=staff.id,
        appointment_type_id=appointment_type.id,
        contact_first_name=data.contact_first_name or contact.first_name,
        contact_last_name=data.contact_last_name or contact.last_name,
        contact_email=data.contact_email or contact.email,
        contact_phone=data.contact_phone or phone,
        contact_address=data.contact_address or contact.address,
        mode=mode,
        meeting_link=meeting_link,
        scheduled_start_time=data.scheduled_start_time,
        duration_minutes=duration,
        status=AppointmentStatus.scheduled,
        notes=data.notes,
        created_by_id=current_user.user.id,
    )
    db.add(appointment)
    await db.flush()
    db.add(_history(appointment, current_user, "created", f"Appointment created ({mode.value})",
                    new_status=AppointmentStatus.scheduled))
    await db.flush()
    logger.info("Created appointment %s for staff %s", appointment.code, staff.id)
    return appointment


async def get_appointment(db: AsyncSession, appointment_id: uuid.UUID) -> Appointment:
    result = await db.execute(
        select(Appointment)
        .where(Appointment.id == appointment_id)
        .options(*_LOAD_OPTIONS)
        .execution_options(populate_existing=True)
    )
    appointment = result.scalar_one_or_none()
    if appointment is None:
        raise NotFoundError("Appointment", appointment_id)
    return appointment


async def list_appointments(
    db: AsyncSession,
    staff_member_ids: list[uuid.UUID] | None = None,
    contact_id: uuid.UUID | None = None,
    statuses: list[AppointmentStatus] | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    page: int = 1,
    page_size: int = 50,
) -> tuple[list[Appointment], int]:
    query = select(Appointment)
    if staff_member_ids:
        query = query.where(Appointment.staff_member_id.in_(staff_member_ids))
    if contact_id is not None:
        query = query.where(Appointment.contact_id == contact_id)
    if statuses:
        query = query.where(Appointment.status.in_(statuses))
    if date_from is not None:
        query = query.where(Appointment.scheduled_start_time >= date_from)
    if date_to is not None:
        query = query.where(Appointment.scheduled_start_time < date_to)

    count_result = await db.execute(select(func.count()).select_from(query.subquery()))
    total = count_result.scalar_one()
    result = await db.execute(
        query.order_by(Appointment.scheduled_start_time)
        .offset((page - 1) * page_size)
        .limit(page_size)
        .options(*_LOAD_OPTIONS)
    )
    return list(result.scalars().all()), total


async def update_appointment(
    db: AsyncSession, current_user: CurrentUser, appointment_id: uuid.UUID, data: AppointmentUpdate
) -> Appointment:
    own_staff = await require_scheduler_staff(db, current_user)
    appointment = await get_appointment(db, appointment_id)
    _require_calendar_access(current_user, own_staff, appointment.staff_member_id)

    update_data = data.model_dump(exclude_unset=True)
    if "meeting_link" in update_data:
        update_data["meeting_link"] = (update_data["meeting_link"] or "").strip() or None
        if appointment.mode == AppointmentMode.virtual and not update_data["meeting_link"]:
            raise ValidationFailed.single("meeting_link", "Meeting link is required for virtual appointments.")
    if "contact_first_name" in update_data and not update_data["contact_first_name"]:
        raise ValidationFailed.single("contact_first_name", "First name is required")

    changed = [f for f, v in update_data.items() if getattr(appointment, f) != v]
    for field in changed:
        setattr(appointment, field, update_data[field])
    if changed:
        db.add(_history(appointment, current_user, "updated", f"Updated: {', '.join(sorted(changed))}"))
    await db.flush()
    return appointment


async def reschedule_appointment(
    db: AsyncSession, current_user: CurrentUser, appointment_id: uuid.UUID, data: AppointmentReschedule
) -> Appointment:
    own_staff = await require_scheduler_staff(db, current_user)
    appointment = await get_appointment(db, appointment_id)
    _require_calendar_access(current_user, own_staff, appointment.staff_member_id)
    if not appointment.is_active:
        raise BusinessError("Only active appointments can be rescheduled.")

    now = utcnow()
    if data.scheduled_start_time <= now:
        raise ValidationFailed.single("scheduled_start_time", "Scheduled start time must be in the future.")

    staff_member_id = appointment.staff_member_id
    if data.staff_member_id is not None and data.staff_member_id != staff_member_id:
        _require_calendar_access(current_user, own_staff, data.staff_member_id)
        staff = await _get_active_staff(db, data.staff_member_id)
        if not await _is_eligible(db, appointment.appointment_type_id, staff.id):
            raise ValidationFailed.single(
                "staff_member_id", "Staff member is not eligible for this appointment type."
            )
        staff_member_id = staff.id

    config = await availability_service.get_configuration(db)
    override = (data.notice_override_reason or "").strip() or None
    if requires_notice_override(appointment.scheduled_start_time, config.min_cancellation_notice_hours, now):
        if override is None:
            raise BusinessError(
                "Rescheduling within the minimum cancellation notice period requires a notice override reason."
            )

    duration = data.duration_minutes or appointment.duration_minutes
    if not await availability_service.is_slot_available(
        db, staff_member_id, data.scheduled_start_time, duration, exclude_appointment_id=appointment.id
    ):
        raise BusinessError("The selected time slot is not available. There is a scheduling conflict.")

    old_start = appointment.scheduled_start_time
    appointment.scheduled_start_time = data.scheduled_start_time
    appointment.duration_minutes = duration
    appointment.staff_member_id = staff_member_id
    appointment.reminder_sent_at = None
    db.add(_history(
        appointment, current_user, "rescheduled",
        f"Rescheduled from {old_start:%Y-%m-%d %H:%M} to {data.scheduled_start_time:%Y-%m-%d %H:%M} UTC",
    ))
    if override:
        appointment.cancellation_notice_override_reason = override
        db.add(_history(appointment, current_user, "notice_override", override))
    await db.flush()
    logger.info("Rescheduled appointment %s", appointment.code)
    return await get_appointment(db, appointment.id)


async def change_status(
    db: AsyncSession, current_user: CurrentUser, appointment_id: uuid.UUID, data: AppointmentStatusChange
) -> Appointment:
    own_staff = await require_scheduler_staff(db, current_user)
    appointment = await get_appointment(db, appointment_id)
    _require_calendar_access(current_user, own_staff, appointment.staff_member_id)

    old_status = appointment.status
    if not can_transition(old_status, data.status):
        raise BusinessError(f"Cannot transition from '{old_status.value}' to '{data.status.value}'.")

    if data.status == AppointmentStatus.cancelled:
        config = await availability_service.get_configuration(db)
        override = (data.notice_override_reason or "").strip() or None
        if requires_notice_override(appointment.scheduled_start_time, config.min_cancellation_notice_hours, utcnow()):
            if override is None:
                raise BusinessError(
                    "Cancelling within the minimum cancellation notice period requires a notice override reason."
                )
            appointment.cancellation_notice_override_reason = override
            db.add(_history(appointment, current_user, "notice_override", override))
        appointment.cancellation_reason = data.reason

    appointment.status = data.status
    db.add(_history(appointment, current_user, "status_changed", data.reason,
                    old_status=old_status, new_status=data.status))
    await db.flush()
    logger.info("Appointment %s: %s -> %s", appointment.code, old_status.value, data.status.value)
    return appointment


async def mark_no_show(db: AsyncSession, current_user: CurrentUser, appointment_id: uuid.UUID) -> Appointment:
    own_staff = await require_scheduler_staff(db, current_user)
    appointment = await get_appointment(db, appointment_id)
    _require_calendar_access(current_user, own_staff, appointment.staff_member_id)
    if not appointment.is_active:
        raise BusinessError("Only active appointments can be marked as no-show.")
    old_status = appointment.status
    appointment.status = AppointmentStatus.no_show
    db.add(_history(appointment, current_user, "no_show", old_status=old_status,
                    new_status=AppointmentStatus.no_show))
    await db.flush()
    return appointment


async def get_history(db: AsyncSession, appointment_id: uuid.UUID) -> list[AppointmentHistory]:
    await get_appointment(db, appointment_id)
    result = await db.execute(
        select(AppointmentHistory)
        .where(AppointmentHistory.appointment_id == appointment_id)
        .order_by(AppointmentHistory.created_at)
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Block-out times
# ---------------------------------------------------------------------------

async def list_block_outs(
    db: AsyncSession,
    staff_member_ids: list[uuid.UUID] | None,
    date_from: datetime,
    date_to: datetime,
) -> list[StaffBlockOutTime]:
    query = select(StaffBlockOutTime).where(
        StaffBlockOutTime.start_time_utc < date_to, StaffBlockOutTime.end_time_utc > date_from
    )
    if staff_member_ids:
        query = query.where(StaffBlockOutTime.staff_member_id.in_(staff_member_ids))
    result = await db.execute(query.order_by(StaffBlockOutTime.start_time_utc))
    return list(result.scalars().all())


async def create_block_out(
    db: AsyncSession, current_user: CurrentUser, staff_member_id: uuid.UUID, data: BlockOutTimeCreate
) -> StaffBlockOutTime:
    own_staff = await require_scheduler_staff(db, current_user)
    _require_calendar_access(current_user, own_staff, staff_member_id)
    staff = await db.get(SchedulerStaffMember, staff_member_id)
    if staff is None:
        raise NotFoundError("Scheduler staff member", staff_member_id)
    block_out = StaffBlockOutTime(
        staff_member_id=staff.id,
        title=data.title,
        start_time_utc=data.start_time_utc,
        end_time_utc=data.end_time_utc,
    )
    db.add(block_out)
    await db.flush()
    return block_out


async def _get_block_out(db: AsyncSession, block_out_id: uuid.UUID) -> StaffBlockOutTime:
    block_out = await db.get(StaffBlockOutTime, block_out_id)
    if block_out is None:
        raise NotFoundError("Block-out time", block_out_id)
    return block_out


async def update_block_out(
    db: AsyncSession, current_user: CurrentUser, block_out_id: uuid.UUID, data: BlockOutTimeCreate
) -> StaffBlockOutTime:
    own_staff = await require_scheduler_staff(db, current_user)
    block_out = await _get_block_out(db, block_out_id)
    _require_calendar_access(current_user, own_staff, block_out.staff_member_id)
    block_out.title = data.title
    block_out.start_time_utc = data.start_time_utc
    block_out.end_time_utc = data.end_time_utc
    await db.flush()
    return block_out


async def delete_block_out(db: AsyncSession, current_user: CurrentUser, block_out_id: uuid.UUID) -> None:
    own_staff = await require_scheduler_staff(db, current_user)
    block_out = await _get_block_out(db, block_out_id)
    _require_calendar_access(current_user, own_staff, block_out.staff_member_id)
    await db.delete(block_out)
    await db.flush()


# ---------------------------------------------------------------------------
# Reminders
# ---------------------------------------------------------------------------

async def send_due_reminders(db: AsyncSession, now: datetime | None = None) -> int:
    """Notify staff of active appointments starting within the reminder lead time."""
    now = now or utcnow()
    config = await availability_service.get_configuration(db)
    threshold = now + timedelta(minutes=config.reminder_lead_time_minutes)
    result = await db.execute(
        select(Appointment)
        .where(
            Appointment.status.in_([AppointmentStatus.scheduled, AppointmentStatus.confirmed]),
            Appointment.reminder_sent_at.is_(None),
            Appointment.scheduled_start_time > now,
            Appointment.scheduled_start_time <= threshold,
        )
        .options(selectinload(Appointment.staff_member))
    )
    appointments = list(result.scalars().all())
    for appointment in appointments:
        contact_name = f"{appointment.contact_first_name} {appointment.contact_last_name or ''}".strip()
        await notification_service.notify(
            db,
            appointment.staff_member.user_id,
            NotificationEventType.appointment_reminder,
            f"Upcoming appointment {appointment.code}",
            f"Appointment with {contact_name} at {appointment.scheduled_start_time:%Y-%m-%d %H:%M} UTC.",
            url=f"/scheduler/appointments/{appointment.id}",
        )
        appointment.reminder_sent_at = now
    await db.commit()
    return len(appointments)
