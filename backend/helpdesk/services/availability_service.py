"""Free appointment slots for a staff member on a given day.

:func:`compute_available_slots` is pure: it takes the hours, bookings and
block-outs as plain values so it can be tested without a database.
Weekly hours are mappings of lowercase weekday names to
``{"start": "HH:MM", "end": "HH:MM"}``; a weekday missing from the organization
hours means closed, while one missing from a staff member's hours falls back
to the organization hours.
"""
import logging
import uuid
from collections.abc import Iterable, Mapping
from datetime import date, datetime, time, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.exceptions import NotFoundError
from helpdesk.models.base import utcnow
from helpdesk.models.organization import OrganizationSettings
from helpdesk.models.scheduler import (
    ACTIVE_APPOINTMENT_STATUSES,
    Appointment,
    AppointmentType,
    SchedulerConfiguration,
    SchedulerStaffMember,
    StaffBlockOutTime,
)

logger = logging.getLogger(__name__)

WEEKDAY_NAMES = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
DEFAULT_DURATION_MINUTES = 30
DEFAULT_BUFFER_MINUTES = 15
# Step used after a blocked candidate when there is no buffer
MIN_STEP_MINUTES = 5
# Longest appointment; bounds the overlap search window
MAX_DURATION = timedelta(minutes=1440)
DEFAULT_AVAILABLE_HOURS = {day: {"start": "09:00", "end": "17:00"} for day in WEEKDAY_NAMES[:5]}

Range = tuple[datetime, datetime]


def _parse_hours(hours: Mapping[str, Any] | None) -> tuple[time, time] | None:
    if not hours:
        return None
    try:
        start = time.fromisoformat(hours["start"])
        end = time.fromisoformat(hours["end"])
    except (KeyError, TypeError, ValueError):
        return None
    return start, end


def effective_window(
    day: date,
    org_hours: Mapping[str, Any] | None,
    staff_hours: Mapping[str, Any] | None,
    tz: str = "UTC",
) -> Range | None:
    """Intersect organization and staff hours for ``day`` and return it in UTC."""
    weekday = WEEKDAY_NAMES[day.weekday()]
    org = _parse_hours((org_hours or {}).get(weekday))
    if org is None:
        return None
    # Staff without hours for the weekday work the organization's hours
    staff = _parse_hours(staff_hours.get(weekday)) if staff_hours else None
    if staff is None:
        staff = org

    start = max(org[0], staff[0])
    end = min(org[1], staff[1])
    if start >= end:
        return None

    zone = ZoneInfo(tz or "UTC")
    return (
        datetime.combine(day, start, tzinfo=zone).astimezone(timezone.utc),
        datetime.combine(day, end, tzinfo=zone).astimezone(timezone.utc),
    )


def overlaps(start: datetime, end: datetime, other_start: datetime, other_end: datetime) -> bool:
    """Half-open interval overlap."""
    return start < other_end and other_start < end


def compute_available_slots(
    day: date,
    org_hours: Mapping[str, Any] | None,
    staff_hours: Mapping[str, Any] | None,
    tz: str,
    duration_minutes: int,
    buffer_minutes: int,
    bookings: Iterable[Range] = (),
    block_outs: Iterable[Range] = (),
    not_before: datetime | None = None,
) -> list[Range]:
    """Return free ``(start, end)`` slots in UTC.

    Bookings are widened by the buffer on both sides. The cursor advances by
    duration plus buffer after a free slot and by the buffer after a blocked
    one. Slots starting before ``not_before`` are dropped.
    """
    window = effective_window(day, org_hours, staff_hours, tz)
    if window is None or duration_minutes <= 0:
        return []

    duration = timedelta(minutes=duration_minutes)
    buffer = timedelta(minutes=max(buffer_minutes, 0))
    blocked = [(s - buffer, e + buffer) for s, e in bookings]
    blocked.extend(block_outs)

    free_step = duration + buffer
    blocked_step = buffer or timedelta(minutes=MIN_STEP_MINUTES)

    slots = []
    cursor, window_end = window
    while cursor + duration <= window_end:
        slot_end = cursor + duration
        if any(overlaps(cursor, slot_end, s, e) for s, e in blocked):
            cursor += blocked_step
            continue
        if not_before is None or cursor >= not_before:
            slots.append((cursor, slot_end))
        cursor += free_step
    return slots


# ---------------------------------------------------------------------------
# Database wrappers
# ---------------------------------------------------------------------------

async def get_configuration(db: AsyncSession) -> SchedulerConfiguration:
    result = await db.execute(select(SchedulerConfiguration).limit(1))
    config = result.scalar_one_or_none()
    if config is None:
        config = SchedulerConfiguration(available_hours=dict(DEFAULT_AVAILABLE_HOURS))
        db.add(config)
        await db.flush()
    return config


async def get_time_zone(db: AsyncSession) -> str:
    result = await db.execute(select(OrganizationSettings.time_zone).limit(1))
    return result.scalar_one_or_none() or "UTC"


def effective_durations(
    config: SchedulerConfiguration, appointment_type: AppointmentType | None
) -> tuple[int, int]:
    """(duration, buffer) in minutes: type override first, then configuration."""
    duration = config.default_duration_minutes or DEFAULT_DURATION_MINUTES
    buffer = config.default_buffer_time_minutes
    if buffer is None:
        buffer = DEFAULT_BUFFER_MINUTES
    if appointment_type is not None:
        if appointment_type.default_duration_minutes:
            duration = appointment_type.default_duration_minutes
        if appointment_type.buffer_time_minutes is not None:
            buffer = appointment_type.buffer_time_minutes
    return duration, buffer


async def _active_bookings(
    db: AsyncSession,
    staff_member_id: uuid.UUID,
    start: datetime,
    end: datetime,
    exclude_appointment_id: uuid.UUID | None = None,
) -> list[Range]:
    query = select(Appointment.id, Appointment.scheduled_start_time, Appointment.duration_minutes).where(
        Appointment.staff_member_id == staff_member_id,
        Appointment.status.in_(ACTIVE_APPOINTMENT_STATUSES),
        Appointment.scheduled_start_time < end,
        Appointment.scheduled_start_time > start - MAX_DURATION,
    )
    result = await db.execute(query)
    ranges = []
    for appointment_id, booked_start, minutes in result.all():
        if appointment_id == exclude_appointment_id:
            continue
        booked_end = booked_start + timedelta(minutes=minutes)
        if overlaps(start, end, booked_start, booked_end):
            ranges.append((booked_start, booked_end))
    return ranges


async def _block_outs(db: AsyncSession, staff_member_id: uuid.UUID, start: datetime, end: datetime) -> list[Range]:
    result = await db.execute(
        select(StaffBlockOutTime.start_time_utc, StaffBlockOutTime.end_time_utc).where(
            StaffBlockOutTime.staff_member_id == staff_member_id,
            StaffBlockOutTime.start_time_utc < end,
            StaffBlockOutTime.end_time_utc > start,
        )
    )
    return [tuple(row) for row in result.all()]


async def get_available_slots(
    db: AsyncSession,
    staff_member_id: uuid.UUID,
    day: date,
    appointment_type_id: uuid.UUID | None = None,
    now: datetime | None = None,
) -> tuple[list[Range], int, int]:
    """Slots for an active staff member; returns (slots, duration, buffer)."""
    staff = await db.get(SchedulerStaffMember, staff_member_id)
    if staff is None or not staff.is_active:
        raise NotFoundError("Scheduler staff member", staff_member_id)

    appointment_type = None
    if appointment_type_id is not None:
        appointment_type = await db.get(AppointmentType, appointment_type_id)
        if appointment_type is None or not appointment_type.is_active:
            raise NotFoundError("Appointment type", appointment_type_id)

    config = await get_configuration(db)
    tz = await get_time_zone(db)
    duration, buffer = effective_durations(config, appointment_type)

    window = effective_window(day, config.available_hours, staff.availability, tz)
    if window is None:
        return [], duration, buffer

    # Widen the lookup by the buffer so bookings just outside the window still count
    margin = timedelta(minutes=buffer)
    search_start, search_end = window[0] - margin, window[1] + margin
    bookings = await _active_bookings(db, staff.id, search_start, search_end)
    block_outs = await _block_outs(db, staff.id, search_start, search_end)

    slots = compute_available_slots(
        day,
        config.available_hours,
        staff.availability,
        tz,
        duration,
        buffer,
        bookings,
        block_outs,
        not_before=now or utcnow(),
    )
    return slots, duration, buffer


async def is_slot_available(
    db: AsyncSession,
    staff_member_id: uuid.UUID,
    start: datetime,
    duration_minutes: int,
    exclude_appointment_id: uuid.UUID | None = None,
) -> bool:
    """True when no active appointment or block-out overlaps the slot."""
    end = start + timedelta(minutes=duration_minutes)
    if await _active_bookings(db, staff_member_id, start, end, exclude_appointment_id):
        return False
    return not await _block_outs(db, staff_member_id, start, end)
