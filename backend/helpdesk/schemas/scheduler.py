import re
import uuid
from datetime import date, datetime, timezone

from pydantic import BaseModel, Field, field_validator, model_validator

from helpdesk.models.base import AppointmentMode, AppointmentStatus

_TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")
WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


class DaySchedule(BaseModel):
    start: str
    end: str

    @field_validator("start", "end")
    @classmethod
    def check_time(cls, value: str) -> str:
        if not _TIME_RE.match(value):
            raise ValueError("must be HH:MM")
        return value

    @model_validator(mode="after")
    def check_order(self) -> "DaySchedule":
        if self.start >= self.end:
            raise ValueError("start must be before end")
        return self


def _as_utc(value: datetime | None) -> datetime | None:
    """Naive datetimes are taken as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _check_weekdays(value: dict[str, DaySchedule] | None) -> dict[str, DaySchedule] | None:
    if value is None:
        return value
    normalized = {}
    for day, schedule in value.items():
        key = day.lower()
        if key not in WEEKDAYS:
            raise ValueError(f"Unknown weekday: {day}")
        normalized[key] = schedule
    return normalized


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class SchedulerConfigurationResponse(BaseModel):
    available_hours: dict[str, DaySchedule]
    default_duration_minutes: int
    default_buffer_time_minutes: int
    default_booking_horizon_days: int
    min_cancellation_notice_hours: int
    reminder_lead_time_minutes: int

    model_config = {"from_attributes": True}


class SchedulerConfigurationUpdate(BaseModel):
    available_hours: dict[str, DaySchedule] | None = None
    default_duration_minutes: int | None = Field(None, gt=0, le=1440)
    default_buffer_time_minutes: int | None = Field(None, ge=0, le=1440)
    default_booking_horizon_days: int | None = Field(None, gt=0, le=365)
    min_cancellation_notice_hours: int | None = Field(None, ge=0)
    reminder_lead_time_minutes: int | None = Field(None, ge=0)

    @field_validator("available_hours")
    @classmethod
    def check_weekdays(cls, value):
        return _check_weekdays(value)


# ---------------------------------------------------------------------------
# Staff
# ---------------------------------------------------------------------------


class StaffMemberCreate(BaseModel):
    user_id: uuid.UUID
    can_manage_others_calendars: bool = False
    default_meeting_link: str | None = None
    availability: dict[str, DaySchedule] | None = None

    @field_validator("availability")
    @classmethod
    def check_weekdays(cls, value):
        return _check_weekdays(value)


class StaffMemberUpdate(BaseModel):
    can_manage_others_calendars: bool | None = None
    is_active: bool | None = None
    default_meeting_link: str | None = None
    availability: dict[str, DaySchedule] | None = None

    @field_validator("availability")
    @classmethod
    def check_weekdays(cls, value):
        return _check_weekdays(value)


class StaffMemberResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    full_name: str | None = None
    can_manage_others_calendars: bool
    is_active: bool
    default_meeting_link: str | None
    availability: dict[str, DaySchedule] | None
    created_at: datetime

    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# Appointment types
# ---------------------------------------------------------------------------


class AppointmentTypeCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    mode: AppointmentMode
    default_duration_minutes: int | None = Field(None, gt=0, le=1440)
    buffer_time_minutes: int | None = Field(None, ge=0, le=1440)
    booking_horizon_days: int | None = Field(None, gt=0, le=365)
    is_active: bool = True
    sort_order: int = 0
    eligible_staff_ids: list[uuid.UUID] = []


class AppointmentTypeUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=200)
    mode: AppointmentMode | None = None
    default_duration_minutes: int | None = Field(None, gt=0, le=1440)
    buffer_time_minutes: int | None = Field(None, ge=0, le=1440)
    booking_horizon_days: int | None = Field(None, gt=0, le=365)
    is_active: bool | None = None
    sort_order: int | None = None
    eligible_staff_ids: list[uuid.UUID] | None = None


class EligibleStaffInfo(BaseModel):
    staff_member_id: uuid.UUID
    full_name: str | None


class AppointmentTypeResponse(BaseModel):
    id: uuid.UUID
    name: str
    mode: AppointmentMode
    default_duration_minutes: int | None
    buffer_time_minutes: int | None
    booking_horizon_days: int | None
    is_active: bool
    sort_order: int
    eligible_staff: list[EligibleStaffInfo] = []
    created_at: datetime


# ---------------------------------------------------------------------------
# Block-out times
# ---------------------------------------------------------------------------


class BlockOutTimeCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    start_time_utc: datetime
    end_time_utc: datetime

    @field_validator("start_time_utc", "end_time_utc")
    @classmethod
    def as_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @model_validator(mode="after")
    def check_order(self) -> "BlockOutTimeCreate":
        if self.start_time_utc >= self.end_time_utc:
            raise ValueError("start_time_utc must be before end_time_utc")
        return self


class BlockOutTimeResponse(BaseModel):
    id: uuid.UUID
    staff_member_id: uuid.UUID
    title: str
    start_time_utc: datetime
    end_time_utc: datetime

    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# Appointments
# ---------------------------------------------------------------------------


class AppointmentCreate(BaseModel):
    contact_id: uuid.UUID
    appointment_type_id: uuid.UUID
    staff_member_id: uuid.UUID
    mode: AppointmentMode
    meeting_link: str | None = None
    scheduled_start_time: datetime
    duration_minutes: int | None = Field(None, gt=0, le=1440)
    notes: str | None = None
    contact_first_name: str | None = None
    contact_last_name: str | None = None
    contact_email: str | None = None
    contact_phone: str | None = None
    contact_address: str | None = None

    @field_validator("scheduled_start_time")
    @classmethod
    def as_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)


class AppointmentUpdate(BaseModel):
    meeting_link: str | None = None
    notes: str | None = None
    contact_first_name: str | None = Field(None, min_length=1)
    contact_last_name: str | None = None
    contact_email: str | None = None
    contact_phone: str | None = None
    contact_address: str | None = None


class AppointmentReschedule(BaseModel):
    scheduled_start_time: datetime
    duration_minutes: int | None = Field(None, gt=0, le=1440)
    staff_member_id: uuid.UUID | None = None
    notice_override_reason: str | None = None

    @field_validator("scheduled_start_time")
    @classmethod
    def as_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)


class AppointmentStatusChange(BaseModel):
    status: AppointmentStatus
    reason: str | None = None
    notice_override_reason: str | None = None


class AppointmentResponse(BaseModel):
    id: uuid.UUID
    number: int
    code: str
    contact_id: uuid.UUID
    staff_member_id: uuid.UUID
    staff_member_name: str | None = None
    appointment_type_id: uuid.UUID
    appointment_type_name: str | None = None
    contact_first_name: str
    contact_last_name: str | None
    contact_email: str | None
    contact_phone: str | None
    contact_address: str | None
    mode: AppointmentMode
    meeting_link: str | None
    scheduled_start_time: datetime
    scheduled_end_time: datetime
    duration_minutes: int
    status: AppointmentStatus
    notes: str | None
    cancellation_reason: str | None
    cancellation_notice_override_reason: str | None
    reminder_sent_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}


class AppointmentHistoryResponse(BaseModel):
    id: uuid.UUID
    action: str
    old_status: str | None
    new_status: str | None
    details: str | None
    changed_by_id: uuid.UUID | None
    created_at: datetime

    model_config = {"from_attributes": True}


class AvailableSlot(BaseModel):
    start: datetime
    end: datetime


class AvailabilityResponse(BaseModel):
    staff_member_id: uuid.UUID
    date: date
    duration_minutes: int
    buffer_minutes: int
    slots: list[AvailableSlot]


class StaffScheduleResponse(BaseModel):
    date_from: datetime
    date_to: datetime
    appointments: list[AppointmentResponse]
    block_outs: list[BlockOutTimeResponse]
