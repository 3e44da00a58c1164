import uuid
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import (
    Boolean,
    Column,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from helpdesk.models.base import (
    AppointmentMode,
    AppointmentStatus,
    AuditableMixin,
    Base,
    JSONType,
    TimestampMixin,
    UTCDateTime,
)

if TYPE_CHECKING:
    from helpdesk.models.contact import Contact
    from helpdesk.models.user import User

APPOINTMENT_CODE_PREFIX = "APT"

ACTIVE_APPOINTMENT_STATUSES = (
    AppointmentStatus.scheduled,
    AppointmentStatus.confirmed,
    AppointmentStatus.in_progress,
)

APPOINTMENT_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.scheduled: frozenset(
        {AppointmentStatus.confirmed, AppointmentStatus.cancelled, AppointmentStatus.no_show}
    ),
    AppointmentStatus.confirmed: frozenset(
        {AppointmentStatus.in_progress, AppointmentStatus.cancelled, AppointmentStatus.no_show}
    ),
    AppointmentStatus.in_progress: frozenset(
        {AppointmentStatus.completed, AppointmentStatus.cancelled, AppointmentStatus.no_show}
    ),
    AppointmentStatus.completed: frozenset(),
    AppointmentStatus.cancelled: frozenset(),
    AppointmentStatus.no_show: frozenset(),
}


def can_transition(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    return target in APPOINTMENT_TRANSITIONS[current]


appointment_type_staff = Table(
    "appointment_type_staff",
    Base.metadata,
    Column(
        "appointment_type_id",
        Uuid,
        ForeignKey("appointment_types.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column(
        "staff_member_id",
        Uuid,
        ForeignKey("scheduler_staff_members.id", ondelete="CASCADE"),
        primary_key=True,
    ),
)


class SchedulerConfiguration(AuditableMixin, Base):
    """Single row of organization-wide scheduling defaults.

    ``available_hours`` maps lowercase weekday names to ``{"start": "HH:MM", "end": "HH:MM"}``.
    A missing weekday means the organization is closed that day.
    """

    __tablename__ = "scheduler_configuration"

    available_hours: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict, nullable=False)
    default_duration_minutes: Mapped[int] = mapped_column(Integer, default=30, nullable=False)
    default_buffer_time_minutes: Mapped[int] = mapped_column(Integer, default=15, nullable=False)
    default_booking_horizon_days: Mapped[int] = mapped_column(Integer, default=30, nullable=False)
    min_cancellation_notice_hours: Mapped[int] = mapped_column(Integer, default=24, nullable=False)
    reminder_lead_time_minutes: Mapped[int] = mapped_column(Integer, default=60, nullable=False)


class SchedulerStaffMember(AuditableMixin, Base):
    __tablename__ = "scheduler_staff_members"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), unique=True, nullable=False
    )
    can_manage_others_calendars: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    default_meeting_link: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    # None means "use the organization hours"
    availability: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONType, nullable=True)

    # Relationships
    user: Mapped["User"] = relationship("User", lazy="raise")
    appointment_types: Mapped[list["AppointmentType"]] = relationship(
        "AppointmentType",
        secondary=appointment_type_staff,
        back_populates="eligible_staff",
        lazy="raise",
    )

    @property
    def full_name(self) -> str | None:
        try:
            return self.user.full_name
        except Exception:
            return None


class AppointmentType(AuditableMixin, Base):
    __tablename__ = "appointment_types"

    name: Mapped[str] = mapped_column(String, nullable=False)
    mode: Mapped[AppointmentMode] = mapped_column(
        Enum(AppointmentMode, name="appointmentmode"), nullable=False
    )
    default_duration_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    buffer_time_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    booking_horizon_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Relationships
    eligible_staff: Mapped[list["SchedulerStaffMember"]] = relationship(
        "SchedulerStaffMember",
        secondary=appointment_type_staff,
        back_populates="appointment_types",
        lazy="raise",
    )


class StaffBlockOutTime(AuditableMixin, Base):
    __tablename__ = "staff_block_out_times"

    staff_member_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("scheduler_staff_members.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String, nullable=False)
    start_time_utc: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    end_time_utc: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class Appointment(AuditableMixin, Base):
    __tablename__ = "appointments"
    __table_args__ = (
        Index("ix_appointments_staff_start", "staff_member_id", "scheduled_start_time"),
    )

    number: Mapped[int] = mapped_column(Integer, unique=True, nullable=False)
    contact_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("contacts.id"), nullable=False)
    staff_member_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("scheduler_staff_members.id"), nullable=False
    )
    appointment_type_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("appointment_types.id"), nullable=False
    )
    contact_first_name: Mapped[str] = mapped_column(String, nullable=False)
    contact_last_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    contact_email: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    contact_phone: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    contact_address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    mode: Mapped[AppointmentMode] = mapped_column(
        Enum(AppointmentMode, name="appointmentmode"), nullable=False
    )
    meeting_link: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    scheduled_start_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[AppointmentStatus] = mapped_column(
        Enum(AppointmentStatus, name="appointmentstatus"),
        default=AppointmentStatus.scheduled,
        nullable=False,
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancellation_notice_override_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reminder_sent_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    created_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )

    # Relationships
    contact: Mapped["Contact"] = relationship("Contact", lazy="raise")
    staff_member: Mapped["SchedulerStaffMember"] = relationship("SchedulerStaffMember", lazy="raise")
    appointment_type: Mapped["AppointmentType"] = relationship("AppointmentType", lazy="raise")
    history: Mapped[list["AppointmentHistory"]] = relationship(
        "AppointmentHistory",
        back_populates="appointment",
        lazy="raise",
        order_by="AppointmentHistory.created_at",
    )

    @property
    def code(self) -> str:
        return f"{APPOINTMENT_CODE_PREFIX}-{self.number:04d}"

    @property
    def scheduled_end_time(self) -> datetime:
        return self.scheduled_start_time + timedelta(minutes=self.duration_minutes)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_APPOINTMENT_STATUSES

    @property
    def staff_member_name(self) -> str | None:
        try:
            return self.staff_member.full_name
        except Exception:
            return None

    @property
    def appointment_type_name(self) -> str | None:
        try:
            return self.appointment_type.name
        except Exception:
            return None


class AppointmentHistory(TimestampMixin, Base):
    __tablename__ = "appointment_history"

    appointment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("appointments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    changed_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    action: Mapped[str] = mapped_column(String, nullable=False)
    old_status: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    new_status: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Relationships
    appointment: Mapped["Appointment"] = relationship("Appointment", back_populates="history")
