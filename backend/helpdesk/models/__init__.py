from helpdesk.models.api_key import ApiKey
from helpdesk.models.attachment import Attachment
from helpdesk.models.audit_log import AuditLog
from helpdesk.models.base import (
    ActorType,
    AppointmentMode,
    AppointmentStatus,
    Base,
    ImportEntityType,
    ImportMode,
    JobStatus,
    NotificationEventType,
    SlaStatus,
    TicketPriority,
    TicketStatus,
    TimestampMixin,
)
from helpdesk.models.contact import Contact
from helpdesk.models.contact_note import ContactAttachment, ContactComment
from helpdesk.models.email_template import BuiltInEmailTemplate, EmailTemplate
from helpdesk.models.export_job import ExportJob
from helpdesk.models.import_job import ImportJob
from helpdesk.models.notification import Notification, NotificationPreference
from helpdesk.models.organization import OrganizationSettings
from helpdesk.models.role import BuiltInRole, BuiltInSystemPermission, Role, SystemPermission
from helpdesk.models.scheduler import (
    Appointment,
    AppointmentHistory,
    AppointmentType,
    SchedulerConfiguration,
    SchedulerStaffMember,
    StaffBlockOutTime,
)
from helpdesk.models.sla_rule import SlaRule
from helpdesk.models.team import Team, TeamMembership
from helpdesk.models.ticket import Ticket
from helpdesk.models.ticket_comment import TicketComment
from helpdesk.models.ticket_follower import TicketFollower
from helpdesk.models.user import User

__all__ = [
    "ApiKey",
    "Appointment",
    "AppointmentHistory",
    "AppointmentMode",
    "AppointmentStatus",
    "AppointmentType",
    "Attachment",
    "AuditLog",
    "ActorType",
    "Base",
    "BuiltInEmailTemplate",
    "BuiltInRole",
    "BuiltInSystemPermission",
    "Contact",
    "ContactAttachment",
    "ContactComment",
    "EmailTemplate",
    "ExportJob",
    "ImportEntityType",
    "ImportJob",
    "ImportMode",
    "JobStatus",
    "Notification",
    "NotificationEventType",
    "NotificationPreference",
    "OrganizationSettings",
    "Role",
    "SchedulerConfiguration",
    "SchedulerStaffMember",
    "SlaRule",
    "SlaStatus",
    "StaffBlockOutTime",
    "SystemPermission",
    "Team",
    "TeamMembership",
    "Ticket",
    "TicketComment",
    "TicketFollower",
    "TicketPriority",
    "TicketStatus",
    "TimestampMixin",
    "User",
]
