from dataclasses import dataclass
from typing import Optional

from sqlalchemy import Boolean, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from helpdesk.exceptions import UnsupportedTemplateTypeError
from helpdesk.models.base import AuditableMixin, Base


class EmailTemplate(AuditableMixin, Base):
    __tablename__ = "email_templates"

    subject: Mapped[str] = mapped_column(String, nullable=False)
    developer_name: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    cc: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    bcc: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    content: Mapped[str] = mapped_column(Text, default="", nullable=False)
    is_built_in: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)


_ORG = "[{{ organization.name }}]"


@dataclass(frozen=True, eq=False)
class BuiltInEmailTemplate:
    default_subject: str
    developer_name: str
    safe_to_cc: bool
    default_content: str

    def __eq__(self, other):
        if not isinstance(other, BuiltInEmailTemplate):
            return NotImplemented
        return self.developer_name == other.developer_name

    def __hash__(self):
        return hash(self.developer_name)

    def __str__(self):
        return self.developer_name

    @classmethod
    def all(cls) -> tuple["BuiltInEmailTemplate", ...]:
        return BUILT_IN_EMAIL_TEMPLATES

    @classmethod
    def from_developer_name(cls, developer_name: str) -> "BuiltInEmailTemplate":
        for template in BUILT_IN_EMAIL_TEMPLATES:
            if template.developer_name == developer_name:
                return template
        raise UnsupportedTemplateTypeError(developer_name)

    @classmethod
    def is_built_in(cls, developer_name: str) -> bool:
        return any(t.developer_name == developer_name for t in BUILT_IN_EMAIL_TEMPLATES)


def _account_body(headline: str) -> str:
    return (
        f"<p>Hello {{{{ target.first_name }}}},</p><p>{headline}</p>"
        "<p>{{ organization.name }}</p>"
    )


def _ticket_body(headline: str) -> str:
    return (
        f"<p>{headline}</p>"
        "<p><strong>{{ target.ticket_number }}</strong>: {{ target.title }}</p>"
        '<p><a href="{{ target.url }}">View ticket</a></p>'
    )


ADMIN_WELCOME = BuiltInEmailTemplate(
    f"{_ORG} An administrator has created your account",
    "email_admin_welcome",
    False,
    _account_body("An administrator account has been created for you."),
)
ADMIN_PASSWORD_CHANGED = BuiltInEmailTemplate(
    f"{_ORG} Your password has been changed",
    "email_admin_passwordchanged",
    False,
    _account_body("Your password has been changed."),
)
ADMIN_PASSWORD_RESET = BuiltInEmailTemplate(
    f"{_ORG} Your password has been reset by an administrator",
    "email_admin_passwordreset",
    False,
    _account_body("Your password has been reset by an administrator."),
)
LOGIN_MAGIC_LINK = BuiltInEmailTemplate(
    f"{_ORG} Website login access link",
    "email_login_beginloginwithmagiclink",
    False,
    _account_body('Use <a href="{{ target.url }}">this link</a> to sign in.'),
)
LOGIN_FORGOT_PASSWORD = BuiltInEmailTemplate(
    f"{_ORG} Password recovery",
    "email_login_beginforgotpassword",
    False,
    _account_body('Use <a href="{{ target.url }}">this link</a> to choose a new password.'),
)
LOGIN_COMPLETED_FORGOT_PASSWORD = BuiltInEmailTemplate(
    f"{_ORG} Your password has been recovered",
    "email_login_completedforgotpassword",
    False,
    _account_body("Your password has been recovered."),
)
USER_WELCOME = BuiltInEmailTemplate(
    f"{_ORG} An administrator has created your account",
    "email_user_welcome",
    False,
    _account_body("An account has been created for you."),
)
USER_PASSWORD_CHANGED = BuiltInEmailTemplate(
    f"{_ORG} Your password has been changed",
    "email_user_passwordchanged",
    False,
    _account_body("Your password has been changed."),
)
USER_PASSWORD_RESET = BuiltInEmailTemplate(
    f"{_ORG} Your password has been reset by an administrator",
    "email_user_passwordreset",
    False,
    _account_body("Your password has been reset by an administrator."),
)
TICKET_ASSIGNED = BuiltInEmailTemplate(
    f"{_ORG} Ticket #{{{{ target.ticket_number }}}} assigned to you",
    "email_ticket_assigned",
    True,
    _ticket_body("A ticket has been assigned to you."),
)
TICKET_ASSIGNED_TO_TEAM = BuiltInEmailTemplate(
    f"{_ORG} Ticket #{{{{ target.ticket_number }}}} assigned to your team",
    "email_ticket_assignedtoteam",
    True,
    _ticket_body("A ticket has been assigned to your team."),
)
TICKET_COMMENT_ADDED = BuiltInEmailTemplate(
    f"{_ORG} New comment on ticket #{{{{ target.ticket_number }}}}",
    "email_ticket_commentadded",
    True,
    _ticket_body("A new comment was added."),
)
TICKET_STATUS_CHANGED = BuiltInEmailTemplate(
    f"{_ORG} Ticket #{{{{ target.ticket_number }}}} status changed",
    "email_ticket_statuschanged",
    True,
    _ticket_body("The ticket status changed to {{ target.status }}."),
)
TICKET_CLOSED = BuiltInEmailTemplate(
    f"{_ORG} Ticket #{{{{ target.ticket_number }}}} has been closed",
    "email_ticket_closed",
    True,
    _ticket_body("The ticket has been closed."),
)
TICKET_REOPENED = BuiltInEmailTemplate(
    f"{_ORG} Ticket #{{{{ target.ticket_number }}}} has been reopened",
    "email_ticket_reopened",
    True,
    _ticket_body("The ticket has been reopened."),
)
SLA_APPROACHING = BuiltInEmailTemplate(
    f"{_ORG} SLA approaching for ticket #{{{{ target.ticket_number }}}}",
    "email_sla_approaching",
    True,
    _ticket_body("The SLA for this ticket is due at {{ target.sla_due_at }}."),
)
SLA_BREACHED = BuiltInEmailTemplate(
    f"{_ORG} SLA breached for ticket #{{{{ target.ticket_number }}}}",
    "email_sla_breached",
    True,
    _ticket_body("The SLA for this ticket was breached at {{ target.sla_breached_at }}."),
)
TICKET_UNSNOOZED = BuiltInEmailTemplate(
    f"{_ORG} Ticket #{{{{ target.ticket_number }}}} "
    "{% if target.was_auto_unsnooze %}snooze expired{% else %}unsnoozed{% endif %}",
    "email_ticket_unsnoozed",
    True,
    _ticket_body(
        "{% if target.was_auto_unsnooze %}The snooze on this ticket has expired."
        "{% else %}{{ actor.full_name }} unsnoozed this ticket.{% endif %}"
    ),
)

BUILT_IN_EMAIL_TEMPLATES = (
    ADMIN_WELCOME,
    ADMIN_PASSWORD_CHANGED,
    ADMIN_PASSWORD_RESET,
    LOGIN_MAGIC_LINK,
    LOGIN_FORGOT_PASSWORD,
    LOGIN_COMPLETED_FORGOT_PASSWORD,
    USER_WELCOME,
    USER_PASSWORD_CHANGED,
    USER_PASSWORD_RESET,
    TICKET_ASSIGNED,
    TICKET_ASSIGNED_TO_TEAM,
    TICKET_COMMENT_ADDED,
    TICKET_STATUS_CHANGED,
    TICKET_CLOSED,
    TICKET_REOPENED,
    SLA_APPROACHING,
    SLA_BREACHED,
    TICKET_UNSNOOZED,
)
