import enum
import functools
import operator
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy import Column, ForeignKey, Integer, String, Table, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from helpdesk.exceptions import UnsupportedBuiltInRoleError, UnsupportedPermissionError
from helpdesk.models.base import AuditableMixin, Base

if TYPE_CHECKING:
    from helpdesk.models.user import User


user_roles = Table(
    "user_roles",
    Base.metadata,
    Column("user_id", Uuid, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", Uuid, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
)


class SystemPermission(enum.IntFlag):
    none = 0
    manage_system_settings = 1
    manage_audit_logs = 2
    manage_administrators = 4
    manage_templates = 8
    manage_users = 16
    manage_teams = 32
    manage_tickets = 64
    access_reports = 128
    import_export_tickets = 256
    manage_scheduler = 512


@dataclass(frozen=True, eq=False)
class BuiltInSystemPermission:
    label: str
    developer_name: str
    permission: SystemPermission

    def __eq__(self, other):
        if not isinstance(other, BuiltInSystemPermission):
            return NotImplemented
        return self.developer_name == other.developer_name

    def __hash__(self):
        return hash(self.developer_name)

    def __str__(self):
        return self.developer_name

    @classmethod
    def all(cls) -> tuple["BuiltInSystemPermission", ...]:
        return BUILT_IN_PERMISSIONS

    @classmethod
    def from_developer_name(cls, developer_name: str) -> "BuiltInSystemPermission":
        for item in BUILT_IN_PERMISSIONS:
            if item.developer_name == developer_name:
                return item
        raise UnsupportedPermissionError(developer_name)

    @classmethod
    def from_flags(cls, flags: int) -> list["BuiltInSystemPermission"]:
        """Expand a bit field into the permissions it grants."""
        return [item for item in BUILT_IN_PERMISSIONS if flags & item.permission]

    @classmethod
    def combine(cls, *developer_names: str) -> SystemPermission:
        """Fold developer names into a single bit field."""
        result = SystemPermission.none
        for name in developer_names:
            result |= cls.from_developer_name(name).permission
        return result


BUILT_IN_PERMISSIONS = (
    BuiltInSystemPermission("Manage System Settings", "system_settings", SystemPermission.manage_system_settings),
    BuiltInSystemPermission("Manage Administrators", "administrators", SystemPermission.manage_administrators),
    BuiltInSystemPermission("Manage Audit Logs", "audit_logs", SystemPermission.manage_audit_logs),
    BuiltInSystemPermission("Manage Templates", "templates", SystemPermission.manage_templates),
    BuiltInSystemPermission("Manage Users", "users", SystemPermission.manage_users),
    BuiltInSystemPermission("Manage Teams", "manage_teams", SystemPermission.manage_teams),
    BuiltInSystemPermission("Manage Tickets", "manage_tickets", SystemPermission.manage_tickets),
    BuiltInSystemPermission("Access Reports", "access_reports", SystemPermission.access_reports),
    BuiltInSystemPermission("Import/Export Tickets", "import_export_tickets", SystemPermission.import_export_tickets),
    BuiltInSystemPermission("Manage Scheduler", "manage_scheduler", SystemPermission.manage_scheduler),
)

ALL_PERMISSIONS = functools.reduce(
    operator.or_, (item.permission for item in BUILT_IN_PERMISSIONS), SystemPermission.none
)


@dataclass(frozen=True, eq=False)
class BuiltInRole:
    default_label: str
    developer_name: str
    default_permission: SystemPermission

    def __eq__(self, other):
        if not isinstance(other, BuiltInRole):
            return NotImplemented
        return self.developer_name == other.developer_name

    def __hash__(self):
        return hash(self.developer_name)

    def __str__(self):
        return self.developer_name

    @classmethod
    def all(cls) -> tuple["BuiltInRole", ...]:
        return BUILT_IN_ROLES

    @classmethod
    def from_developer_name(cls, developer_name: str) -> "BuiltInRole":
        for role in BUILT_IN_ROLES:
            if role.developer_name == developer_name:
                return role
        raise UnsupportedBuiltInRoleError(developer_name)

    @classmethod
    def is_built_in(cls, developer_name: str) -> bool:
        return any(role.developer_name == developer_name for role in BUILT_IN_ROLES)


SUPER_ADMIN = BuiltInRole("Super Admin", "super_admin", ALL_PERMISSIONS)
ADMIN = BuiltInRole("Admin", "admin", ALL_PERMISSIONS)
EDITOR = BuiltInRole("Editor", "editor", SystemPermission.none)

BUILT_IN_ROLES = (SUPER_ADMIN, ADMIN, EDITOR)


class Role(AuditableMixin, Base):
    __tablename__ = "roles"

    label: Mapped[str] = mapped_column(String, nullable=False)
    developer_name: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    permissions: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Relationships
    users: Mapped[list["User"]] = relationship(
        "User", secondary=user_roles, back_populates="roles", lazy="raise"
    )

    @property
    def system_permissions(self) -> SystemPermission:
        return SystemPermission(self.permissions)

    @property
    def permission_names(self) -> list[str]:
        return [item.developer_name for item in BuiltInSystemPermission.from_flags(self.permissions)]

    @property
    def is_built_in(self) -> bool:
        return BuiltInRole.is_built_in(self.developer_name)
