from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from helpdesk.models.base import AuditableMixin, Base, UTCDateTime
from helpdesk.models.role import SystemPermission, user_roles

if TYPE_CHECKING:
    from helpdesk.models.api_key import ApiKey
    from helpdesk.models.role import Role
    from helpdesk.models.team import TeamMembership


class User(AuditableMixin, Base):
    __tablename__ = "users"

    username: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    email: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    first_name: Mapped[str] = mapped_column(String, nullable=False)
    last_name: Mapped[str] = mapped_column(String, default="", nullable=False)
    hashed_password: Mapped[str] = mapped_column(String, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    # Administrators pass every permission check regardless of roles
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_logged_in_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    # Relationships
    roles: Mapped[list["Role"]] = relationship(
        "Role", secondary=user_roles, back_populates="users", lazy="raise"
    )
    team_memberships: Mapped[list["TeamMembership"]] = relationship(
        "TeamMembership", back_populates="user", lazy="raise"
    )
    api_keys: Mapped[list["ApiKey"]] = relationship(
        "ApiKey", back_populates="user", lazy="raise"
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def permissions(self) -> SystemPermission:
        """Union of the permissions granted by every role. Roles must be loaded."""
        result = SystemPermission.none
        for role in self.roles:
            result |= SystemPermission(role.permissions)
        return result

    @property
    def role_names(self) -> list[str]:
        try:
            return [role.developer_name for role in self.roles]
        except Exception:
            return []

    def has_permission(self, permission: SystemPermission) -> bool:
        if self.is_admin or permission == SystemPermission.none:
            return True
        return bool(self.permissions & permission)
