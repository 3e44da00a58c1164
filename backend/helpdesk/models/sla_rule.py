from typing import Any, Optional

from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from helpdesk.models.base import AuditableMixin, Base, JSONType


class SlaRule(AuditableMixin, Base):
    """Conditions are matched against tickets in ascending ``sort_order``; first match wins."""

    __tablename__ = "sla_rules"

    name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    conditions: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict, nullable=False)
    target_resolution_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    target_close_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    business_hours_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    business_hours_config: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONType, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    breach_behavior: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONType, nullable=True)
