import re
import uuid
from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator

_TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


class BusinessHoursConfig(BaseModel):
    """Workdays use 0=Sunday .. 6=Saturday."""

    workdays: list[int] = Field(default_factory=lambda: [1, 2, 3, 4, 5])
    start_time: str = "08:00"
    end_time: str = "18:00"
    holidays: list[date] = []

    @field_validator("workdays")
    @classmethod
    def check_workdays(cls, value: list[int]) -> list[int]:
        if any(day < 0 or day > 6 for day in value):
            raise ValueError("workdays must be between 0 (Sunday) and 6 (Saturday)")
        return sorted(set(value))

    @field_validator("start_time", "end_time")
    @classmethod
    def check_time(cls, value: str) -> str:
        if not _TIME_RE.match(value):
            raise ValueError("must be HH:MM")
        return value


class SlaRuleCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: str | None = None
    conditions: dict[str, Any] = {}
    target_resolution_minutes: int = Field(gt=0)
    target_close_minutes: int | None = Field(None, gt=0)
    business_hours_enabled: bool = False
    business_hours_config: BusinessHoursConfig | None = None
    is_active: bool = True
    sort_order: int | None = Field(None, ge=0, description="Evaluation order; appended last when omitted")
    breach_behavior: dict[str, Any] | None = None


class SlaRuleUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=200)
    description: str | None = None
    conditions: dict[str, Any] | None = None
    target_resolution_minutes: int | None = Field(None, gt=0)
    target_close_minutes: int | None = Field(None, gt=0)
    business_hours_enabled: bool | None = None
    business_hours_config: BusinessHoursConfig | None = None
    is_active: bool | None = None
    sort_order: int | None = Field(None, ge=0)
    breach_behavior: dict[str, Any] | None = None


class SlaRuleReorder(BaseModel):
    rule_ids: list[uuid.UUID] = Field(min_length=1)


class SlaRuleResponse(BaseModel):
    id: uuid.UUID
    name: str
    description: str | None
    conditions: dict[str, Any]
    target_resolution_minutes: int
    target_close_minutes: int | None
    business_hours_enabled: bool
    business_hours_config: dict[str, Any] | None
    is_active: bool
    sort_order: int
    breach_behavior: dict[str, Any] | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
