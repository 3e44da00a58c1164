from datetime import datetime
from zoneinfo import available_timezones

from pydantic import BaseModel, Field, field_validator


def _check_time_zone(value: str | None) -> str | None:
    if value is not None and value not in available_timezones():
        raise ValueError(f"Unknown time zone: {value}")
    return value


class OrganizationSettingsResponse(BaseModel):
    organization_name: str
    time_zone: str
    website_url: str | None
    smtp_default_from_address: str | None
    smtp_default_from_name: str | None
    pause_sla_on_snooze: bool
    initial_setup_completed_at: datetime | None

    model_config = {"from_attributes": True}


class OrganizationSettingsUpdate(BaseModel):
    organization_name: str | None = Field(None, min_length=1, max_length=200)
    time_zone: str | None = None
    website_url: str | None = None
    smtp_default_from_address: str | None = None
    smtp_default_from_name: str | None = None
    pause_sla_on_snooze: bool | None = None

    @field_validator("time_zone")
    @classmethod
    def check_time_zone(cls, value: str | None) -> str | None:
        return _check_time_zone(value)


class InitialSetupRequest(BaseModel):
    organization_name: str = Field(min_length=1, max_length=200)
    time_zone: str = "UTC"
    website_url: str | None = None
    admin_username: str = Field(min_length=1, max_length=100)
    admin_email: str = Field(pattern=r"^[^@\s]+@[^@\s]+$")
    admin_first_name: str = Field(min_length=1)
    admin_last_name: str = ""
    admin_password: str = Field(min_length=8)

    @field_validator("time_zone")
    @classmethod
    def check_time_zone(cls, value: str) -> str:
        return _check_time_zone(value)
