import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.exceptions import BusinessError, NotFoundError
from helpdesk.models.base import utcnow
from helpdesk.models.organization import OrganizationSettings
from helpdesk.models.role import SUPER_ADMIN
from helpdesk.models.user import User
from helpdesk.schemas.organization import InitialSetupRequest, OrganizationSettingsUpdate
from helpdesk.services import auth_service, availability_service, email_template_service, role_service

logger = logging.getLogger(__name__)


async def get_settings_row(db: AsyncSession) -> OrganizationSettings | None:
    result = await db.execute(select(OrganizationSettings).limit(1))
    return result.scalar_one_or_none()


async def is_setup_complete(db: AsyncSession) -> bool:
    org = await get_settings_row(db)
    return org is not None and org.initial_setup_completed_at is not None


async def run_initial_setup(db: AsyncSession, data: InitialSetupRequest) -> tuple[OrganizationSettings, User]:
    """Create the organization, built-in roles and templates, and the first administrator."""
    if await is_setup_complete(db):
        raise BusinessError("Initial setup has already been completed")

    result = await db.execute(select(User.id).limit(1))
    if result.scalar_one_or_none() is not None:
        raise BusinessError("Initial setup requires an empty user table")

    roles = await role_service.ensure_built_in_roles(db)
    await email_template_service.ensure_built_in_templates(db)
    await availability_service.get_configuration(db)

    admin = User(
        username=data.admin_username,
        email=data.admin_email,
        first_name=data.admin_first_name,
        last_name=data.admin_last_name,
        hashed_password=auth_service.hash_password(data.admin_password),
        is_admin=True,
        roles=[roles[SUPER_ADMIN.developer_name]],
    )
    db.add(admin)

    org = await get_settings_row(db)
    if org is None:
        org = OrganizationSettings(organization_name=data.organization_name)
        db.add(org)
    org.organization_name = data.organization_name
    org.time_zone = data.time_zone
    org.website_url = data.website_url
    org.initial_setup_completed_at = utcnow()
    await db.flush()

    logger.info("Initial setup completed for %s", data.organization_name)
    return org, admin


async def get_organization(db: AsyncSession) -> OrganizationSettings:
    org = await get_settings_row(db)
    if org is None:
        raise NotFoundError("Organization settings")
    return org


async def update_organization(db: AsyncSession, data: OrganizationSettingsUpdate) -> OrganizationSettings:
    org = await get_organization(db)
    for field, value in data.model_dump(exclude_unset=True).items():
        if value is None and field in ("organization_name", "time_zone", "pause_sla_on_snooze"):
            continue
        setattr(org, field, value)
    await db.flush()
    return org
