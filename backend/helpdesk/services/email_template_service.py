import enum
import logging
from collections.abc import Mapping
from typing import Any
from uuid import UUID

from liquid import Environment
from liquid.exceptions import Error as LiquidError
from liquid.exceptions import LiquidSyntaxError
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.exceptions import BusinessError, ConflictError, NotFoundError, ValidationFailed
from helpdesk.models.email_template import BuiltInEmailTemplate, EmailTemplate
from helpdesk.models.organization import OrganizationSettings
from helpdesk.schemas.email_template import EmailTemplateCreate, EmailTemplateUpdate

logger = logging.getLogger(__name__)

_LIQUID = Environment()


class TemplateData(Mapping):
    """Read-only view of a mapping or object with case-insensitive keys."""

    def __init__(self, source: Any):
        self._source = source

    def __getitem__(self, key: str) -> Any:
        if not isinstance(key, str):
            raise KeyError(key)
        source = self._source
        if isinstance(source, Mapping):
            if key in source:
                return _wrap(source[key])
            lowered = key.lower()
            for candidate, item in source.items():
                if isinstance(candidate, str) and candidate.lower() == lowered:
                    return _wrap(item)
            raise KeyError(key)
        if key.startswith("_") or not hasattr(source, key):
            raise KeyError(key)
        return _wrap(getattr(source, key))

    def __iter__(self):
        if isinstance(self._source, Mapping):
            return iter(self._source)
        return (name for name in vars(self._source) if not name.startswith("_"))

    def __len__(self) -> int:
        return sum(1 for _ in self)


def _wrap(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, Mapping):
        return TemplateData(value)
    if isinstance(value, (list, tuple)):
        return [_wrap(item) for item in value]
    if hasattr(value, "__dict__") and not isinstance(value, type):
        return TemplateData(value)
    return value


def check_syntax(field: str, text: str | None) -> None:
    if text is None:
        return
    try:
        _LIQUID.from_string(text)
    except LiquidSyntaxError as exc:
        raise ValidationFailed.single(field, f"Invalid template syntax: {exc}") from exc


def render_template(text: str, context: Mapping[str, Any]) -> str:
    """Render ``text`` as a Liquid template. Unknown variables render empty."""
    data = {str(key).lower(): _wrap(value) for key, value in context.items()}
    try:
        return _LIQUID.from_string(text or "").render(**data)
    except LiquidError as exc:
        raise BusinessError(f"Email template could not be rendered: {exc}") from exc


async def ensure_built_in_templates(db: AsyncSession) -> int:
    """Create any missing built-in templates. Returns how many were added."""
    result = await db.execute(select(EmailTemplate.developer_name))
    existing = set(result.scalars().all())
    added = 0
    for built_in in BuiltInEmailTemplate.all():
        if built_in.developer_name in existing:
            continue
        db.add(EmailTemplate(
            subject=built_in.default_subject,
            developer_name=built_in.developer_name,
            content=built_in.default_content,
            is_built_in=True,
        ))
        added += 1
    await db.flush()
    return added


async def list_templates(db: AsyncSession) -> list[EmailTemplate]:
    result = await db.execute(select(EmailTemplate).order_by(EmailTemplate.developer_name))
    return list(result.scalars().all())


async def get_template(db: AsyncSession, template_id: UUID) -> EmailTemplate:
    template = await db.get(EmailTemplate, template_id)
    if template is None:
        raise NotFoundError("Email template", template_id)
    return template


async def get_template_by_developer_name(db: AsyncSession, developer_name: str) -> EmailTemplate | None:
    result = await db.execute(
        select(EmailTemplate).where(func.lower(EmailTemplate.developer_name) == developer_name.lower())
    )
    return result.scalar_one_or_none()


async def create_template(db: AsyncSession, data: EmailTemplateCreate) -> EmailTemplate:
    check_syntax("subject", data.subject)
    check_syntax("content", data.content)
    if await get_template_by_developer_name(db, data.developer_name) is not None:
        raise ConflictError("An email template with this developer name already exists")
    if BuiltInEmailTemplate.is_built_in(data.developer_name):
        raise ConflictError("This developer name is reserved for a built-in template")
    template = EmailTemplate(
        subject=data.subject,
        developer_name=data.developer_name,
        cc=data.cc,
        bcc=data.bcc,
        content=data.content,
        is_built_in=False,
    )
    db.add(template)
    await db.flush()
    return template


async def update_template(db: AsyncSession, template_id: UUID, data: EmailTemplateUpdate) -> EmailTemplate:
    template = await get_template(db, template_id)
    update_data = data.model_dump(exclude_unset=True)
    check_syntax("subject", update_data.get("subject"))
    check_syntax("content", update_data.get("content"))
    if template.is_built_in and update_data.get("cc"):
        built_in = BuiltInEmailTemplate.from_developer_name(template.developer_name)
        if not built_in.safe_to_cc:
            raise BusinessError("This template contains private account details and cannot be copied to others")
    for field, value in update_data.items():
        if value is None and field in ("subject", "content"):
            continue
        setattr(template, field, value)
    await db.flush()
    return template


async def delete_template(db: AsyncSession, template_id: UUID) -> None:
    template = await get_template(db, template_id)
    if template.is_built_in:
        raise BusinessError("Built-in email templates cannot be deleted")
    await db.delete(template)
    await db.flush()


async def revert_template(db: AsyncSession, template_id: UUID) -> EmailTemplate:
    """Restore a built-in template's default subject and content."""
    template = await get_template(db, template_id)
    if not template.is_built_in:
        raise BusinessError("Only built-in email templates can be reverted")
    built_in = BuiltInEmailTemplate.from_developer_name(template.developer_name)
    template.subject = built_in.default_subject
    template.content = built_in.default_content
    template.cc = None
    template.bcc = None
    await db.flush()
    logger.info("Reverted email template %s", template.developer_name)
    return template


async def preview_template(
    db: AsyncSession, template_id: UUID, context: Mapping[str, Any] | None = None
) -> tuple[str, str]:
    template = await get_template(db, template_id)
    result = await db.execute(select(OrganizationSettings).limit(1))
    org = result.scalar_one_or_none()
    full_context: dict[str, Any] = {
        "organization": {
            "name": org.organization_name if org else "",
            "website_url": org.website_url if org else "",
        },
    }
    full_context.update(context or {})
    return render_template(template.subject, full_context), render_template(template.content, full_context)
