from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.exceptions import BusinessError, NotFoundError, ValidationFailed
from helpdesk.models.base import utcnow
from helpdesk.models.contact import Contact
from helpdesk.models.scheduler import ACTIVE_APPOINTMENT_STATUSES, Appointment
from helpdesk.schemas.contact import ContactCreate, ContactUpdate
from helpdesk.services import phone_numbers

# Digit-only searches shorter than this are treated as plain text
MIN_PHONE_SEARCH_DIGITS = 4


def _clean_phone_numbers(values: list[str]) -> list[str]:
    normalized = phone_numbers.normalize_many(values)
    invalid = [v for v in values if v and v.strip() and phone_numbers.normalize(v) is None]
    if invalid:
        raise ValidationFailed({"phone_numbers": [f"Invalid phone number: {v}" for v in invalid]})
    return normalized


async def create_contact(db: AsyncSession, data: ContactCreate) -> Contact:
    contact = Contact(
        first_name=data.first_name.strip(),
        last_name=data.last_name,
        email=data.email,
        phone_numbers=_clean_phone_numbers(data.phone_numbers),
        address=data.address,
        organization_account=data.organization_account,
    )
    db.add(contact)
    await db.flush()
    return contact


async def get_contact(db: AsyncSession, contact_id: UUID) -> Contact:
    result = await db.execute(
        select(Contact).where(Contact.id == contact_id, Contact.is_deleted == False)
    )
    contact = result.scalar_one_or_none()
    if contact is None:
        raise NotFoundError("Contact", contact_id)
    return contact


def _matches_search(contact: Contact, term: str) -> bool:
    lowered = term.lower()
    fields = (
        contact.first_name,
        contact.last_name,
        contact.full_name,
        contact.email,
        contact.organization_account,
    )
    if any(value and lowered in value.lower() for value in fields):
        return True
    if str(contact.id) == lowered:
        return True
    if len(phone_numbers.extract_digits(term)) >= MIN_PHONE_SEARCH_DIGITS:
        return any(phone_numbers.matches(p, term) for p in contact.phone_numbers or [])
    return False


async def list_contacts(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 25,
    search: str | None = None,
) -> tuple[list[Contact], int]:
    """Paginated contacts. Searches name, email, organization and phone numbers."""
    query = select(Contact).where(Contact.is_deleted == False)
    term = (search or "").strip()

    if term and len(phone_numbers.extract_digits(term)) >= MIN_PHONE_SEARCH_DIGITS:
        # Phone numbers are stored in varying formats, so match them in Python
        result = await db.execute(query.order_by(Contact.first_name, Contact.last_name))
        matched = [c for c in result.scalars().all() if _matches_search(c, term)]
        offset = (page - 1) * page_size
        return matched[offset:offset + page_size], len(matched)

    if term:
        pattern = f"%{term}%"
        query = query.where(
            or_(
                Contact.first_name.ilike(pattern),
                Contact.last_name.ilike(pattern),
                Contact.email.ilike(pattern),
                Contact.organization_account.ilike(pattern),
            )
        )

    count_result = await db.execute(select(func.count()).select_from(query.subquery()))
    total = count_result.scalar_one()

    offset = (page - 1) * page_size
    result = await db.execute(
        query.order_by(Contact.first_name, Contact.last_name).offset(offset).limit(page_size)
    )
    return list(result.scalars().all()), total


async def update_contact(db: AsyncSession, contact_id: UUID, data: ContactUpdate) -> Contact:
    contact = await get_contact(db, contact_id)
    update_data = data.model_dump(exclude_unset=True)
    if "first_name" in update_data and not update_data["first_name"]:
        raise ValidationFailed.single("first_name", "First name is required")
    if "phone_numbers" in update_data:
        update_data["phone_numbers"] = _clean_phone_numbers(update_data["phone_numbers"] or [])
    for field, value in update_data.items():
        setattr(contact, field, value)
    await db.flush()
    return contact


async def delete_contact(db: AsyncSession, contact_id: UUID) -> None:
    """Soft-delete a contact that has no upcoming active appointments."""
    contact = await get_contact(db, contact_id)
    result = await db.execute(
        select(Appointment.number).where(
            Appointment.contact_id == contact.id,
            Appointment.status.in_(ACTIVE_APPOINTMENT_STATUSES),
            Appointment.scheduled_start_time > utcnow(),
        )
    )
    numbers = list(result.scalars().all())
    if numbers:
        codes = ", ".join(f"APT-{n:04d}" for n in sorted(numbers))
        raise BusinessError(
            f"Cannot delete contact: there are future active appointments ({codes}). "
            "Please cancel or complete those appointments first."
        )
    contact.is_deleted = True
    contact.deleted_at = utcnow()
    await db.flush()
