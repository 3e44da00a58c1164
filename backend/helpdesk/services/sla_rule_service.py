from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.exceptions import NotFoundError, ValidationFailed
from helpdesk.models.sla_rule import SlaRule
from helpdesk.models.ticket import Ticket
from helpdesk.schemas.sla_rule import SlaRuleCreate, SlaRuleUpdate


async def list_rules(db: AsyncSession, active_only: bool = False) -> list[SlaRule]:
    query = select(SlaRule).order_by(SlaRule.sort_order, SlaRule.created_at)
    if active_only:
        query = query.where(SlaRule.is_active == True)
    result = await db.execute(query)
    return list(result.scalars().all())


async def get_rule(db: AsyncSession, rule_id: UUID) -> SlaRule:
    rule = await db.get(SlaRule, rule_id)
    if rule is None:
        raise NotFoundError("SLA rule", rule_id)
    return rule


def _check_business_hours(enabled: bool, config: dict | None) -> None:
    if enabled and config is not None:
        if config["start_time"] >= config["end_time"]:
            raise ValidationFailed.single("business_hours_config", "Start time must be before end time")
        if not config["workdays"]:
            raise ValidationFailed.single("business_hours_config", "At least one workday is required")


async def create_rule(db: AsyncSession, data: SlaRuleCreate) -> SlaRule:
    config = data.business_hours_config.model_dump(mode="json") if data.business_hours_config else None
    _check_business_hours(data.business_hours_enabled, config)

    sort_order = data.sort_order
    if sort_order is None:
        result = await db.execute(select(func.max(SlaRule.sort_order)))
        sort_order = (result.scalar() or 0) + 1

    rule = SlaRule(
        name=data.name,
        description=data.description,
        conditions=data.conditions,
        target_resolution_minutes=data.target_resolution_minutes,
        target_close_minutes=data.target_close_minutes,
        business_hours_enabled=data.business_hours_enabled,
        business_hours_config=config,
        is_active=data.is_active,
        sort_order=sort_order,
        breach_behavior=data.breach_behavior,
    )
    db.add(rule)
    await db.flush()
    return rule


async def update_rule(db: AsyncSession, rule_id: UUID, data: SlaRuleUpdate) -> SlaRule:
    """Partial update. Existing ticket due dates are only recomputed on refresh."""
    rule = await get_rule(db, rule_id)
    update_data = data.model_dump(exclude_none=True, mode="json")
    for field, value in update_data.items():
        setattr(rule, field, value)
    _check_business_hours(rule.business_hours_enabled, rule.business_hours_config)
    await db.flush()
    return rule


async def delete_rule(db: AsyncSession, rule_id: UUID) -> None:
    """Delete a rule and detach it from any tickets still pointing at it."""
    rule = await get_rule(db, rule_id)
    await db.execute(
        update(Ticket)
        .where(Ticket.sla_rule_id == rule.id)
        .values(sla_rule_id=None, sla_due_at=None, sla_status=None, sla_breached_at=None)
    )
    await db.delete(rule)
    await db.flush()


async def reorder_rules(db: AsyncSession, rule_ids: list[UUID]) -> list[SlaRule]:
    """Set ``sort_order`` to the position in ``rule_ids``, starting at 1."""
    if len(set(rule_ids)) != len(rule_ids):
        raise ValidationFailed.single("rule_ids", "Rule ids must be unique")
    result = await db.execute(select(SlaRule).where(SlaRule.id.in_(rule_ids)))
    rules = {rule.id: rule for rule in result.scalars().all()}
    missing = [str(rule_id) for rule_id in rule_ids if rule_id not in rules]
    if missing:
        raise NotFoundError("SLA rule", missing[0])
    for position, rule_id in enumerate(rule_ids, start=1):
        rules[rule_id].sort_order = position
    await db.flush()
    return await list_rules(db)
