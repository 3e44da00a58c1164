"""SLA rule matching, due-date calculation and status evaluation.

The rule engine functions are pure and work on in-memory tickets and rules.
The async helpers load their inputs and persist the outcome.
"""
import logging
import uuid
from collections.abc import Iterable, Mapping
from datetime import date, datetime, time, timedelta, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.models.base import NotificationEventType, SlaStatus, TicketStatus, utcnow
from helpdesk.models.sla_rule import SlaRule
from helpdesk.models.ticket import Ticket
from helpdesk.services import notification_service

logger = logging.getLogger(__name__)

APPROACHING_BREACH_THRESHOLD = 0.75
DEFAULT_BUSINESS_START = time(8, 0)
DEFAULT_BUSINESS_END = time(18, 0)
MAX_BUSINESS_DAY_ITERATIONS = 365
EVALUATION_BATCH_SIZE = 100


# ---------------------------------------------------------------------------
# Rule engine
# ---------------------------------------------------------------------------


def _value(value: Any) -> str | None:
    if value is None:
        return None
    if hasattr(value, "value"):
        value = value.value
    return str(value)


def _equals_ignore_case(actual: Any, expected: str) -> bool:
    actual = _value(actual)
    return actual is not None and actual.lower() == expected.lower()


def matches_conditions(ticket: Ticket, conditions: Mapping[str, Any] | None) -> bool:
    """True when the ticket satisfies every recognised condition.

    Empty conditions match every ticket. Unknown keys, empty values and
    team ids that are not valid UUIDs are ignored.
    """
    if not conditions:
        return True

    for raw_key, raw_value in conditions.items():
        key = raw_key.lower()
        expected = _value(raw_value)
        if not expected:
            continue

        if key == "priority":
            if not _equals_ignore_case(ticket.priority, expected):
                return False
        elif key == "category":
            if not _equals_ignore_case(ticket.category, expected):
                return False
        elif key == "status":
            if not _equals_ignore_case(ticket.status, expected):
                return False
        elif key in ("owning_team_id", "owningteamid"):
            try:
                team_id = uuid.UUID(expected)
            except ValueError:
                continue
            if ticket.owning_team_id != team_id:
                return False
    return True


def _parse_time(value: Any, default: time) -> time:
    try:
        return time.fromisoformat(str(value))
    except ValueError:
        return default


def _parse_holidays(values: Iterable[Any]) -> set[date]:
    holidays = set()
    for value in values or ():
        if isinstance(value, date):
            holidays.add(value if not isinstance(value, datetime) else value.date())
            continue
        try:
            holidays.add(date.fromisoformat(str(value)[:10]))
        except ValueError:
            continue
    return holidays


def _sunday_based_weekday(day: date) -> int:
    """0=Sunday .. 6=Saturday."""
    return (day.weekday() + 1) % 7


def business_hours_due_date(start: datetime, target_minutes: int, config: Mapping[str, Any]) -> datetime:
    """Walk forward through business days consuming ``target_minutes``.

    Times are interpreted in UTC. Falls back to a plain addition when the
    walk does not finish within a year of calendar days.
    """
    business_start = _parse_time(config.get("start_time"), DEFAULT_BUSINESS_START)
    business_end = _parse_time(config.get("end_time"), DEFAULT_BUSINESS_END)
    workdays = {int(d) for d in config.get("workdays") or []}
    holidays = _parse_holidays(config.get("holidays") or [])
    tz = start.tzinfo or timezone.utc

    def at(day: date, moment: time) -> datetime:
        return datetime.combine(day, moment, tzinfo=tz)

    current = start
    remaining = timedelta(minutes=target_minutes)

    for _ in range(MAX_BUSINESS_DAY_ITERATIONS):
        if remaining <= timedelta(0):
            break
        day = current.date()
        next_day_start = at(day + timedelta(days=1), business_start)

        if _sunday_based_weekday(day) not in workdays or day in holidays:
            current = next_day_start
            continue

        if current.timetz().replace(tzinfo=None) < business_start:
            current = at(day, business_start)

        day_end = at(day, business_end)
        if current >= day_end:
            current = next_day_start
            continue

        available = day_end - current
        if remaining <= available:
            return current + remaining
        remaining -= available
        current = next_day_start

    return start + timedelta(minutes=target_minutes)


def calculate_due_date(start: datetime, rule: SlaRule) -> datetime:
    plain = start + timedelta(minutes=rule.target_resolution_minutes)
    if not rule.business_hours_enabled:
        return plain
    config = rule.business_hours_config
    if not isinstance(config, Mapping):
        return plain
    return business_hours_due_date(start, rule.target_resolution_minutes, config)


def assign_sla(ticket: Ticket, rules: Iterable[SlaRule], start: datetime | None = None) -> SlaRule | None:
    """Attach the first matching active rule (by ``sort_order``) to the ticket.

    Clears the SLA fields when no rule matches.
    """
    ordered = sorted((r for r in rules if r.is_active), key=lambda r: r.sort_order)
    for rule in ordered:
        if matches_conditions(ticket, rule.conditions):
            ticket.sla_rule_id = rule.id
            ticket.sla_due_at = calculate_due_date(start or ticket.created_at or utcnow(), rule)
            ticket.sla_status = SlaStatus.on_track
            ticket.sla_breached_at = None
            return rule

    ticket.sla_rule_id = None
    ticket.sla_due_at = None
    ticket.sla_status = None
    ticket.sla_breached_at = None
    return None


def evaluate_sla_status(ticket: Ticket, rule: SlaRule | None, now: datetime | None = None) -> bool:
    """Recompute ``ticket.sla_status``. Returns True when it changed."""
    if ticket.sla_due_at is None or ticket.sla_rule_id is None:
        return False

    now = now or utcnow()
    old_status = ticket.sla_status

    if ticket.status in (TicketStatus.resolved, TicketStatus.closed):
        ticket.sla_status = SlaStatus.completed
        return old_status != ticket.sla_status

    if now >= ticket.sla_due_at:
        if ticket.sla_status != SlaStatus.breached:
            ticket.sla_status = SlaStatus.breached
            ticket.sla_breached_at = now
        return old_status != ticket.sla_status

    if rule is not None and rule.target_resolution_minutes > 0:
        elapsed = (now - ticket.created_at).total_seconds() / 60
        if elapsed / rule.target_resolution_minutes >= APPROACHING_BREACH_THRESHOLD:
            ticket.sla_status = SlaStatus.approaching_breach
            return old_status != ticket.sla_status

    ticket.sla_status = SlaStatus.on_track
    return old_status != ticket.sla_status


# ---------------------------------------------------------------------------
# Persistence helpers
# ---------------------------------------------------------------------------


async def get_active_rules(db: AsyncSession) -> list[SlaRule]:
    result = await db.execute(
        select(SlaRule).where(SlaRule.is_active == True).order_by(SlaRule.sort_order, SlaRule.created_at)
    )
    return list(result.scalars().all())


async def apply_sla(db: AsyncSession, ticket: Ticket) -> SlaRule | None:
    """Match the ticket against the active rules and store the result."""
    rule = assign_sla(ticket, await get_active_rules(db))
    await db.flush()
    return rule


async def _notify_transition(db: AsyncSession, ticket: Ticket) -> None:
    if ticket.assignee_id is None:
        return
    if ticket.sla_status == SlaStatus.breached:
        await notification_service.notify(
            db,
            ticket.assignee_id,
            NotificationEventType.sla_breached,
            f"SLA breached: {ticket.ticket_number}",
            f"The SLA for '{ticket.title}' was breached.",
            url=ticket.url,
            ticket_id=ticket.id,
        )
    elif ticket.sla_status == SlaStatus.approaching_breach:
        await notification_service.notify(
            db,
            ticket.assignee_id,
            NotificationEventType.sla_approaching,
            f"SLA approaching: {ticket.ticket_number}",
            f"The SLA for '{ticket.title}' is due at {ticket.sla_due_at:%Y-%m-%d %H:%M} UTC.",
            url=ticket.url,
            ticket_id=ticket.id,
        )


async def update_sla_status(
    db: AsyncSession,
    ticket: Ticket,
    rule: SlaRule | None = None,
    now: datetime | None = None,
) -> bool:
    """Evaluate one ticket and notify the assignee on breach or approaching breach."""
    if rule is None and ticket.sla_rule_id is not None:
        rule = await db.get(SlaRule, ticket.sla_rule_id)
    changed = evaluate_sla_status(ticket, rule, now)
    if changed:
        logger.info("SLA status for %s changed to %s", ticket.ticket_number, ticket.sla_status.value)
        await _notify_transition(db, ticket)
        await db.flush()
    return changed


async def evaluate_open_tickets(db: AsyncSession, now: datetime | None = None) -> int:
    """Evaluate every open ticket with an SLA, in batches. Returns the number changed."""
    now = now or utcnow()
    rules = {rule.id: rule for rule in (await db.execute(select(SlaRule))).scalars().all()}
    changed = 0
    last_number = 0
    while True:
        result = await db.execute(
            select(Ticket)
            .where(
                Ticket.is_deleted == False,
                Ticket.sla_rule_id.isnot(None),
                Ticket.sla_due_at.isnot(None),
                Ticket.status.notin_([TicketStatus.resolved, TicketStatus.closed]),
                Ticket.sla_status != SlaStatus.completed,
                Ticket.number > last_number,
            )
            .order_by(Ticket.number)
            .limit(EVALUATION_BATCH_SIZE)
        )
        batch = list(result.scalars().all())
        if not batch:
            break
        for ticket in batch:
            if await update_sla_status(db, ticket, rules.get(ticket.sla_rule_id), now):
                changed += 1
        await db.commit()
        last_number = batch[-1].number
    return changed


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------


def _average_seconds(pairs: Iterable[tuple[datetime | None, datetime | None]]) -> float | None:
    durations = [(end - start).total_seconds() for start, end in pairs if start and end]
    if not durations:
        return None
    return sum(durations) / len(durations)


def _metric_filters(
    query,
    team_id: uuid.UUID | None,
    priority: str | None,
    date_from: datetime | None,
    date_to: datetime | None,
):
    query = query.where(Ticket.is_deleted == False)
    if team_id is not None:
        query = query.where(Ticket.owning_team_id == team_id)
    if priority is not None:
        query = query.where(Ticket.priority == priority)
    if date_from is not None:
        query = query.where(Ticket.created_at >= date_from)
    if date_to is not None:
        query = query.where(Ticket.created_at <= date_to)
    return query


async def get_mtta(
    db: AsyncSession,
    team_id: uuid.UUID | None = None,
    priority: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
) -> float | None:
    """Mean Time To Assign: avg(assigned_at - created_at) in seconds."""
    query = _metric_filters(
        select(Ticket.created_at, Ticket.assigned_at).where(Ticket.assigned_at.isnot(None)),
        team_id, priority, date_from, date_to,
    )
    result = await db.execute(query)
    return _average_seconds(result.all())


async def get_mttr(
    db: AsyncSession,
    team_id: uuid.UUID | None = None,
    priority: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
) -> float | None:
    """Mean Time To Resolve: avg(resolved_at - created_at) in seconds."""
    query = _metric_filters(
        select(Ticket.created_at, Ticket.resolved_at).where(Ticket.resolved_at.isnot(None)),
        team_id, priority, date_from, date_to,
    )
    result = await db.execute(query)
    return _average_seconds(result.all())


async def get_compliance(
    db: AsyncSession,
    team_id: uuid.UUID | None = None,
    priority: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
) -> tuple[int, float | None]:
    """Return (breached count, percentage of finished SLA tickets never breached)."""
    query = _metric_filters(
        select(Ticket.sla_status, Ticket.sla_breached_at).where(
            Ticket.sla_status.in_([SlaStatus.completed, SlaStatus.breached])
        ),
        team_id, priority, date_from, date_to,
    )
    rows = (await db.execute(query)).all()
    breached = sum(1 for _, breached_at in rows if breached_at is not None)
    if not rows:
        return breached, None
    return breached, round((len(rows) - breached) / len(rows) * 100, 1)
