import uuid
from datetime import datetime, timedelta, timezone

from httpx import AsyncClient

from helpdesk.models.base import SlaStatus, TicketPriority, TicketStatus
from helpdesk.models.role import SystemPermission
from helpdesk.models.sla_rule import SlaRule
from helpdesk.models.ticket import Ticket
from helpdesk.services import notification_service, sla_service
from tests.conftest import auth_header, make_user


WEEKDAYS = {"workdays": [1, 2, 3, 4, 5], "start_time": "08:00", "end_time": "18:00", "holidays": []}


def _rule(name: str, minutes: int, conditions: dict | None = None, sort_order: int = 0, **kwargs) -> SlaRule:
    return SlaRule(
        id=uuid.uuid4(),
        name=name,
        conditions=conditions or {},
        target_resolution_minutes=minutes,
        business_hours_enabled=kwargs.pop("business_hours_enabled", False),
        is_active=kwargs.pop("is_active", True),
        sort_order=sort_order,
        **kwargs,
    )


def _ticket(**kwargs) -> Ticket:
    defaults = {
        "number": 1_000_000,
        "title": "Ticket",
        "status": TicketStatus.open,
        "priority": TicketPriority.normal,
        "created_at": datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc),
    }
    defaults.update(kwargs)
    return Ticket(**defaults)


# ---------------------------------------------------------------------------
# Rule matching
# ---------------------------------------------------------------------------


def test_empty_conditions_match_everything():
    assert sla_service.matches_conditions(_ticket(), {})
    assert sla_service.matches_conditions(_ticket(), None)


def test_conditions_are_case_insensitive():
    ticket = _ticket(priority=TicketPriority.urgent, category="Network")
    assert sla_service.matches_conditions(ticket, {"Priority": "URGENT", "category": "network"})
    assert not sla_service.matches_conditions(ticket, {"priority": "low"})


def test_team_condition_ignores_invalid_uuid():
    team_id = uuid.uuid4()
    ticket = _ticket(owning_team_id=team_id)
    assert sla_service.matches_conditions(ticket, {"owning_team_id": str(team_id)})
    assert not sla_service.matches_conditions(ticket, {"owning_team_id": str(uuid.uuid4())})
    assert sla_service.matches_conditions(ticket, {"owning_team_id": "not-a-uuid"})


def test_first_active_rule_by_sort_order_wins():
    ticket = _ticket(priority=TicketPriority.urgent)
    fallback = _rule("Default", 1440, sort_order=3)
    inactive = _rule("Disabled", 10, {"priority": "urgent"}, sort_order=1, is_active=False)
    urgent = _rule("Urgent", 240, {"priority": "urgent"}, sort_order=2)

    rule = sla_service.assign_sla(ticket, [fallback, inactive, urgent])
    assert rule is urgent
    assert ticket.sla_rule_id == urgent.id
    assert ticket.sla_status == SlaStatus.on_track
    assert ticket.sla_due_at == ticket.created_at + timedelta(minutes=240)


def test_no_matching_rule_clears_sla():
    ticket = _ticket(sla_status=SlaStatus.breached, sla_due_at=datetime.now(timezone.utc))
    assert sla_service.assign_sla(ticket, [_rule("High", 60, {"priority": "high"})]) is None
    assert ticket.sla_rule_id is None
    assert ticket.sla_due_at is None
    assert ticket.sla_status is None


# ---------------------------------------------------------------------------
# Business hours
# ---------------------------------------------------------------------------


def test_business_hours_rolls_into_next_day():
    # Monday 17:00, one hour left in the day
    start = datetime(2024, 1, 1, 17, 0, tzinfo=timezone.utc)
    due = sla_service.business_hours_due_date(start, 120, WEEKDAYS)
    assert due == datetime(2024, 1, 2, 9, 0, tzinfo=timezone.utc)


def test_business_hours_skips_weekend():
    # Friday 17:30
    start = datetime(2024, 1, 5, 17, 30, tzinfo=timezone.utc)
    due = sla_service.business_hours_due_date(start, 60, WEEKDAYS)
    assert due == datetime(2024, 1, 8, 8, 30, tzinfo=timezone.utc)


def test_business_hours_skips_holidays():
    config = {**WEEKDAYS, "holidays": ["2024-01-02"]}
    start = datetime(2024, 1, 1, 17, 0, tzinfo=timezone.utc)
    due = sla_service.business_hours_due_date(start, 120, config)
    assert due == datetime(2024, 1, 3, 9, 0, tzinfo=timezone.utc)


def test_business_hours_before_opening():
    start = datetime(2024, 1, 1, 6, 0, tzinfo=timezone.utc)
    due = sla_service.business_hours_due_date(start, 30, WEEKDAYS)
    assert due == datetime(2024, 1, 1, 8, 30, tzinfo=timezone.utc)


def test_calculate_due_date_without_config_is_plain():
    rule = _rule("Plain", 90, business_hours_enabled=True)
    start = datetime(2024, 1, 6, 12, 0, tzinfo=timezone.utc)
    assert sla_service.calculate_due_date(start, rule) == start + timedelta(minutes=90)


# ---------------------------------------------------------------------------
# Status evaluation
# ---------------------------------------------------------------------------


def _tracked(created_ago: int, minutes: int = 100) -> tuple[Ticket, SlaRule, datetime]:
    now = datetime.now(timezone.utc)
    rule = _rule("Tracked", minutes)
    created = now - timedelta(minutes=created_ago)
    ticket = _ticket(
        created_at=created,
        sla_rule_id=rule.id,
        sla_due_at=created + timedelta(minutes=minutes),
        sla_status=SlaStatus.on_track,
    )
    return ticket, rule, now


def test_evaluate_on_track():
    ticket, rule, now = _tracked(created_ago=10)
    assert sla_service.evaluate_sla_status(ticket, rule, now) is False
    assert ticket.sla_status == SlaStatus.on_track


def test_evaluate_approaching_breach():
    ticket, rule, now = _tracked(created_ago=80)
    assert sla_service.evaluate_sla_status(ticket, rule, now) is True
    assert ticket.sla_status == SlaStatus.approaching_breach


def test_evaluate_breached_records_time():
    ticket, rule, now = _tracked(created_ago=120)
    assert sla_service.evaluate_sla_status(ticket, rule, now) is True
    assert ticket.sla_status == SlaStatus.breached
    assert ticket.sla_breached_at == now


def test_evaluate_resolved_is_completed():
    ticket, rule, now = _tracked(created_ago=120)
    ticket.status = TicketStatus.resolved
    sla_service.evaluate_sla_status(ticket, rule, now)
    assert ticket.sla_status == SlaStatus.completed


# ---------------------------------------------------------------------------
# SLA rule API
# ---------------------------------------------------------------------------


async def test_create_rule_appends_sort_order(client: AsyncClient, admin_token: str):
    first = await client.post(
        "/api/v1/sla-rules/",
        json={"name": "Urgent", "conditions": {"priority": "urgent"}, "target_resolution_minutes": 240},
        headers=auth_header(admin_token),
    )
    assert first.status_code == 201
    second = await client.post(
        "/api/v1/sla-rules/",
        json={"name": "Default", "target_resolution_minutes": 1440},
        headers=auth_header(admin_token),
    )
    assert second.status_code == 201
    assert second.json()["sort_order"] > first.json()["sort_order"]


async def test_create_rule_rejects_inverted_business_hours(client: AsyncClient, admin_token: str):
    response = await client.post(
        "/api/v1/sla-rules/",
        json={
            "name": "Backwards",
            "target_resolution_minutes": 60,
            "business_hours_enabled": True,
            "business_hours_config": {"start_time": "18:00", "end_time": "08:00"},
        },
        headers=auth_header(admin_token),
    )
    assert response.status_code == 422


async def test_rule_changes_need_settings_permission(client: AsyncClient, agent_token: str):
    response = await client.post(
        "/api/v1/sla-rules/",
        json={"name": "Sneaky", "target_resolution_minutes": 60},
        headers=auth_header(agent_token),
    )
    assert response.status_code == 403


async def test_reorder_rules(client: AsyncClient, admin_token: str):
    ids = []
    for name in ("A", "B", "C"):
        response = await client.post(
            "/api/v1/sla-rules/",
            json={"name": name, "target_resolution_minutes": 60},
            headers=auth_header(admin_token),
        )
        ids.append(response.json()["id"])

    response = await client.put(
        "/api/v1/sla-rules/reorder",
        json={"rule_ids": [ids[2], ids[0], ids[1]]},
        headers=auth_header(admin_token),
    )
    assert response.status_code == 200
    assert [r["name"] for r in response.json()] == ["C", "A", "B"]


async def test_ticket_gets_matching_sla(client: AsyncClient, admin_token: str):
    await client.post(
        "/api/v1/sla-rules/",
        json={"name": "Urgent", "conditions": {"priority": "urgent"}, "target_resolution_minutes": 240},
        headers=auth_header(admin_token),
    )
    response = await client.post(
        "/api/v1/tickets/",
        json={"title": "Server down", "priority": "urgent"},
        headers=auth_header(admin_token),
    )
    data = response.json()
    assert data["sla_rule_name"] == "Urgent"
    assert data["sla_status"] == "on_track"
    created = datetime.fromisoformat(data["created_at"])
    due = datetime.fromisoformat(data["sla_due_at"])
    assert due - created == timedelta(minutes=240)


async def test_refresh_sla_after_rule_added(client: AsyncClient, admin_token: str):
    response = await client.post(
        "/api/v1/tickets/",
        json={"title": "Slow laptop"},
        headers=auth_header(admin_token),
    )
    ticket_id = response.json()["id"]
    assert response.json()["sla_rule_id"] is None

    await client.post(
        "/api/v1/sla-rules/",
        json={"name": "Default", "target_resolution_minutes": 1440},
        headers=auth_header(admin_token),
    )
    response = await client.post(
        f"/api/v1/tickets/{ticket_id}/refresh-sla", headers=auth_header(admin_token)
    )
    assert response.status_code == 200
    assert response.json()["sla_rule_name"] == "Default"


async def test_extend_sla_resets_breach(client: AsyncClient, db, admin_token: str):
    await client.post(
        "/api/v1/sla-rules/",
        json={"name": "Default", "target_resolution_minutes": 60},
        headers=auth_header(admin_token),
    )
    response = await client.post(
        "/api/v1/tickets/", json={"title": "Outage"}, headers=auth_header(admin_token)
    )
    ticket_id = response.json()["id"]

    ticket = await db.get(Ticket, uuid.UUID(ticket_id))
    ticket.sla_due_at = datetime.now(timezone.utc) - timedelta(minutes=5)
    ticket.sla_status = SlaStatus.breached
    ticket.sla_breached_at = datetime.now(timezone.utc)
    await db.commit()

    response = await client.post(
        f"/api/v1/tickets/{ticket_id}/extend-sla",
        json={"minutes": 120},
        headers=auth_header(admin_token),
    )
    assert response.status_code == 200
    data = response.json()
    assert data["sla_status"] == "on_track"
    assert data["sla_breached_at"] is None


async def test_extend_sla_on_closed_ticket(client: AsyncClient, admin_token: str):
    response = await client.post(
        "/api/v1/tickets/", json={"title": "Done"}, headers=auth_header(admin_token)
    )
    ticket_id = response.json()["id"]
    await client.post(f"/api/v1/tickets/{ticket_id}/close", headers=auth_header(admin_token))

    response = await client.post(
        f"/api/v1/tickets/{ticket_id}/extend-sla",
        json={"minutes": 30},
        headers=auth_header(admin_token),
    )
    assert response.status_code == 400


async def test_evaluate_open_tickets_notifies_assignee(db, admin_user):
    agent = await make_user(db, "oncall", permissions=SystemPermission.manage_tickets)
    rule = SlaRule(name="Fast", conditions={}, target_resolution_minutes=60, is_active=True, sort_order=1)
    db.add(rule)
    await db.flush()
    created = datetime.now(timezone.utc) - timedelta(hours=2)
    ticket = Ticket(
        number=1_000_000,
        title="Late",
        status=TicketStatus.open,
        priority=TicketPriority.normal,
        assignee_id=agent.id,
        created_at=created,
        sla_rule_id=rule.id,
        sla_due_at=created + timedelta(minutes=60),
        sla_status=SlaStatus.on_track,
    )
    db.add(ticket)
    await db.commit()

    changed = await sla_service.evaluate_open_tickets(db)
    assert changed == 1
    assert ticket.sla_status == SlaStatus.breached

    notifications, total = await notification_service.list_notifications(db, agent.id)
    assert total == 1
    assert notifications[0].event_type.value == "sla_breached"


async def _assigned_ticket(client: AsyncClient, admin_token: str, team, assignee, title: str) -> str:
    response = await client.post(
        "/api/v1/tickets/",
        json={"title": title, "owning_team_id": str(team.id), "assignee_id": str(assignee.id)},
        headers=auth_header(admin_token),
    )
    assert response.status_code == 201
    return response.json()["id"]


async def test_extend_sla_count_is_limited_without_manage_tickets(
    client: AsyncClient, admin_token: str, agent_user, agent_token: str, test_team, agent_in_team
):
    ticket_id = await _assigned_ticket(client, admin_token, test_team, agent_user, "Slow laptop")
    url = f"/api/v1/tickets/{ticket_id}/extend-sla"

    for expected in (1, 2, 3):
        response = await client.post(url, json={"minutes": 60}, headers=auth_header(agent_token))
        assert response.status_code == 200
        assert response.json()["sla_extension_count"] == expected

    response = await client.post(url, json={"minutes": 60}, headers=auth_header(agent_token))
    assert response.status_code == 403
    assert response.json()["detail"] == "Maximum extensions (3) reached. Contact a manager to extend further."

    # Managers are not limited
    response = await client.post(url, json={"minutes": 72 * 60}, headers=auth_header(admin_token))
    assert response.status_code == 200
    assert response.json()["sla_extension_count"] == 4


async def test_extend_sla_hours_are_limited_without_manage_tickets(
    client: AsyncClient, admin_token: str, agent_user, agent_token: str, test_team, agent_in_team
):
    ticket_id = await _assigned_ticket(client, admin_token, test_team, agent_user, "Broken dock")
    url = f"/api/v1/tickets/{ticket_id}/extend-sla"

    response = await client.post(url, json={"minutes": 49 * 60}, headers=auth_header(agent_token))
    assert response.status_code == 400
    assert response.json()["detail"] == "Extension cannot exceed 48 hours. You requested 49 hours."

    response = await client.post(url, json={"minutes": 48 * 60}, headers=auth_header(agent_token))
    assert response.status_code == 200
    assert response.json()["sla_extension_count"] == 1
