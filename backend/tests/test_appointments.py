from datetime import date, datetime, timedelta, timezone

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from helpdesk.models.base import NotificationEventType
from helpdesk.models.notification import Notification
from helpdesk.services import appointment_service
from tests.conftest import auth_header, make_user, token_for


pytestmark = pytest.mark.asyncio


def _in(**delta) -> datetime:
    return datetime.now(timezone.utc).replace(second=0, microsecond=0) + timedelta(**delta)


def _parse(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


async def _add_staff(client: AsyncClient, admin_token: str, user, **extra) -> dict:
    response = await client.post(
        "/api/v1/scheduler-admin/staff",
        json={"user_id": str(user.id), **extra},
        headers=auth_header(admin_token),
    )
    assert response.status_code == 201
    return response.json()


async def _add_type(client: AsyncClient, admin_token: str, staff_ids, mode="either", **extra) -> dict:
    response = await client.post(
        "/api/v1/scheduler-admin/appointment-types",
        json={
            "name": f"Consultation ({mode})",
            "mode": mode,
            "eligible_staff_ids": [str(s) for s in staff_ids],
            **extra,
        },
        headers=auth_header(admin_token),
    )
    assert response.status_code == 201
    return response.json()


@pytest.fixture
async def booking_setup(client: AsyncClient, admin_token: str, agent_user):
    staff = await _add_staff(
        client, admin_token, agent_user, default_meeting_link="https://meet.example.com/agent"
    )
    appointment_type = await _add_type(client, admin_token, [staff["id"]])
    return staff, appointment_type


def _payload(contact, staff, appointment_type, start: datetime, **extra) -> dict:
    return {
        "contact_id": str(contact.id),
        "appointment_type_id": appointment_type["id"],
        "staff_member_id": staff["id"],
        "mode": "in_person",
        "scheduled_start_time": start.isoformat(),
        **extra,
    }


async def _book(client, token, contact, staff, appointment_type, start, **extra):
    return await client.post(
        "/api/v1/scheduler/appointments",
        json=_payload(contact, staff, appointment_type, start, **extra),
        headers=auth_header(token),
    )


# ---------------------------------------------------------------------------
# Booking
# ---------------------------------------------------------------------------


async def test_create_appointment(client: AsyncClient, agent_token: str, contact, booking_setup):
    staff, appointment_type = booking_setup
    start = _in(days=3)

    response = await _book(client, agent_token, contact, staff, appointment_type, start)
    assert response.status_code == 201

    data = response.json()
    assert data["code"] == "APT-0001"
    assert data["status"] == "scheduled"
    assert data["mode"] == "in_person"
    assert data["duration_minutes"] == 30
    assert data["contact_first_name"] == "Jane"
    assert data["contact_email"] == "jane@example.com"
    assert _parse(data["scheduled_end_time"]) - _parse(data["scheduled_start_time"]) == timedelta(minutes=30)

    response = await _book(client, agent_token, contact, staff, appointment_type, _in(days=4))
    assert response.json()["code"] == "APT-0002"


async def test_create_appointment_conflict(client: AsyncClient, agent_token: str, contact, booking_setup):
    staff, appointment_type = booking_setup
    start = _in(days=3)
    response = await _book(client, agent_token, contact, staff, appointment_type, start)
    assert response.status_code == 201

    response = await _book(client, agent_token, contact, staff, appointment_type, start + timedelta(minutes=15))
    assert response.status_code == 400


async def test_create_appointment_in_the_past(client: AsyncClient, agent_token: str, contact, booking_setup):
    staff, appointment_type = booking_setup
    response = await _book(client, agent_token, contact, staff, appointment_type, _in(hours=-1))
    assert response.status_code == 422
    assert response.json()["detail"][0]["loc"] == ["body", "scheduled_start_time"]


async def test_create_appointment_ineligible_staff(
    client: AsyncClient, db, admin_token: str, contact, booking_setup
):
    _, appointment_type = booking_setup
    other = await make_user(db, "outsider")
    other_staff = await _add_staff(client, admin_token, other)

    response = await _book(client, admin_token, contact, other_staff, appointment_type, _in(days=3))
    assert response.status_code == 422
    assert response.json()["detail"][0]["loc"] == ["body", "staff_member_id"]


async def test_create_appointment_mode_rules(
    client: AsyncClient, admin_token: str, agent_token: str, contact, booking_setup
):
    staff, either_type = booking_setup
    virtual_type = await _add_type(client, admin_token, [staff["id"]], mode="virtual")

    response = await _book(client, agent_token, contact, staff, virtual_type, _in(days=3))
    assert response.status_code == 422
    assert response.json()["detail"][0]["loc"] == ["body", "mode"]

    response = await _book(client, agent_token, contact, staff, either_type, _in(days=3), mode="either")
    assert response.status_code == 422


async def test_virtual_appointment_uses_default_link(
    client: AsyncClient, agent_token: str, contact, booking_setup
):
    staff, appointment_type = booking_setup
    response = await _book(client, agent_token, contact, staff, appointment_type, _in(days=3), mode="virtual")
    assert response.status_code == 201
    assert response.json()["meeting_link"] == "https://meet.example.com/agent"


async def test_virtual_appointment_requires_link(
    client: AsyncClient, db, admin_token: str, contact
):
    user = await make_user(db, "nolink")
    staff = await _add_staff(client, admin_token, user)
    appointment_type = await _add_type(client, admin_token, [staff["id"]], mode="virtual")

    response = await _book(
        client, token_for(user), contact, staff, appointment_type, _in(days=3), mode="virtual"
    )
    assert response.status_code == 422
    assert response.json()["detail"][0]["loc"] == ["body", "meeting_link"]


async def test_non_staff_cannot_use_scheduler(client: AsyncClient, db):
    user = await make_user(db, "bystander")
    response = await client.get("/api/v1/scheduler/staff", headers=auth_header(token_for(user)))
    assert response.status_code == 403


async def test_staff_cannot_book_for_others(
    client: AsyncClient, db, admin_token: str, contact, booking_setup
):
    staff, appointment_type = booking_setup
    user = await make_user(db, "colleague")
    await _add_staff(client, admin_token, user)

    response = await _book(client, token_for(user), contact, staff, appointment_type, _in(days=3))
    assert response.status_code == 403


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


async def _status(client, token, appointment_id, status, **extra):
    return await client.post(
        f"/api/v1/scheduler/appointments/{appointment_id}/status",
        json={"status": status, **extra},
        headers=auth_header(token),
    )


async def test_status_transitions(client: AsyncClient, agent_token: str, contact, booking_setup):
    staff, appointment_type = booking_setup
    appointment = (await _book(client, agent_token, contact, staff, appointment_type, _in(days=3))).json()

    for status in ("confirmed", "in_progress", "completed"):
        response = await _status(client, agent_token, appointment["id"], status)
        assert response.status_code == 200
        assert response.json()["status"] == status

    response = await _status(client, agent_token, appointment["id"], "cancelled")
    assert response.status_code == 400


async def test_cancel_inside_notice_period_needs_override(
    client: AsyncClient, agent_token: str, contact, booking_setup
):
    staff, appointment_type = booking_setup
    appointment = (await _book(client, agent_token, contact, staff, appointment_type, _in(hours=2))).json()

    response = await _status(client, agent_token, appointment["id"], "cancelled", reason="Customer ill")
    assert response.status_code == 400

    response = await _status(
        client, agent_token, appointment["id"], "cancelled",
        reason="Customer ill", notice_override_reason="Manager approved",
    )
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "cancelled"
    assert data["cancellation_reason"] == "Customer ill"
    assert data["cancellation_notice_override_reason"] == "Manager approved"


async def test_cancel_outside_notice_period(client: AsyncClient, agent_token: str, contact, booking_setup):
    staff, appointment_type = booking_setup
    appointment = (await _book(client, agent_token, contact, staff, appointment_type, _in(days=3))).json()

    response = await _status(client, agent_token, appointment["id"], "cancelled")
    assert response.status_code == 200

    # Cancelled appointments free the slot
    response = await _book(
        client, agent_token, contact, staff, appointment_type, _parse(appointment["scheduled_start_time"])
    )
    assert response.status_code == 201


async def test_reschedule_and_history(client: AsyncClient, agent_token: str, contact, booking_setup):
    staff, appointment_type = booking_setup
    appointment = (await _book(client, agent_token, contact, staff, appointment_type, _in(days=3))).json()

    new_start = _in(days=5)
    response = await client.post(
        f"/api/v1/scheduler/appointments/{appointment['id']}/reschedule",
        json={"scheduled_start_time": new_start.isoformat(), "duration_minutes": 60},
        headers=auth_header(agent_token),
    )
    assert response.status_code == 200
    assert _parse(response.json()["scheduled_start_time"]) == new_start
    assert response.json()["duration_minutes"] == 60

    response = await client.get(
        f"/api/v1/scheduler/appointments/{appointment['id']}/history", headers=auth_header(agent_token)
    )
    assert [h["action"] for h in response.json()] == ["created", "rescheduled"]


async def test_reschedule_inside_notice_period_needs_override(
    client: AsyncClient, agent_token: str, contact, booking_setup
):
    staff, appointment_type = booking_setup
    appointment = (await _book(client, agent_token, contact, staff, appointment_type, _in(hours=3))).json()

    url = f"/api/v1/scheduler/appointments/{appointment['id']}/reschedule"
    payload = {"scheduled_start_time": _in(days=2).isoformat()}
    response = await client.post(url, json=payload, headers=auth_header(agent_token))
    assert response.status_code == 400

    payload["notice_override_reason"] = "Staff emergency"
    response = await client.post(url, json=payload, headers=auth_header(agent_token))
    assert response.status_code == 200


async def test_mark_no_show(client: AsyncClient, agent_token: str, contact, booking_setup):
    staff, appointment_type = booking_setup
    appointment = (await _book(client, agent_token, contact, staff, appointment_type, _in(days=1))).json()

    url = f"/api/v1/scheduler/appointments/{appointment['id']}/no-show"
    response = await client.post(url, headers=auth_header(agent_token))
    assert response.status_code == 200
    assert response.json()["status"] == "no_show"

    response = await client.post(url, headers=auth_header(agent_token))
    assert response.status_code == 400


# ---------------------------------------------------------------------------
# Availability and block-outs
# ---------------------------------------------------------------------------


def _next_monday() -> date:
    today = datetime.now(timezone.utc).date()
    days = (7 - today.weekday()) % 7 or 7
    return today + timedelta(days=days)


async def test_block_out_hides_slots(client: AsyncClient, agent_token: str, booking_setup):
    staff, appointment_type = booking_setup
    monday = _next_monday()
    params = {"staff_member_id": staff["id"], "date": monday.isoformat()}

    response = await client.get("/api/v1/scheduler/availability", params=params, headers=auth_header(agent_token))
    assert response.status_code == 200
    data = response.json()
    assert data["duration_minutes"] == 30
    assert data["buffer_minutes"] == 15
    assert _parse(data["slots"][0]["start"]).hour == 9

    morning = datetime.combine(monday, datetime.min.time(), tzinfo=timezone.utc)
    response = await client.post(
        f"/api/v1/scheduler/staff/{staff['id']}/block-outs",
        json={
            "title": "Training",
            "start_time_utc": (morning + timedelta(hours=9)).isoformat(),
            "end_time_utc": (morning + timedelta(hours=12)).isoformat(),
        },
        headers=auth_header(agent_token),
    )
    assert response.status_code == 201
    block_out_id = response.json()["id"]

    response = await client.get("/api/v1/scheduler/availability", params=params, headers=auth_header(agent_token))
    assert _parse(response.json()["slots"][0]["start"]).hour == 12

    response = await client.delete(
        f"/api/v1/scheduler/block-outs/{block_out_id}", headers=auth_header(agent_token)
    )
    assert response.status_code == 204


async def test_block_out_must_end_after_start(client: AsyncClient, agent_token: str, booking_setup):
    staff, _ = booking_setup
    start = _in(days=2)
    response = await client.post(
        f"/api/v1/scheduler/staff/{staff['id']}/block-outs",
        json={
            "title": "Backwards",
            "start_time_utc": start.isoformat(),
            "end_time_utc": (start - timedelta(hours=1)).isoformat(),
        },
        headers=auth_header(agent_token),
    )
    assert response.status_code == 422


# ---------------------------------------------------------------------------
# Reminders
# ---------------------------------------------------------------------------


async def test_send_due_reminders(
    client: AsyncClient, db, agent_user, agent_token: str, contact, booking_setup
):
    staff, appointment_type = booking_setup
    await _book(client, agent_token, contact, staff, appointment_type, _in(minutes=30))
    await _book(client, agent_token, contact, staff, appointment_type, _in(days=2))

    assert await appointment_service.send_due_reminders(db) == 1
    assert await appointment_service.send_due_reminders(db) == 0

    result = await db.execute(
        select(Notification).where(Notification.recipient_user_id == agent_user.id)
    )
    notifications = result.scalars().all()
    assert len(notifications) == 1
    assert notifications[0].event_type == NotificationEventType.appointment_reminder
    assert notifications[0].title == "Upcoming appointment APT-0001"
