import uuid

import pytest
from httpx import AsyncClient

from helpdesk.models.contact import Contact
from helpdesk.models.team import Team
from helpdesk.services import import_service
from helpdesk.tasks.queue import task_queue
from tests.conftest import auth_header


pytestmark = pytest.mark.asyncio


async def _upload(
    client: AsyncClient, token: str, content: str, entity_type: str,
    mode: str = "insert_if_not_exists", filename: str = "data.csv", is_dry_run: bool = False,
):
    return await client.post(
        "/api/v1/imports/",
        files={"file": (filename, content.encode("utf-8"), "text/csv")},
        data={"entity_type": entity_type, "mode": mode, "is_dry_run": str(is_dry_run).lower()},
        headers=auth_header(token),
    )


async def _import(client, token, session_factory, content, entity_type, **kwargs) -> dict:
    response = await _upload(client, token, content, entity_type, **kwargs)
    assert response.status_code == 202
    job_id = response.json()["id"]

    await import_service.run_import_job(uuid.UUID(job_id), session_factory)

    response = await client.get(f"/api/v1/imports/{job_id}", headers=auth_header(token))
    assert response.status_code == 200
    return response.json()


# ---------------------------------------------------------------------------
# Upload
# ---------------------------------------------------------------------------


async def test_upload_queues_job(client: AsyncClient, admin_token: str):
    pending = task_queue.pending
    response = await _upload(client, admin_token, "FirstName\nAda\n", "contacts")
    assert response.status_code == 202

    data = response.json()
    assert data["status"] == "queued"
    assert data["original_filename"] == "data.csv"
    assert task_queue.pending == pending + 1


async def test_upload_rejects_non_csv(client: AsyncClient, admin_token: str):
    response = await _upload(client, admin_token, "FirstName\nAda\n", "contacts", filename="data.xlsx")
    assert response.status_code == 400


async def test_upload_requires_permission(client: AsyncClient, agent_token: str):
    response = await _upload(client, agent_token, "FirstName\nAda\n", "contacts")
    assert response.status_code == 403


# ---------------------------------------------------------------------------
# Contacts
# ---------------------------------------------------------------------------


async def test_import_contacts_with_errors(client: AsyncClient, admin_token: str, session_factory):
    content = (
        "FirstName,LastName,Email,PhoneNumbers\n"
        "Ada,Lovelace,ada@example.com,(555) 123-4567;555-123-4567\n"
        ",Nameless,nameless@example.com,\n"
        "Bob,Broken,not-an-email,\n"
    )
    job = await _import(client, admin_token, session_factory, content, "contacts")
    assert job["status"] == "completed"
    assert job["total_rows"] == 3
    assert job["rows_inserted"] == 1
    assert job["rows_with_errors"] == 2
    assert job["has_error_file"] is True

    response = await client.get("/api/v1/contacts/?search=Lovelace", headers=auth_header(admin_token))
    contact = response.json()["items"][0]
    assert contact["phone_numbers"] == ["+15551234567"]

    response = await client.get(f"/api/v1/imports/{job['id']}/errors", headers=auth_header(admin_token))
    assert response.status_code == 200
    lines = response.text.strip().splitlines()
    assert lines[0] == "FirstName,LastName,Email,PhoneNumbers,Error"
    assert "Missing required field: FirstName" in lines[1]
    assert "Invalid email: not-an-email" in lines[2]


async def test_import_contacts_update_existing_only(
    client: AsyncClient, admin_token: str, session_factory, contact: Contact
):
    content = (
        "Id,LastName,Email,Address\n"
        f"{contact.id},Doe,,[NULL]\n"
        f"{uuid.uuid4()},Ghost,,\n"
    )
    job = await _import(
        client, admin_token, session_factory, content, "contacts", mode="update_existing_only"
    )
    assert job["rows_updated"] == 1
    assert job["rows_skipped"] == 1
    assert job["rows_inserted"] == 0

    response = await client.get(f"/api/v1/contacts/{contact.id}", headers=auth_header(admin_token))
    data = response.json()
    assert data["last_name"] == "Doe"
    assert data["email"] == "jane@example.com"
    assert data["address"] is None


async def test_import_duplicate_ids_are_row_errors(
    client: AsyncClient, admin_token: str, session_factory, contact: Contact
):
    content = f"Id,FirstName\n{contact.id},Janet\n{contact.id},Janine\n"
    job = await _import(client, admin_token, session_factory, content, "contacts", mode="upsert")
    assert job["rows_updated"] == 1
    assert job["rows_with_errors"] == 1


async def test_import_missing_required_column_fails_job(
    client: AsyncClient, admin_token: str, session_factory
):
    job = await _import(client, admin_token, session_factory, "Description\nNo title here\n", "tickets")
    assert job["status"] == "failed"
    assert job["error_message"] == "Missing required column(s): Title"


# ---------------------------------------------------------------------------
# Tickets
# ---------------------------------------------------------------------------


async def test_import_tickets(
    client: AsyncClient, admin_token: str, session_factory, test_team: Team, agent_user
):
    content = (
        "Id,Title,Status,Priority,OwningTeam,Assignee,Tags\n"
        ",Printer jam,open,high,service desk,testagent,hardware;printer\n"
        "HD-5000000,Old outage,closed,,,,\n"
        ",Lost ticket,open,,Nowhere,,\n"
        ",Bad status,stuck,,,,\n"
    )
    job = await _import(client, admin_token, session_factory, content, "tickets")
    assert job["status"] == "completed"
    assert job["rows_inserted"] == 2
    assert job["rows_with_errors"] == 2

    response = await client.get("/api/v1/tickets/by-number/1000000", headers=auth_header(admin_token))
    assert response.status_code == 200
    ticket = response.json()
    assert ticket["title"] == "Printer jam"
    assert ticket["priority"] == "high"
    assert ticket["owning_team_id"] == str(test_team.id)
    assert ticket["assignee_id"] == str(agent_user.id)
    assert ticket["tags"] == ["hardware", "printer"]
    assert [a["action"] for a in ticket["audit_log"]] == ["created"]

    response = await client.get("/api/v1/tickets/by-number/5000000", headers=auth_header(admin_token))
    closed = response.json()
    assert closed["status"] == "closed"
    assert closed["resolved_at"] is not None
    assert closed["closed_at"] is not None

    response = await client.get(f"/api/v1/imports/{job['id']}/errors", headers=auth_header(admin_token))
    assert "Unknown team: Nowhere" in response.text
    assert "Invalid Status: stuck" in response.text


async def test_import_tickets_dry_run(client: AsyncClient, admin_token: str, session_factory):
    job = await _import(
        client, admin_token, session_factory, "Title\nFirst\nSecond\n", "tickets", is_dry_run=True
    )
    assert job["status"] == "completed"
    assert job["progress_stage"] == "Dry run completed"
    assert job["rows_inserted"] == 2

    response = await client.get("/api/v1/tickets/", headers=auth_header(admin_token))
    assert response.json()["total"] == 0


async def test_import_updates_ticket_by_number(client: AsyncClient, admin_token: str, session_factory):
    response = await client.post(
        "/api/v1/tickets/", json={"title": "Slow laptop"}, headers=auth_header(admin_token)
    )
    number = response.json()["number"]

    content = f"Id,Title,Priority\nHD-{number},Very slow laptop,urgent\n"
    job = await _import(client, admin_token, session_factory, content, "tickets", mode="upsert")
    assert job["rows_updated"] == 1

    response = await client.get(f"/api/v1/tickets/by-number/{number}", headers=auth_header(admin_token))
    data = response.json()
    assert data["title"] == "Very slow laptop"
    assert data["priority"] == "urgent"
    assert "updated" in [a["action"] for a in data["audit_log"]]


async def test_list_imports(client: AsyncClient, admin_token: str):
    await _upload(client, admin_token, "FirstName\nAda\n", "contacts")
    await _upload(client, admin_token, "Title\nHello\n", "tickets")

    response = await client.get("/api/v1/imports/?entity_type=tickets", headers=auth_header(admin_token))
    assert response.status_code == 200
    assert response.json()["total"] == 1
