import pytest
from httpx import AsyncClient

from helpdesk.models.contact import Contact
from helpdesk.models.team import Team, TeamMembership
from helpdesk.models.user import User
from helpdesk.services import attachment_service
from tests.conftest import auth_header


pytestmark = pytest.mark.asyncio


# ---------------------------------------------------------------------------
# Helper
# ---------------------------------------------------------------------------


def _ticket_payload(**overrides) -> dict:
    """Build a minimal valid ticket creation payload."""
    base = {
        "title": "Test ticket",
        "description": "desc",
        "priority": "normal",
    }
    base.update(overrides)
    return base


async def _create(client: AsyncClient, token: str, **overrides) -> dict:
    response = await client.post(
        "/api/v1/tickets/",
        json=_ticket_payload(**overrides),
        headers=auth_header(token),
    )
    assert response.status_code == 201
    return response.json()


@pytest.fixture
def sniff_as_text(monkeypatch):
    """Skip libmagic and report every upload as plain text."""
    monkeypatch.setattr(attachment_service, "detect_content_type", lambda content: "text/plain")


# ---------------------------------------------------------------------------
# Ticket CRUD
# ---------------------------------------------------------------------------


async def test_create_ticket(client: AsyncClient, admin_token: str):
    """POST /api/v1/tickets/ creates a ticket and returns 201 with a ticket number."""
    response = await client.post(
        "/api/v1/tickets/",
        json=_ticket_payload(title="Test ticket", description="Test description"),
        headers=auth_header(admin_token),
    )
    assert response.status_code == 201

    data = response.json()
    assert data["number"] == 1_000_000
    assert data["ticket_number"] == "HD-1000000"
    assert data["title"] == "Test ticket"
    assert data["status"] == "open"
    assert data["priority"] == "normal"
    assert data["created_by_name"] == "Testadmin Tester"


async def test_ticket_numbers_increase(client: AsyncClient, admin_token: str):
    first = await _create(client, admin_token, title="First")
    second = await _create(client, admin_token, title="Second")
    assert second["number"] == first["number"] + 1


async def test_create_ticket_with_custom_number(client: AsyncClient, admin_token: str):
    data = await _create(client, admin_token, number=2_000_000)
    assert data["ticket_number"] == "HD-2000000"

    response = await client.post(
        "/api/v1/tickets/",
        json=_ticket_payload(number=2_000_000),
        headers=auth_header(admin_token),
    )
    assert response.status_code == 409

    # Generated numbers continue after the highest in use
    assert (await _create(client, admin_token))["number"] == 2_000_001


async def test_create_ticket_sanitizes_description(client: AsyncClient, admin_token: str):
    data = await _create(client, admin_token, description="<p>Hi</p><script>alert(1)</script>")
    assert "<script>" not in data["description"]
    assert "<p>Hi</p>" in data["description"]


async def test_create_ticket_with_contact(client: AsyncClient, admin_token: str, contact: Contact):
    data = await _create(client, admin_token, contact_id=str(contact.id))
    assert data["contact_name"] == "Jane Customer"


async def test_create_ticket_unknown_team_returns_422(client: AsyncClient, admin_token: str):
    response = await client.post(
        "/api/v1/tickets/",
        json=_ticket_payload(owning_team_id="00000000-0000-0000-0000-000000000000"),
        headers=auth_header(admin_token),
    )
    assert response.status_code == 422


async def test_create_ticket_assignee_not_in_team_returns_422(
    client: AsyncClient, admin_token: str, test_team: Team, agent_user: User
):
    response = await client.post(
        "/api/v1/tickets/",
        json=_ticket_payload(owning_team_id=str(test_team.id), assignee_id=str(agent_user.id)),
        headers=auth_header(admin_token),
    )
    assert response.status_code == 422
    assert response.json()["detail"][0]["loc"] == ["body", "assignee_id"]


async def test_create_ticket_round_robin(
    client: AsyncClient, admin_token: str, test_team: Team, agent_in_team: TeamMembership
):
    """A ticket given only a team is assigned to a team member."""
    data = await _create(client, admin_token, owning_team_id=str(test_team.id))
    assert data["owning_team_name"] == "Service Desk"
    assert data["assignee_id"] == str(agent_in_team.user_id)
    assert data["assigned_at"] is not None


async def test_list_tickets_pagination(client: AsyncClient, admin_token: str):
    """Create multiple tickets and verify pagination works."""
    for i in range(3):
        await _create(client, admin_token, title=f"Ticket {i}", priority="low")

    response = await client.get(
        "/api/v1/tickets/?page=1&page_size=2",
        headers=auth_header(admin_token),
    )
    assert response.status_code == 200

    data = response.json()
    assert len(data["items"]) == 2
    assert data["total"] == 3
    assert data["pages"] == 2


async def test_filter_tickets_by_status_and_priority(client: AsyncClient, admin_token: str):
    low = await _create(client, admin_token, title="Low one", priority="low")
    await _create(client, admin_token, title="Urgent one", priority="urgent")
    await client.post(
        f"/api/v1/tickets/{low['id']}/status",
        json={"status": "pending"},
        headers=auth_header(admin_token),
    )

    response = await client.get(
        "/api/v1/tickets/?status=pending,open&priority=low",
        headers=auth_header(admin_token),
    )
    titles = [t["title"] for t in response.json()["items"]]
    assert titles == ["Low one"]


async def test_search_by_ticket_number(client: AsyncClient, admin_token: str):
    first = await _create(client, admin_token, title="Printer")
    await _create(client, admin_token, title="Monitor")

    response = await client.get(
        f"/api/v1/tickets/?search={first['ticket_number']}",
        headers=auth_header(admin_token),
    )
    assert [t["id"] for t in response.json()["items"]] == [first["id"]]

    response = await client.get("/api/v1/tickets/?search=monit", headers=auth_header(admin_token))
    assert [t["title"] for t in response.json()["items"]] == ["Monitor"]


async def test_get_ticket_detail(client: AsyncClient, admin_token: str):
    """GET /api/v1/tickets/{id} returns detail with comments, attachments and audit log."""
    ticket = await _create(client, admin_token)

    response = await client.get(f"/api/v1/tickets/{ticket['id']}", headers=auth_header(admin_token))
    assert response.status_code == 200

    data = response.json()
    assert data["comments"] == []
    assert data["attachments"] == []
    assert data["audit_log"][0]["action"] == "created"
    assert data["audit_log"][0]["ticket_number"] == ticket["ticket_number"]


async def test_get_ticket_by_number(client: AsyncClient, admin_token: str):
    ticket = await _create(client, admin_token)
    response = await client.get(
        f"/api/v1/tickets/by-number/{ticket['number']}", headers=auth_header(admin_token)
    )
    assert response.status_code == 200
    assert response.json()["id"] == ticket["id"]


async def test_get_nonexistent_ticket(client: AsyncClient, admin_token: str):
    response = await client.get(
        "/api/v1/tickets/00000000-0000-0000-0000-000000000000",
        headers=auth_header(admin_token),
    )
    assert response.status_code == 404


async def test_update_ticket_logs_changes(client: AsyncClient, admin_token: str):
    ticket = await _create(client, admin_token)

    response = await client.patch(
        f"/api/v1/tickets/{ticket['id']}",
        json={"title": "Renamed", "priority": "high", "tags": ["vpn"]},
        headers=auth_header(admin_token),
    )
    assert response.status_code == 200
    data = response.json()
    assert data["title"] == "Renamed"
    assert data["priority"] == "high"
    assert data["tags"] == ["vpn"]

    response = await client.get(
        f"/api/v1/tickets/{ticket['id']}/change-log", headers=auth_header(admin_token)
    )
    changes = {e["field_changed"]: e for e in response.json() if e["field_changed"]}
    assert changes["priority"]["old_value"] == "normal"
    assert changes["priority"]["new_value"] == "high"
    assert changes["title"]["new_value"] == "Renamed"


async def test_resolve_ticket_sets_resolved_at(client: AsyncClient, admin_token: str):
    ticket = await _create(client, admin_token)

    response = await client.post(
        f"/api/v1/tickets/{ticket['id']}/status",
        json={"status": "resolved"},
        headers=auth_header(admin_token),
    )
    assert response.status_code == 200
    assert response.json()["resolved_at"] is not None

    response = await client.post(
        f"/api/v1/tickets/{ticket['id']}/status",
        json={"status": "in_progress"},
        headers=auth_header(admin_token),
    )
    assert response.json()["resolved_at"] is None


async def test_close_and_reopen(client: AsyncClient, admin_token: str, admin_user: User):
    ticket = await _create(client, admin_token)

    response = await client.post(f"/api/v1/tickets/{ticket['id']}/close", headers=auth_header(admin_token))
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "closed"
    assert data["closed_at"] is not None
    assert data["closed_by_id"] == str(admin_user.id)

    response = await client.post(f"/api/v1/tickets/{ticket['id']}/reopen", headers=auth_header(admin_token))
    data = response.json()
    assert data["status"] == "open"
    assert data["closed_at"] is None
    assert data["resolved_at"] is None


async def test_soft_delete_ticket(client: AsyncClient, admin_token: str):
    ticket = await _create(client, admin_token)

    response = await client.delete(f"/api/v1/tickets/{ticket['id']}", headers=auth_header(admin_token))
    assert response.status_code == 204

    response = await client.get(f"/api/v1/tickets/{ticket['id']}", headers=auth_header(admin_token))
    assert response.status_code == 404

    # Deleted numbers are never reused
    assert (await _create(client, admin_token))["number"] == ticket["number"] + 1


# ---------------------------------------------------------------------------
# Permissions
# ---------------------------------------------------------------------------


async def test_create_ticket_unauthenticated(client: AsyncClient):
    response = await client.post("/api/v1/tickets/", json=_ticket_payload())
    assert response.status_code == 401


async def test_unrelated_user_cannot_edit(client: AsyncClient, admin_token: str, agent_token: str):
    ticket = await _create(client, admin_token)
    response = await client.patch(
        f"/api/v1/tickets/{ticket['id']}",
        json={"title": "Hijacked"},
        headers=auth_header(agent_token),
    )
    assert response.status_code == 403


async def test_team_member_can_edit(
    client: AsyncClient, admin_token: str, agent_token: str, test_team: Team, agent_in_team
):
    ticket = await _create(client, admin_token, owning_team_id=str(test_team.id))
    response = await client.patch(
        f"/api/v1/tickets/{ticket['id']}",
        json={"title": "Team edit"},
        headers=auth_header(agent_token),
    )
    assert response.status_code == 200


async def test_close_requires_manage_tickets(client: AsyncClient, admin_token: str, agent_token: str, agent_user):
    ticket = await _create(client, admin_token, assignee_id=str(agent_user.id))
    response = await client.post(f"/api/v1/tickets/{ticket['id']}/close", headers=auth_header(agent_token))
    assert response.status_code == 403

    # The assignee may still move it through the workflow
    response = await client.post(
        f"/api/v1/tickets/{ticket['id']}/status",
        json={"status": "resolved"},
        headers=auth_header(agent_token),
    )
    assert response.status_code == 200


# ---------------------------------------------------------------------------
# Assignment
# ---------------------------------------------------------------------------


async def test_assign_to_team_uses_round_robin(
    client: AsyncClient, admin_token: str, test_team: Team, agent_in_team: TeamMembership
):
    ticket = await _create(client, admin_token)
    response = await client.post(
        f"/api/v1/tickets/{ticket['id']}/assign",
        json={"owning_team_id": str(test_team.id)},
        headers=auth_header(admin_token),
    )
    assert response.status_code == 200
    assert response.json()["assignee_id"] == str(agent_in_team.user_id)

    response = await client.get(
        f"/api/v1/tickets/{ticket['id']}/change-log", headers=auth_header(admin_token)
    )
    messages = [e["message"] for e in response.json()]
    assert any("round-robin" in (m or "") for m in messages)


async def test_assign_notifies_assignee(
    client: AsyncClient, admin_token: str, agent_token: str, agent_user: User
):
    ticket = await _create(client, admin_token)
    await client.post(
        f"/api/v1/tickets/{ticket['id']}/assign",
        json={"assignee_id": str(agent_user.id)},
        headers=auth_header(admin_token),
    )

    response = await client.get("/api/v1/notifications/", headers=auth_header(agent_token))
    items = response.json()["items"]
    assert len(items) == 1
    assert items[0]["event_type"] == "ticket_assigned"
    assert items[0]["url"] == f"/tickets/{ticket['number']}"


async def test_assign_requires_manage_tickets(
    client: AsyncClient, admin_token: str, agent_token: str, agent_user: User
):
    ticket = await _create(client, admin_token)
    response = await client.post(
        f"/api/v1/tickets/{ticket['id']}/assign",
        json={"assignee_id": str(agent_user.id)},
        headers=auth_header(agent_token),
    )
    assert response.status_code == 403


# ---------------------------------------------------------------------------
# Comments
# ---------------------------------------------------------------------------


async def test_add_and_list_comments(client: AsyncClient, admin_token: str):
    ticket = await _create(client, admin_token)

    response = await client.post(
        f"/api/v1/tickets/{ticket['id']}/comments",
        json={"content": "Rebooted the router"},
        headers=auth_header(admin_token),
    )
    assert response.status_code == 201
    assert response.json()["author_name"] == "Testadmin Tester"

    await client.post(
        f"/api/v1/tickets/{ticket['id']}/comments",
        json={"content": "Customer is grumpy", "is_internal": True},
        headers=auth_header(admin_token),
    )

    response = await client.get(
        f"/api/v1/tickets/{ticket['id']}/comments", headers=auth_header(admin_token)
    )
    assert len(response.json()) == 2

    response = await client.get(
        f"/api/v1/tickets/{ticket['id']}/comments?include_internal=false",
        headers=auth_header(admin_token),
    )
    assert [c["content"] for c in response.json()] == ["Rebooted the router"]


async def test_comment_notifies_assignee(
    client: AsyncClient, admin_token: str, agent_token: str, agent_user: User
):
    ticket = await _create(client, admin_token, assignee_id=str(agent_user.id))
    await client.post(
        f"/api/v1/tickets/{ticket['id']}/comments",
        json={"content": "Any update?"},
        headers=auth_header(admin_token),
    )

    response = await client.get(
        "/api/v1/notifications/?unread_only=true", headers=auth_header(agent_token)
    )
    event_types = [n["event_type"] for n in response.json()["items"]]
    assert "comment_added" in event_types


async def test_only_author_edits_comment(client: AsyncClient, admin_token: str, agent_token: str):
    ticket = await _create(client, admin_token)
    comment = (
        await client.post(
            f"/api/v1/tickets/{ticket['id']}/comments",
            json={"content": "Original"},
            headers=auth_header(admin_token),
        )
    ).json()

    response = await client.patch(
        f"/api/v1/tickets/comments/{comment['id']}",
        json={"content": "Tampered"},
        headers=auth_header(agent_token),
    )
    assert response.status_code == 403

    response = await client.patch(
        f"/api/v1/tickets/comments/{comment['id']}",
        json={"content": "Edited"},
        headers=auth_header(admin_token),
    )
    assert response.status_code == 200
    assert response.json()["content"] == "Edited"

    response = await client.delete(
        f"/api/v1/tickets/comments/{comment['id']}", headers=auth_header(admin_token)
    )
    assert response.status_code == 204


# ---------------------------------------------------------------------------
# Attachments
# ---------------------------------------------------------------------------


async def test_upload_and_download_attachment(client: AsyncClient, admin_token: str, sniff_as_text):
    """POST /api/v1/tickets/{id}/attachments stores the file and it can be downloaded."""
    ticket = await _create(client, admin_token, title="Attachment test")

    response = await client.post(
        f"/api/v1/tickets/{ticket['id']}/attachments",
        files={"file": ("test.txt", b"hello world", "text/plain")},
        headers=auth_header(admin_token),
    )
    assert response.status_code == 201

    data = response.json()
    assert data["original_filename"] == "test.txt"
    assert data["content_type"] == "text/plain"
    assert data["file_size"] == 11
    assert data["ticket_id"] == ticket["id"]

    response = await client.get(
        f"/api/v1/tickets/attachments/{data['id']}/download",
        headers=auth_header(admin_token),
    )
    assert response.status_code == 200
    assert response.content == b"hello world"

    response = await client.get(
        f"/api/v1/tickets/{ticket['id']}/attachments", headers=auth_header(admin_token)
    )
    assert [a["original_filename"] for a in response.json()] == ["test.txt"]


async def test_upload_rejects_disallowed_type(client: AsyncClient, admin_token: str, sniff_as_text):
    ticket = await _create(client, admin_token)
    response = await client.post(
        f"/api/v1/tickets/{ticket['id']}/attachments",
        files={"file": ("run.exe", b"MZ...", "application/x-msdownload")},
        headers=auth_header(admin_token),
    )
    assert response.status_code == 400


async def test_delete_attachment(client: AsyncClient, admin_token: str, sniff_as_text):
    ticket = await _create(client, admin_token)
    attachment = (
        await client.post(
            f"/api/v1/tickets/{ticket['id']}/attachments",
            files={"file": ("notes.txt", b"notes", "text/plain")},
            headers=auth_header(admin_token),
        )
    ).json()

    response = await client.delete(
        f"/api/v1/tickets/attachments/{attachment['id']}", headers=auth_header(admin_token)
    )
    assert response.status_code == 204

    response = await client.get(
        f"/api/v1/tickets/attachments/{attachment['id']}/download",
        headers=auth_header(admin_token),
    )
    assert response.status_code == 404
