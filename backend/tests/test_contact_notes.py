import uuid

import pytest
from httpx import AsyncClient

from helpdesk.services import attachment_service
from tests.conftest import auth_header, make_user, token_for


@pytest.fixture
def sniff_as_text(monkeypatch):
    monkeypatch.setattr(attachment_service, "detect_content_type", lambda content: "text/plain")


async def test_add_and_list_contact_comments(client: AsyncClient, admin_token: str, contact):
    url = f"/api/v1/contacts/{contact.id}/comments"
    response = await client.post(
        url, json={"content": "<p>Prefers email</p><script>alert(1)</script>"}, headers=auth_header(admin_token)
    )
    assert response.status_code == 201
    data = response.json()
    assert data["content"] == "<p>Prefers email</p>"
    assert data["author_name"] == "Testadmin Tester"

    await client.post(url, json={"content": "Called back"}, headers=auth_header(admin_token))
    response = await client.get(url, headers=auth_header(admin_token))
    assert [c["content"] for c in response.json()] == ["Called back", "<p>Prefers email</p>"]


async def test_contact_comment_body_is_required(client: AsyncClient, admin_token: str, contact):
    url = f"/api/v1/contacts/{contact.id}/comments"
    response = await client.post(url, json={"content": ""}, headers=auth_header(admin_token))
    assert response.status_code == 422

    # Markup that sanitizes to nothing
    response = await client.post(url, json={"content": "<script>x</script>"}, headers=auth_header(admin_token))
    assert response.status_code == 422

    response = await client.post(
        f"/api/v1/contacts/{uuid.uuid4()}/comments", json={"content": "Hi"}, headers=auth_header(admin_token)
    )
    assert response.status_code == 404


async def test_contact_attachment_lifecycle(client: AsyncClient, admin_token: str, contact, sniff_as_text):
    url = f"/api/v1/contacts/{contact.id}/attachments"
    response = await client.post(
        url,
        files={"file": ("contract.txt", b"signed", "text/plain")},
        data={"description": "Support contract"},
        headers=auth_header(admin_token),
    )
    assert response.status_code == 201
    attachment = response.json()
    assert attachment["display_name"] == "contract.txt"
    assert attachment["description"] == "Support contract"
    assert attachment["file_size"] == 6

    response = await client.post(
        url,
        files={"file": ("notes.txt", b"notes", "text/plain")},
        data={"display_name": "Call notes"},
        headers=auth_header(admin_token),
    )
    assert response.json()["display_name"] == "Call notes"

    response = await client.get(url, headers=auth_header(admin_token))
    assert [a["display_name"] for a in response.json()] == ["contract.txt", "Call notes"]

    response = await client.get(
        f"/api/v1/contacts/attachments/{attachment['id']}/download", headers=auth_header(admin_token)
    )
    assert response.status_code == 200
    assert response.content == b"signed"

    response = await client.delete(f"/api/v1/contacts/attachments/{attachment['id']}", headers=auth_header(admin_token))
    assert response.status_code == 204
    response = await client.get(url, headers=auth_header(admin_token))
    assert [a["display_name"] for a in response.json()] == ["Call notes"]


async def test_only_uploader_or_manager_removes_contact_files(
    client: AsyncClient, db, agent_token: str, contact, sniff_as_text
):
    response = await client.post(
        f"/api/v1/contacts/{contact.id}/attachments",
        files={"file": ("id.txt", b"id", "text/plain")},
        headers=auth_header(agent_token),
    )
    attachment_id = response.json()["id"]

    other = await make_user(db, "other")
    response = await client.delete(
        f"/api/v1/contacts/attachments/{attachment_id}", headers=auth_header(token_for(other))
    )
    assert response.status_code == 403

    response = await client.delete(f"/api/v1/contacts/attachments/{attachment_id}", headers=auth_header(agent_token))
    assert response.status_code == 204


async def test_contact_attachment_rejects_disallowed_types(client: AsyncClient, admin_token: str, contact):
    response = await client.post(
        f"/api/v1/contacts/{contact.id}/attachments",
        files={"file": ("run.exe", b"MZ...", "application/x-msdownload")},
        headers=auth_header(admin_token),
    )
    assert response.status_code == 400
