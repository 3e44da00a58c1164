import uuid

from httpx import AsyncClient

from helpdesk.models.base import NotificationEventType
from helpdesk.services import notification_service
from tests.conftest import auth_header, make_user, token_for


async def _create(client: AsyncClient, token: str, title: str = "Printer offline") -> str:
    response = await client.post("/api/v1/tickets/", json={"title": title}, headers=auth_header(token))
    assert response.status_code == 201
    return response.json()["id"]


async def _messages(client: AsyncClient, ticket_id: str, token: str) -> list[str]:
    response = await client.get(f"/api/v1/tickets/{ticket_id}/change-log", headers=auth_header(token))
    return [entry["message"] for entry in response.json()]


async def test_follow_is_idempotent(client: AsyncClient, admin_token: str, agent_user, agent_token: str):
    ticket_id = await _create(client, admin_token)
    url = f"/api/v1/tickets/{ticket_id}/followers"

    for _ in range(2):
        response = await client.post(url, json={"user_id": str(agent_user.id)}, headers=auth_header(agent_token))
        assert response.status_code == 200
        followers = response.json()
        assert len(followers) == 1
        assert followers[0]["user_id"] == str(agent_user.id)
        assert followers[0]["user_name"] == "Testagent Tester"

    messages = await _messages(client, ticket_id, admin_token)
    assert messages.count("Testagent Tester started following this ticket") == 1

    response = await client.get(f"/api/v1/tickets/{ticket_id}", headers=auth_header(admin_token))
    assert [f["user_id"] for f in response.json()["followers"]] == [str(agent_user.id)]


async def test_add_and_remove_someone_else(client: AsyncClient, db, admin_token: str):
    watcher = await make_user(db, "watcher")
    ticket_id = await _create(client, admin_token)

    response = await client.post(
        f"/api/v1/tickets/{ticket_id}/followers",
        json={"user_id": str(watcher.id)},
        headers=auth_header(admin_token),
    )
    assert response.status_code == 200

    response = await client.delete(
        f"/api/v1/tickets/{ticket_id}/followers/{watcher.id}", headers=auth_header(admin_token)
    )
    assert response.status_code == 204
    response = await client.get(f"/api/v1/tickets/{ticket_id}/followers", headers=auth_header(admin_token))
    assert response.json() == []

    # Removing a user who does not follow changes nothing
    response = await client.delete(
        f"/api/v1/tickets/{ticket_id}/followers/{watcher.id}", headers=auth_header(admin_token)
    )
    assert response.status_code == 204

    messages = await _messages(client, ticket_id, admin_token)
    assert "Testadmin Tester added Watcher Tester as a follower" in messages
    assert messages.count("Testadmin Tester removed Watcher Tester as a follower") == 1


async def test_follow_unknown_user(client: AsyncClient, admin_token: str):
    ticket_id = await _create(client, admin_token)
    response = await client.post(
        f"/api/v1/tickets/{ticket_id}/followers",
        json={"user_id": str(uuid.uuid4())},
        headers=auth_header(admin_token),
    )
    assert response.status_code == 404


async def test_unfollow(client: AsyncClient, admin_token: str, agent_user, agent_token: str):
    ticket_id = await _create(client, admin_token)
    await client.post(
        f"/api/v1/tickets/{ticket_id}/followers",
        json={"user_id": str(agent_user.id)},
        headers=auth_header(agent_token),
    )

    response = await client.post(f"/api/v1/tickets/{ticket_id}/unfollow", headers=auth_header(agent_token))
    assert response.status_code == 204
    response = await client.get(f"/api/v1/tickets/{ticket_id}/followers", headers=auth_header(agent_token))
    assert response.json() == []

    assert "Testagent Tester stopped following this ticket" in await _messages(client, ticket_id, admin_token)


async def test_followers_are_notified(client: AsyncClient, db, admin_token: str):
    watcher = await make_user(db, "watcher")
    ticket_id = await _create(client, admin_token)
    await client.post(
        f"/api/v1/tickets/{ticket_id}/followers",
        json={"user_id": str(watcher.id)},
        headers=auth_header(token_for(watcher)),
    )

    await client.post(
        f"/api/v1/tickets/{ticket_id}/comments",
        json={"content": "Toner replaced"},
        headers=auth_header(admin_token),
    )
    await client.post(f"/api/v1/tickets/{ticket_id}/close", headers=auth_header(admin_token))

    notifications, total = await notification_service.list_notifications(db, watcher.id)
    assert total == 2
    assert {n.event_type for n in notifications} == {
        NotificationEventType.comment_added,
        NotificationEventType.ticket_closed,
    }

    # The actor is never notified of their own change
    response = await client.post(
        f"/api/v1/tickets/{ticket_id}/comments",
        json={"content": "Thanks"},
        headers=auth_header(token_for(watcher)),
    )
    assert response.status_code == 201
    _, total = await notification_service.list_notifications(db, watcher.id)
    assert total == 2
