import pytest
from httpx import AsyncClient

from helpdesk.models.role import SystemPermission
from tests.conftest import auth_header, make_user, token_for


pytestmark = pytest.mark.asyncio


def _user_payload(**overrides) -> dict:
    base = {
        "username": "newuser",
        "email": "newuser@test.com",
        "first_name": "New",
        "last_name": "User",
        "password": "newuserpass",
    }
    base.update(overrides)
    return base


async def test_create_user_as_admin(client: AsyncClient, admin_token: str):
    """Admin can create a new user via POST /api/v1/users/."""
    response = await client.post(
        "/api/v1/users/",
        json=_user_payload(),
        headers=auth_header(admin_token),
    )
    assert response.status_code == 201

    data = response.json()
    assert data["username"] == "newuser"
    assert data["email"] == "newuser@test.com"
    assert data["full_name"] == "New User"
    assert data["is_admin"] is False
    assert data["role_names"] == []
    assert data["is_active"] is True
    assert "id" in data
    assert "created_at" in data
    assert "updated_at" in data


async def test_create_user_with_roles(client: AsyncClient, admin_token: str):
    """Roles are attached by id and reported by developer name."""
    role = await client.post(
        "/api/v1/roles/",
        json={"label": "Support", "developer_name": "support", "permissions": ["manage_tickets"]},
        headers=auth_header(admin_token),
    )
    role_id = role.json()["id"]

    response = await client.post(
        "/api/v1/users/",
        json=_user_payload(role_ids=[role_id]),
        headers=auth_header(admin_token),
    )
    assert response.status_code == 201
    assert response.json()["role_names"] == ["support"]


async def test_create_user_without_permission_forbidden(client: AsyncClient, agent_token: str):
    """A user without the users permission cannot create users."""
    response = await client.post(
        "/api/v1/users/",
        json=_user_payload(username="sneakyuser", email="sneaky@test.com"),
        headers=auth_header(agent_token),
    )
    assert response.status_code == 403


async def test_user_manager_cannot_grant_admin(client: AsyncClient, db):
    """Granting administrator rights needs the administrators permission."""
    manager = await make_user(db, "manager", permissions=SystemPermission.manage_users)
    response = await client.post(
        "/api/v1/users/",
        json=_user_payload(is_admin=True),
        headers=auth_header(token_for(manager)),
    )
    assert response.status_code == 403

    response = await client.post(
        "/api/v1/users/",
        json=_user_payload(),
        headers=auth_header(token_for(manager)),
    )
    assert response.status_code == 201


async def test_create_user_duplicate_username(client: AsyncClient, admin_token: str, agent_user):
    response = await client.post(
        "/api/v1/users/",
        json=_user_payload(username="TestAgent", email="other@test.com"),
        headers=auth_header(admin_token),
    )
    assert response.status_code == 409


async def test_create_user_short_password(client: AsyncClient, admin_token: str):
    response = await client.post(
        "/api/v1/users/",
        json=_user_payload(password="short"),
        headers=auth_header(admin_token),
    )
    assert response.status_code == 422


async def test_list_users(client: AsyncClient, admin_token: str, admin_user):
    """GET /api/v1/users/ returns paginated response with at least the admin user."""
    response = await client.get(
        "/api/v1/users/",
        headers=auth_header(admin_token),
    )
    assert response.status_code == 200

    data = response.json()
    assert "items" in data
    assert "total" in data
    assert "page" in data
    assert "page_size" in data
    assert "pages" in data
    assert data["total"] >= 1
    assert len(data["items"]) >= 1


async def test_list_users_search(client: AsyncClient, admin_token: str, admin_user, agent_user):
    response = await client.get(
        "/api/v1/users/?search=agent",
        headers=auth_header(admin_token),
    )
    assert response.status_code == 200
    usernames = [u["username"] for u in response.json()["items"]]
    assert usernames == ["testagent"]


async def test_get_user_by_id(client: AsyncClient, admin_token: str, admin_user):
    """GET /api/v1/users/{user_id} returns the user detail."""
    user_id = str(admin_user.id)
    response = await client.get(
        f"/api/v1/users/{user_id}",
        headers=auth_header(admin_token),
    )
    assert response.status_code == 200

    data = response.json()
    assert data["id"] == user_id
    assert data["username"] == "testadmin"
    assert data["email"] == "testadmin@test.com"
    assert data["is_admin"] is True


async def test_get_me(client: AsyncClient, agent_token: str):
    response = await client.get("/api/v1/users/me", headers=auth_header(agent_token))
    assert response.status_code == 200
    assert response.json()["username"] == "testagent"


async def test_update_user(client: AsyncClient, admin_token: str, agent_user):
    """Admin can update a user's email via PATCH /api/v1/users/{user_id}."""
    user_id = str(agent_user.id)
    response = await client.patch(
        f"/api/v1/users/{user_id}",
        json={"email": "updated@test.com", "first_name": "Updated"},
        headers=auth_header(admin_token),
    )
    assert response.status_code == 200

    data = response.json()
    assert data["email"] == "updated@test.com"
    assert data["full_name"] == "Updated Tester"
    assert data["id"] == user_id


async def test_deactivate_and_activate_user(client: AsyncClient, admin_token: str, agent_user):
    """A deactivated user can no longer log in until reactivated."""
    user_id = str(agent_user.id)
    response = await client.post(
        f"/api/v1/users/{user_id}/deactivate", headers=auth_header(admin_token)
    )
    assert response.status_code == 200
    assert response.json()["is_active"] is False

    response = await client.post(
        "/api/v1/auth/login",
        json={"username": "testagent", "password": "agentpass"},
    )
    assert response.status_code == 401

    response = await client.post(
        f"/api/v1/users/{user_id}/activate", headers=auth_header(admin_token)
    )
    assert response.status_code == 200
    assert response.json()["is_active"] is True


async def test_cannot_deactivate_self(client: AsyncClient, admin_token: str, admin_user):
    response = await client.post(
        f"/api/v1/users/{admin_user.id}/deactivate", headers=auth_header(admin_token)
    )
    assert response.status_code == 400


async def test_change_own_password(client: AsyncClient, agent_token: str):
    """User can change their own password and log in with the new one."""
    response = await client.post(
        "/api/v1/users/me/password",
        json={"current_password": "agentpass", "new_password": "newagentpass"},
        headers=auth_header(agent_token),
    )
    assert response.status_code == 204

    # Verify login with new password works
    response = await client.post(
        "/api/v1/auth/login",
        json={"username": "testagent", "password": "newagentpass"},
    )
    assert response.status_code == 200
    assert "access_token" in response.json()


async def test_change_password_wrong_current(client: AsyncClient, agent_token: str):
    """Changing password with wrong current password returns 400."""
    response = await client.post(
        "/api/v1/users/me/password",
        json={"current_password": "wrongpass", "new_password": "newagentpass"},
        headers=auth_header(agent_token),
    )
    assert response.status_code == 400
    assert "incorrect" in response.json()["detail"].lower()


async def test_change_password_too_short(client: AsyncClient, agent_token: str):
    """Changing password with too-short new password returns 422."""
    response = await client.post(
        "/api/v1/users/me/password",
        json={"current_password": "agentpass", "new_password": "abc"},
        headers=auth_header(agent_token),
    )
    assert response.status_code == 422


async def test_admin_reset_password(
    client: AsyncClient, admin_token: str, agent_user
):
    """Admin can set a user's password via POST /api/v1/users/{id}/password."""
    user_id = str(agent_user.id)
    response = await client.post(
        f"/api/v1/users/{user_id}/password",
        json={"new_password": "resetpass"},
        headers=auth_header(admin_token),
    )
    assert response.status_code == 204

    # Verify login with new password works
    response = await client.post(
        "/api/v1/auth/login",
        json={"username": "testagent", "password": "resetpass"},
    )
    assert response.status_code == 200
    assert "access_token" in response.json()
