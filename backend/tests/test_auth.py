import uuid

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from helpdesk.api.middleware import RateLimitMiddleware
from helpdesk.auditing import reset_current_user_id, set_current_user_id
from helpdesk.models.contact import Contact
from helpdesk.models.role import SystemPermission
from helpdesk.models.team import Team
from helpdesk.models.user import User
from helpdesk.services.auth_service import create_refresh_token, decode_token
from tests.conftest import auth_header, make_user, token_for


async def _login(client: AsyncClient, username: str, password: str):
    return await client.post("/api/v1/auth/login", json={"username": username, "password": password})


async def test_login_valid_credentials(client: AsyncClient, admin_user):
    """POST /api/v1/auth/login with correct credentials returns 200 and tokens."""
    response = await _login(client, "testadmin", "adminpass")
    assert response.status_code == 200

    data = response.json()
    assert "access_token" in data
    assert data["token_type"] == "bearer"

    # The refresh token should be set as an HTTP-only cookie
    assert "refresh_token" in response.cookies


async def test_access_token_carries_roles_and_admin_flag(client: AsyncClient, db):
    await make_user(db, "lead", password="leadpass", permissions=SystemPermission.manage_teams)

    response = await _login(client, "lead", "leadpass")
    claims = decode_token(response.json()["access_token"])
    assert claims["type"] == "access"
    assert claims["roles"] == ["lead_role"]
    assert claims["is_admin"] is False

    await make_user(db, "boss", password="bosspass", is_admin=True)
    response = await _login(client, "boss", "bosspass")
    assert decode_token(response.json()["access_token"])["is_admin"] is True


async def test_login_stamps_last_logged_in(client: AsyncClient, db, admin_user):
    assert admin_user.last_logged_in_at is None
    await _login(client, "testadmin", "adminpass")
    user = await db.get(User, admin_user.id)
    assert user.last_logged_in_at is not None


async def test_login_invalid_password(client: AsyncClient, admin_user):
    """POST /api/v1/auth/login with wrong password returns 401."""
    response = await _login(client, "testadmin", "wrongpassword")
    assert response.status_code == 401


async def test_login_nonexistent_user(client: AsyncClient):
    response = await _login(client, "nonexistent", "whatever")
    assert response.status_code == 401


async def test_login_refused_for_inactive_user(client: AsyncClient, db):
    user = await make_user(db, "leaver", password="leaverpass")
    user.is_active = False
    await db.commit()

    response = await _login(client, "leaver", "leaverpass")
    assert response.status_code == 401

    # Existing tokens stop working too
    response = await client.get("/api/v1/users/me", headers=auth_header(token_for(user)))
    assert response.status_code == 401

    response = await client.post(
        "/api/v1/auth/refresh", cookies={"refresh_token": create_refresh_token(user.id)}
    )
    assert response.status_code == 401


async def test_refresh_valid_cookie(client: AsyncClient, admin_user):
    """Login first, then POST /api/v1/auth/refresh with the cookie to get a new access token."""
    login_response = await _login(client, "testadmin", "adminpass")
    assert login_response.status_code == 200

    # The cookie is secure-only, so forward it explicitly over http://
    refresh_token = login_response.cookies.get("refresh_token")
    assert refresh_token is not None
    refresh_response = await client.post("/api/v1/auth/refresh", cookies={"refresh_token": refresh_token})
    assert refresh_response.status_code == 200

    claims = decode_token(refresh_response.json()["access_token"])
    assert claims["sub"] == str(admin_user.id)
    assert claims["is_admin"] is True


async def test_refresh_rejects_access_tokens(client: AsyncClient, admin_token: str):
    response = await client.post("/api/v1/auth/refresh", cookies={"refresh_token": admin_token})
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid token type"

    response = await client.post("/api/v1/auth/refresh")
    assert response.status_code == 401


async def test_logout_clears_refresh_cookie(client: AsyncClient):
    response = await client.post("/api/v1/auth/logout")
    assert response.status_code == 200
    assert response.json() == {"message": "Logged out"}
    set_cookie = response.headers["set-cookie"]
    assert set_cookie.startswith("refresh_token=")
    assert "Max-Age=0" in set_cookie


async def test_protected_route_no_auth(client: AsyncClient):
    """GET /api/v1/users without a token returns 401."""
    response = await client.get("/api/v1/users/")
    assert response.status_code == 401


# ---------------------------------------------------------------------------
# Creator / modifier stamping
# ---------------------------------------------------------------------------


async def test_requests_stamp_creator_and_modifier(client: AsyncClient, db, admin_user, admin_token: str):
    editor = await make_user(db, "editor", permissions=SystemPermission.manage_tickets)

    response = await client.post(
        "/api/v1/contacts/", json={"first_name": "Ada", "last_name": "Lovelace"}, headers=auth_header(admin_token)
    )
    assert response.status_code == 201
    contact_id = uuid.UUID(response.json()["id"])

    contact = await db.get(Contact, contact_id)
    assert contact.creator_user_id == admin_user.id
    assert contact.last_modifier_user_id == admin_user.id

    response = await client.patch(
        f"/api/v1/contacts/{contact_id}", json={"last_name": "King"}, headers=auth_header(token_for(editor))
    )
    assert response.status_code == 200

    contact = await db.get(Contact, contact_id)
    assert contact.creator_user_id == admin_user.id
    assert contact.last_modifier_user_id == editor.id


async def test_flush_stamps_only_with_an_acting_user(db, admin_user):
    team = Team(name="Night shift")
    db.add(team)
    await db.flush()
    assert team.creator_user_id is None

    token = set_current_user_id(admin_user.id)
    try:
        team.description = "Overnight cover"
        await db.flush()
    finally:
        reset_current_user_id(token)
    assert team.creator_user_id is None
    assert team.last_modifier_user_id == admin_user.id


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------


async def test_rate_limit_rejects_request_101(client: AsyncClient, admin_token: str):
    headers = auth_header(admin_token)
    for _ in range(100):
        response = await client.get("/api/v1/notifications/unread-count", headers=headers)
        assert response.status_code == 200

    response = await client.get("/api/v1/notifications/unread-count", headers=headers)
    assert response.status_code == 429
    assert "Maximum 100 requests" in response.json()["detail"]


async def test_rate_limit_is_per_identity(admin_token: str, agent_token: str):
    app = FastAPI()

    @app.get("/ping")
    async def ping():
        return {"ok": True}

    app.add_middleware(RateLimitMiddleware, limit=2)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as small:
        for _ in range(2):
            assert (await small.get("/ping", headers=auth_header(admin_token))).status_code == 200
        assert (await small.get("/ping", headers=auth_header(admin_token))).status_code == 429
        assert (await small.get("/ping", headers=auth_header(agent_token))).status_code == 200
        # Anonymous requests are not limited
        for _ in range(3):
            assert (await small.get("/ping")).status_code == 200


def test_rate_limit_sweeps_idle_identities():
    middleware = RateLimitMiddleware(FastAPI(), limit=5, window_seconds=60)
    middleware._requests = {"jwt:idle": [10.0], "jwt:busy": [10.0, 95.0], "jwt:empty": []}
    middleware._sweep(window_start=50.0)
    assert set(middleware._requests) == {"jwt:busy"}
