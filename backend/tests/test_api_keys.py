from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient

from tests.conftest import auth_header


pytestmark = pytest.mark.asyncio


async def _create_key(client: AsyncClient, token: str, **payload) -> dict:
    response = await client.post(
        "/api/v1/api-keys/", json={"name": "Integration", **payload}, headers=auth_header(token)
    )
    assert response.status_code == 201
    return response.json()


async def test_create_and_list_api_keys(client: AsyncClient, agent_token: str):
    key = await _create_key(client, agent_token)
    assert key["plain_key"].startswith("hdk_")
    assert key["key_prefix"] == key["plain_key"][:8]

    response = await client.get("/api/v1/api-keys/", headers=auth_header(agent_token))
    assert response.status_code == 200
    listed = response.json()
    assert [k["name"] for k in listed] == ["Integration"]
    assert "plain_key" not in listed[0]


async def test_api_key_authenticates_requests(client: AsyncClient, agent_token: str):
    key = await _create_key(client, agent_token)
    headers = {"X-API-Key": key["plain_key"]}

    response = await client.get("/api/v1/users/me", headers=headers)
    assert response.status_code == 200
    assert response.json()["username"] == "testagent"

    response = await client.post("/api/v1/tickets/", json={"title": "From a script"}, headers=headers)
    assert response.status_code == 201

    response = await client.get(
        f"/api/v1/tickets/{response.json()['id']}/change-log", headers=auth_header(agent_token)
    )
    assert response.json()[0]["actor_type"] == "api_key"


async def test_invalid_api_key(client: AsyncClient):
    response = await client.get("/api/v1/users/me", headers={"X-API-Key": "hdk_nottherealkey"})
    assert response.status_code == 401


async def test_expired_api_key(client: AsyncClient, agent_token: str):
    expired = datetime.now(timezone.utc) - timedelta(days=1)
    key = await _create_key(client, agent_token, expires_at=expired.isoformat())

    response = await client.get("/api/v1/users/me", headers={"X-API-Key": key["plain_key"]})
    assert response.status_code == 401


async def test_revoke_api_key(client: AsyncClient, agent_token: str, admin_token: str):
    key = await _create_key(client, agent_token)

    # Keys belong to their owner
    response = await client.delete(f"/api/v1/api-keys/{key['id']}", headers=auth_header(admin_token))
    assert response.status_code == 404

    response = await client.delete(f"/api/v1/api-keys/{key['id']}", headers=auth_header(agent_token))
    assert response.status_code == 204

    response = await client.get("/api/v1/users/me", headers={"X-API-Key": key["plain_key"]})
    assert response.status_code == 401

    response = await client.get("/api/v1/api-keys/", headers=auth_header(agent_token))
    assert response.json() == []
