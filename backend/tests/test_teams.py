from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient

from helpdesk.models.team import Team, TeamMembership
from helpdesk.services import team_service
from tests.conftest import auth_header, make_user


pytestmark = pytest.mark.asyncio


# ---------------------------------------------------------------------------
# Team CRUD
# ---------------------------------------------------------------------------


async def test_create_team(client: AsyncClient, admin_token: str):
    """POST /api/v1/teams/ creates a team and returns 201."""
    response = await client.post(
        "/api/v1/teams/",
        json={"name": "Network", "description": "Routers and switches"},
        headers=auth_header(admin_token),
    )
    assert response.status_code == 201

    data = response.json()
    assert data["name"] == "Network"
    assert data["round_robin_enabled"] is True
    assert data["member_count"] == 0


async def test_create_team_duplicate_name(client: AsyncClient, admin_token: str, test_team: Team):
    """Team names are unique regardless of case."""
    response = await client.post(
        "/api/v1/teams/",
        json={"name": "service desk"},
        headers=auth_header(admin_token),
    )
    assert response.status_code == 409


async def test_create_team_without_permission(client: AsyncClient, agent_token: str):
    response = await client.post(
        "/api/v1/teams/",
        json={"name": "Rogue"},
        headers=auth_header(agent_token),
    )
    assert response.status_code == 403


async def test_list_teams_with_member_count(
    client: AsyncClient, agent_token: str, test_team: Team, agent_in_team: TeamMembership
):
    response = await client.get("/api/v1/teams/", headers=auth_header(agent_token))
    assert response.status_code == 200

    data = response.json()
    assert data["total"] == 1
    assert data["items"][0]["name"] == "Service Desk"
    assert data["items"][0]["member_count"] == 1


async def test_add_update_remove_member(
    client: AsyncClient, admin_token: str, test_team: Team, agent_user
):
    response = await client.post(
        f"/api/v1/teams/{test_team.id}/members",
        json={"user_id": str(agent_user.id)},
        headers=auth_header(admin_token),
    )
    assert response.status_code == 201
    assert response.json()["username"] == "testagent"
    assert response.json()["is_assignable"] is True

    response = await client.post(
        f"/api/v1/teams/{test_team.id}/members",
        json={"user_id": str(agent_user.id)},
        headers=auth_header(admin_token),
    )
    assert response.status_code == 409

    response = await client.patch(
        f"/api/v1/teams/{test_team.id}/members/{agent_user.id}",
        json={"is_assignable": False},
        headers=auth_header(admin_token),
    )
    assert response.status_code == 200
    assert response.json()["is_assignable"] is False

    response = await client.delete(
        f"/api/v1/teams/{test_team.id}/members/{agent_user.id}",
        headers=auth_header(admin_token),
    )
    assert response.status_code == 204

    response = await client.get(f"/api/v1/teams/{test_team.id}", headers=auth_header(admin_token))
    assert response.json()["members"] == []


async def test_delete_team_owning_tickets(
    client: AsyncClient, admin_token: str, test_team: Team
):
    response = await client.post(
        "/api/v1/tickets/",
        json={"title": "Printer jam", "owning_team_id": str(test_team.id)},
        headers=auth_header(admin_token),
    )
    assert response.status_code == 201

    response = await client.delete(f"/api/v1/teams/{test_team.id}", headers=auth_header(admin_token))
    assert response.status_code == 400


async def test_delete_empty_team(client: AsyncClient, admin_token: str, test_team: Team):
    response = await client.delete(f"/api/v1/teams/{test_team.id}", headers=auth_header(admin_token))
    assert response.status_code == 204

    response = await client.get(f"/api/v1/teams/{test_team.id}", headers=auth_header(admin_token))
    assert response.status_code == 404


# ---------------------------------------------------------------------------
# Round-robin
# ---------------------------------------------------------------------------


async def _add_member(db, team: Team, username: str, last_assigned_at=None, **kwargs) -> TeamMembership:
    user = await make_user(db, username)
    membership = TeamMembership(
        team_id=team.id, user_id=user.id, last_assigned_at=last_assigned_at, **kwargs
    )
    db.add(membership)
    await db.commit()
    return membership


async def test_round_robin_prefers_never_assigned(db, test_team: Team):
    now = datetime.now(timezone.utc)
    await _add_member(db, test_team, "alice", last_assigned_at=now - timedelta(hours=1))
    await _add_member(db, test_team, "bob")

    picked = await team_service.assign_round_robin(db, test_team)
    assert picked.username == "bob"


async def test_round_robin_least_recently_assigned(db, test_team: Team):
    now = datetime.now(timezone.utc)
    await _add_member(db, test_team, "alice", last_assigned_at=now - timedelta(hours=1))
    await _add_member(db, test_team, "bob", last_assigned_at=now - timedelta(hours=3))

    first = await team_service.assign_round_robin(db, test_team)
    second = await team_service.assign_round_robin(db, test_team)
    third = await team_service.assign_round_robin(db, test_team)
    assert [first.username, second.username, third.username] == ["bob", "alice", "bob"]


async def test_round_robin_skips_unassignable_and_inactive(db, test_team: Team):
    await _add_member(db, test_team, "alice", is_assignable=False)
    bob = await _add_member(db, test_team, "bob")
    carol = await _add_member(db, test_team, "carol")

    memberships = await team_service.get_memberships(db, test_team.id)
    for membership in memberships:
        if membership.user_id == bob.user_id:
            membership.user.is_active = False
    await db.commit()

    picked = await team_service.assign_round_robin(db, test_team)
    assert picked.id == carol.user_id


async def test_round_robin_disabled_or_empty(db, test_team: Team):
    assert await team_service.assign_round_robin(db, test_team) is None

    await _add_member(db, test_team, "alice")
    test_team.round_robin_enabled = False
    await db.commit()
    assert await team_service.assign_round_robin(db, test_team) is None
