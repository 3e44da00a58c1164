import uuid
from datetime import timedelta

import pytest
from httpx import AsyncClient

from helpdesk.models.base import JobStatus, utcnow
from helpdesk.models.export_job import ExportJob
from helpdesk.models.role import SystemPermission
from helpdesk.services import export_service
from helpdesk.tasks.queue import task_queue
from tests.conftest import auth_header, make_user, token_for


pytestmark = pytest.mark.asyncio


async def _request_export(client: AsyncClient, token: str, **payload):
    return await client.post("/api/v1/exports/", json=payload, headers=auth_header(token))


async def _run(client, token, session_factory, db, **payload) -> dict:
    response = await _request_export(client, token, **payload)
    assert response.status_code == 202
    job_id = response.json()["id"]

    db.expunge_all()
    await export_service.run_export_job(uuid.UUID(job_id), session_factory)

    response = await client.get(f"/api/v1/exports/{job_id}", headers=auth_header(token))
    return response.json()


async def _ticket(client: AsyncClient, token: str, title: str, priority: str = "normal") -> dict:
    response = await client.post(
        "/api/v1/tickets/", json={"title": title, "priority": priority}, headers=auth_header(token)
    )
    assert response.status_code == 201
    return response.json()


async def test_list_columns(client: AsyncClient, admin_token: str):
    response = await client.get("/api/v1/exports/columns", headers=auth_header(admin_token))
    assert response.status_code == 200
    columns = {c["name"]: c["header"] for c in response.json()}
    assert columns["number"] == "Id"
    assert columns["sla_status"] == "SlaStatus"


async def test_export_requires_columns(client: AsyncClient, admin_token: str):
    response = await _request_export(client, admin_token, columns=[])
    assert response.status_code == 422
    assert response.json()["detail"][0]["loc"] == ["body", "columns"]

    response = await _request_export(client, admin_token, columns=["title", "shoe_size"])
    assert response.status_code == 422
    assert "shoe_size" in response.json()["detail"][0]["msg"]


async def test_export_queues_job(client: AsyncClient, admin_token: str):
    pending = task_queue.pending
    response = await _request_export(client, admin_token, columns=["title", "title", "status"])
    assert response.status_code == 202

    data = response.json()
    assert data["status"] == "queued"
    assert data["snapshot_payload"]["columns"] == ["title", "status"]
    assert task_queue.pending == pending + 1


async def test_export_runs_with_filters(client: AsyncClient, db, admin_token: str, session_factory):
    await _ticket(client, admin_token, "Server down", priority="urgent")
    await _ticket(client, admin_token, "Mouse squeaks", priority="low")

    job = await _run(
        client, admin_token, session_factory, db,
        columns=["ticket_number", "title", "priority"],
        filters={"priority": ["urgent"]},
    )
    assert job["status"] == "completed"
    assert job["row_count"] == 1

    response = await client.get(f"/api/v1/exports/{job['id']}/download", headers=auth_header(admin_token))
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert response.text.splitlines() == ["TicketNumber,Title,Priority", "HD-1000000,Server down,urgent"]


async def test_download_before_completion(client: AsyncClient, admin_token: str):
    response = await _request_export(client, admin_token, columns=["title"])
    job_id = response.json()["id"]

    response = await client.get(f"/api/v1/exports/{job_id}/download", headers=auth_header(admin_token))
    assert response.status_code == 400


async def test_exports_are_private_to_requester(client: AsyncClient, db, admin_token: str):
    alice = await make_user(db, "alice", permissions=SystemPermission.import_export_tickets)
    bob = await make_user(db, "bob", permissions=SystemPermission.import_export_tickets)

    response = await _request_export(client, token_for(alice), columns=["title"])
    job_id = response.json()["id"]

    response = await client.get(f"/api/v1/exports/{job_id}", headers=auth_header(token_for(bob)))
    assert response.status_code == 403

    response = await client.get("/api/v1/exports/", headers=auth_header(token_for(bob)))
    assert response.json()["total"] == 0

    # Administrators can see every export
    response = await client.get(f"/api/v1/exports/{job_id}", headers=auth_header(admin_token))
    assert response.status_code == 200


async def test_retry_only_failed_exports(client: AsyncClient, db, admin_token: str):
    response = await _request_export(client, admin_token, columns=["title"])
    job_id = response.json()["id"]

    response = await client.post(f"/api/v1/exports/{job_id}/retry", headers=auth_header(admin_token))
    assert response.status_code == 400

    job = await db.get(ExportJob, uuid.UUID(job_id))
    job.status = JobStatus.failed
    job.error_message = "Storage unavailable"
    await db.commit()

    response = await client.post(f"/api/v1/exports/{job_id}/retry", headers=auth_header(admin_token))
    assert response.status_code == 200
    assert response.json()["status"] == "queued"
    assert response.json()["error_message"] is None


async def test_cleanup_expired_exports(client: AsyncClient, db, admin_token: str, session_factory):
    await _ticket(client, admin_token, "Keyboard missing keys")
    job = await _run(client, admin_token, session_factory, db, columns=["title"])
    assert job["status"] == "completed"

    export = await db.get(ExportJob, uuid.UUID(job["id"]))
    export.expires_at = utcnow() - timedelta(minutes=1)
    await db.commit()

    assert await export_service.cleanup_expired(db) == 1
    assert export.is_cleaned_up is True

    response = await client.get(f"/api/v1/exports/{job['id']}/download", headers=auth_header(admin_token))
    assert response.status_code == 400


async def test_retry_after_cleanup_produces_a_downloadable_export(
    client: AsyncClient, db, admin_token: str, session_factory
):
    await _ticket(client, admin_token, "Monitor flickers")
    response = await _request_export(client, admin_token, columns=["title"])
    job_id = uuid.UUID(response.json()["id"])

    job = await db.get(ExportJob, job_id)
    job.status = JobStatus.failed
    job.error_message = "Storage unavailable"
    job.expires_at = utcnow() - timedelta(minutes=1)
    await db.commit()
    assert await export_service.cleanup_expired(db) == 1
    assert job.is_cleaned_up is True

    response = await client.post(f"/api/v1/exports/{job_id}/retry", headers=auth_header(admin_token))
    assert response.status_code == 200
    assert response.json()["is_cleaned_up"] is False

    db.expunge_all()
    await export_service.run_export_job(job_id, session_factory)

    response = await client.get(f"/api/v1/exports/{job_id}/download", headers=auth_header(admin_token))
    assert response.status_code == 200
    assert response.text.splitlines() == ["Title", "Monitor flickers"]
