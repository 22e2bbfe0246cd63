from __future__ import annotations

from fastapi.testclient import TestClient

from taskboard.database import Database

from conftest import Accounts


def test_audit_log_lists_newest_first(client: TestClient, database: Database, accounts: Accounts) -> None:
    admin_headers = accounts.headers("admin")
    created = client.post("/api/projects", json={"name": "Website"}, headers=admin_headers).json()
    client.put(
        "/api/projects/assign-manager",
        json={"projectId": created["id"], "managerId": accounts["manager"].id},
        headers=admin_headers,
    )
    client.delete(f"/api/projects/{created['id']}", headers=admin_headers)

    response = client.get("/api/auditlogs", headers=admin_headers)

    assert response.status_code == 200
    entries = response.json()
    assert [entry["action"] for entry in entries] == [
        "PROJECT_DELETED",
        "MANAGER_ASSIGNED_TO_PROJECT",
        "PROJECT_CREATED",
    ]
    assert entries[1]["actorId"] == accounts["admin"].id
    assert entries[1]["targetId"] == str(created["id"])
    assert entries[1]["details"] == {"managerId": accounts["manager"].id, "projectId": created["id"]}


def test_audit_log_is_admin_only(client: TestClient, accounts: Accounts) -> None:
    response = client.get("/api/auditlogs", headers=accounts.headers("manager"))

    assert response.status_code == 403
    assert response.json() == {"detail": "Forbidden: Only admin can access audit logs."}


def test_health(client: TestClient) -> None:
    assert client.get("/health").json() == {"status": "ok"}


def test_interactive_api_docs_are_served(client: TestClient) -> None:
    assert client.get("/docs").status_code == 200

    schema = client.get("/openapi.json").json()
    assert schema["info"]["title"] == "Taskboard API"
    assert "/api/tasks/{task_id}" in schema["paths"]
    assert "/api/projects/assign-manager" in schema["paths"]
