from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from taskboard.database import Database

from conftest import Accounts


def test_websocket_requires_valid_token(client: TestClient, accounts: Accounts) -> None:
    with pytest.raises(WebSocketDisconnect) as excinfo:
        with client.websocket_connect("/ws"):
            pass
    assert excinfo.value.code == 4401

    with pytest.raises(WebSocketDisconnect) as excinfo:
        with client.websocket_connect("/ws", headers={"Authorization": "Bearer forged"}):
            pass
    assert excinfo.value.code == 4401


def test_websocket_rejects_tokens_for_deleted_users(client: TestClient, database: Database, accounts: Accounts) -> None:
    token = accounts.token("other")
    with database._connect() as conn:
        conn.execute("DELETE FROM users WHERE id = ?", (accounts["other"].id,))

    with pytest.raises(WebSocketDisconnect) as excinfo:
        with client.websocket_connect(f"/ws?token={token}"):
            pass
    assert excinfo.value.code == 4401


def test_join_personal_channel_and_receive_assignment(
    client: TestClient, database: Database, accounts: Accounts
) -> None:
    member = accounts["member"]
    project = database.create_project("Website", None, accounts["admin"].id)
    database.add_project_manager(project.id, accounts["manager"].id)

    with client.websocket_connect("/ws", headers=accounts.headers("member")) as websocket:
        websocket.send_json({"type": "join"})
        assert websocket.receive_json() == {"event": "joined", "channel": f"user:{member.id}", "data": {}}

        presence = websocket.receive_json()
        assert presence["event"] == "userList"
        assert presence["channel"] is None
        assert presence["data"]["users"] == [{"id": member.id, "username": member.username, "role": "Member"}]

        response = client.post(
            "/api/tasks",
            json={"title": "Review copy", "projectId": project.id, "assignedTo": member.id},
            headers=accounts.headers("manager"),
        )
        assert response.status_code == 201

        event = websocket.receive_json()
        assert event["event"] == "newTaskAssigned"
        assert event["channel"] == f"user:{member.id}"
        assert event["data"]["task"]["id"] == response.json()["id"]
        assert event["data"]["task"]["status"] == "Pending"

        websocket.send_json({"type": "close"})


def test_query_token_and_ping(client: TestClient, accounts: Accounts) -> None:
    with client.websocket_connect(f"/ws?token={accounts.token('member')}") as websocket:
        websocket.send_json({"type": "ping"})
        assert websocket.receive_json()["event"] == "pong"

        websocket.send_text("not json")
        assert websocket.receive_json() == {
            "event": "error",
            "channel": None,
            "data": {"message": "Messages must be JSON objects"},
        }

        websocket.send_json({"type": "shout"})
        assert websocket.receive_json()["data"] == {"message": "Unknown message type"}


def test_project_channel_requires_involvement(
    client: TestClient, database: Database, accounts: Accounts
) -> None:
    project = database.create_project("Website", None, accounts["admin"].id)
    database.add_project_manager(project.id, accounts["manager"].id)
    task = database.create_task(
        title="Draft copy",
        description=None,
        project_id=project.id,
        assigned_to=accounts["member"].id,
    )
    channel = f"project:{project.id}"

    with client.websocket_connect("/ws", headers=accounts.headers("other")) as websocket:
        websocket.send_json({"type": "join", "channel": channel})
        assert websocket.receive_json()["data"] == {"message": f"Not allowed to join {channel}"}

        websocket.send_json({"type": "join", "channel": f"user:{accounts['member'].id}"})
        assert websocket.receive_json()["event"] == "error"

    with client.websocket_connect("/ws", headers=accounts.headers("manager")) as websocket:
        websocket.send_json({"type": "join", "channel": channel})
        assert websocket.receive_json() == {"event": "joined", "channel": channel, "data": {}}

        response = client.put(
            f"/api/tasks/{task.id}",
            json={"status": "Completed"},
            headers=accounts.headers("member"),
        )
        assert response.status_code == 200

        event = websocket.receive_json()
        assert event == {
            "event": "taskUpdated",
            "channel": channel,
            "data": {"taskId": task.id, "updatedFields": {"status": "Completed"}},
        }

        websocket.send_json({"type": "leave", "channel": channel})
        assert websocket.receive_json() == {"event": "left", "channel": channel, "data": {}}


def test_disconnect_updates_presence(client: TestClient, accounts: Accounts, listen) -> None:
    watcher = listen(accounts["admin"].id)

    with client.websocket_connect("/ws", headers=accounts.headers("member")) as websocket:
        websocket.send_json({"type": "join"})
        websocket.receive_json()
        websocket.receive_json()
        websocket.send_json({"type": "close"})
        assert websocket.receive()["type"] == "websocket.close"

    online = [event.data["users"] for event in watcher.named("userList")]
    assert [user["id"] for user in online[-2]] == [accounts["admin"].id, accounts["member"].id]
    assert [user["id"] for user in online[-1]] == [accounts["admin"].id]
