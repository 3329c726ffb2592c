import pytest
from starlette.websockets import WebSocketDisconnect


def _auth(user):
    return {"Authorization": f"Bearer {user}"}


def _shared_project(client):
    project = client.post("/api/projects/", json={"name": "Live"}, headers=_auth("alice")).json()
    invitation = client.post(
        "/api/invitations/",
        json={"project_id": project["id"], "email": "bob@example.com", "role": "Member"},
        headers=_auth("alice"),
    ).json()
    client.post("/api/invitations/accept", json={"token": invitation["token"]}, headers=_auth("bob"))
    return project, f"project:{project['id']}"


def _connect(ws):
    hello = ws.receive_json()
    assert hello["event"] == "connected"
    return hello["payload"]["connection_id"]


def _join(ws, room):
    ws.send_json({"event": "join-room", "room": room})
    assert ws.receive_json() == {"event": "joined", "room": room}


def _sync(ws):
    """Round trip a ping; everything queued before it has been delivered."""
    ws.send_json({"event": "ping"})
    return ws.receive_json()


def test_rejects_unauthenticated_socket(client):
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/ws?token=forged") as ws:
            ws.receive_json()


def test_relay_excludes_sender_and_stops_after_leave(client):
    project, room = _shared_project(client)

    with client.websocket_connect("/ws?token=alice") as a, client.websocket_connect("/ws?token=bob") as b:
        _connect(a)
        _connect(b)
        _join(a, room)
        _join(b, room)

        a.send_json({"event": "task-updated", "room": room, "payload": {"id": "t1", "status": "Done"}})
        assert b.receive_json() == {
            "event": "task-updated", "room": room, "payload": {"id": "t1", "status": "Done"},
        }
        assert _sync(a) == {"event": "pong", "payload": {}}

        b.send_json({"event": "leave-room", "room": room})
        assert b.receive_json() == {"event": "left", "room": room}

        a.send_json({"event": "task-deleted", "room": room, "payload": {"id": "t1"}})
        assert _sync(a)["event"] == "pong"
        assert _sync(b)["event"] == "pong"


def test_join_requires_membership(client):
    project, room = _shared_project(client)

    with client.websocket_connect("/ws?token=mallory") as ws:
        _connect(ws)
        ws.send_json({"event": "join-room", "room": room})
        message = ws.receive_json()
        assert message["event"] == "error"
        assert message["payload"]["code"] == "forbidden"

        ws.send_json({"event": "task-created", "room": room, "payload": {"id": "x"}})
        assert ws.receive_json()["payload"]["code"] == "forbidden"

        ws.send_json({"event": "join-room", "room": "lobby"})
        assert ws.receive_json()["payload"]["code"] == "validation_error"


def test_malformed_messages_get_errors(client):
    with client.websocket_connect("/ws?token=alice") as ws:
        _connect(ws)
        ws.send_text("not json")
        assert ws.receive_json()["payload"]["code"] == "validation_error"

        ws.send_json({"event": "task-exploded", "room": "project:1"})
        assert ws.receive_json()["payload"]["code"] == "validation_error"

        # The connection survives bad input
        assert _sync(ws)["event"] == "pong"


def test_rest_mutations_reach_other_subscribers(client):
    project, room = _shared_project(client)

    with client.websocket_connect("/ws?token=alice") as a, client.websocket_connect("/ws?token=bob") as b:
        alice_conn = _connect(a)
        _connect(b)
        _join(a, room)
        _join(b, room)

        response = client.post(
            "/api/tasks/",
            json={"title": "Live task", "project_id": project["id"]},
            headers={**_auth("alice"), "X-Connection-Id": alice_conn},
        )
        assert response.status_code == 201
        task = response.json()

        message = b.receive_json()
        assert message["event"] == "task-created"
        assert message["room"] == room
        assert message["payload"]["id"] == task["id"]
        assert message["payload"]["title"] == "Live task"

        # The originating connection does not get its own change back
        assert _sync(a)["event"] == "pong"

        # Without the header every subscriber is notified
        client.delete(f"/api/tasks/{task['id']}", headers=_auth("alice"))
        assert a.receive_json() == {"event": "task-deleted", "room": room, "payload": {"id": task["id"]}}
        assert b.receive_json() == {"event": "task-deleted", "room": room, "payload": {"id": task["id"]}}


def test_member_changes_are_broadcast(client):
    project, room = _shared_project(client)

    with client.websocket_connect("/ws?token=bob") as b:
        _connect(b)
        _join(b, room)

        client.put(
            f"/api/projects/{project['id']}/members/bob/role", json={"role": "Viewer"}, headers=_auth("alice")
        )
        message = b.receive_json()
        assert message["event"] == "project-updated"
        assert message["payload"]["members"][0]["role"] == "Viewer"
