from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from application.services.token_service import TokenService
from domain.chat import GroupRoomRef, Message
from main import app


def _token(user_id: str) -> str:
    # token creation only needs settings, never the unit of work
    return TokenService(uow_factory=None).create_access_token(user_id)


def _auth(user_id: str) -> dict:
    return {"Authorization": f"Bearer {_token(user_id)}"}


def _receive(ws, type_: str, limit: int = 20) -> dict:
    """Skip frames until one of ``type_`` arrives."""
    for _ in range(limit):
        frame = ws.receive_json()
        if frame["type"] == type_:
            return frame
    raise AssertionError(f"no {type_} frame within {limit} frames")


@pytest.fixture
def client(store):
    app.state.chat_store = store
    with TestClient(app) as c:
        yield c
    del app.state.chat_store


def test_health_and_root(client):
    assert client.get("/health").json()["data"] == {"status": "healthy"}
    body = client.get("/").json()
    assert body["code"] == 0
    assert body["data"]["websocket"] == "/api/v1/ws/chat"


def test_request_id_is_echoed(client):
    resp = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert resp.headers["X-Request-ID"] == "req-123"


def test_routes_require_bearer_token(client):
    resp = client.get("/api/v1/chat/presence")
    assert resp.status_code == 401
    assert resp.json()["code"] == 30001


def test_history_is_paginated_and_member_only(client, store):
    base = datetime(2024, 5, 1, 9, tzinfo=timezone.utc)
    for i in range(5):
        msg = Message.compose(
            sender_id="alice", room=GroupRoomRef("team"), content=f"m{i}", now=base + timedelta(minutes=i)
        )
        msg.id = f"m{i}"
        store.messages[msg.id] = msg

    resp = client.get("/api/v1/chat/rooms/group/team/messages", params={"limit": 2}, headers=_auth("bob"))
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["chatType"] == "group"
    assert [m["id"] for m in data["messages"]] == ["m3", "m4"]
    assert data["messages"][0]["sender"]["name"] == "Alice"

    before = (base + timedelta(minutes=3)).isoformat()
    resp = client.get(
        "/api/v1/chat/rooms/group/team/messages", params={"before": before, "limit": 2}, headers=_auth("bob")
    )
    assert [m["id"] for m in resp.json()["data"]["messages"]] == ["m1", "m2"]

    # no offset on the cursor: read as UTC
    resp = client.get(
        "/api/v1/chat/rooms/group/team/messages", params={"before": "2024-05-01T09:02:00"}, headers=_auth("bob")
    )
    assert resp.status_code == 200
    assert [m["id"] for m in resp.json()["data"]["messages"]] == ["m0", "m1"]

    resp = client.get(
        "/api/v1/chat/rooms/group/team/messages", headers={**_auth("carol"), "X-Request-ID": "req-403"}
    )
    assert resp.status_code == 403
    assert resp.json()["message"] == "Not authorized to view this group"
    error = resp.json()["error"]
    assert error["request_id"] == "req-403"
    assert error["timestamp"].endswith("Z")

    resp = client.get("/api/v1/chat/rooms/channel/team/messages", headers=_auth("bob"))
    assert resp.status_code == 400
    assert resp.json()["message"] == "Invalid chat type"


def test_open_direct_chat_is_find_or_create(client, store):
    resp = client.post("/api/v1/chat/direct", json={"participantId": "bob"}, headers=_auth("alice"))
    assert resp.status_code == 200
    assert resp.json()["data"]["id"] == "dm-ab"

    resp = client.post("/api/v1/chat/direct", json={"participantId": "carol"}, headers=_auth("alice"))
    room = resp.json()["data"]
    assert sorted(room["participants"]) == ["alice", "carol"]
    assert room["id"] in store.direct_rooms

    again = client.post("/api/v1/chat/direct", json={"participantId": "alice"}, headers=_auth("carol"))
    assert again.json()["data"]["id"] == room["id"]

    assert client.post("/api/v1/chat/direct", json={"participantId": "ghost"}, headers=_auth("alice")).status_code == 404
    assert client.post("/api/v1/chat/direct", json={"participantId": "alice"}, headers=_auth("alice")).status_code == 422


def test_websocket_rejects_bad_credentials(client):
    with client.websocket_connect("/api/v1/ws/chat?token=garbage") as ws:
        with pytest.raises(WebSocketDisconnect) as ei:
            ws.receive_json()
    assert ei.value.code == 1008


def test_websocket_accepts_authenticate_frame(client):
    with client.websocket_connect("/api/v1/ws/chat") as ws:
        ws.send_json({"type": "authenticate", "data": {"token": _token("alice")}})
        welcome = _receive(ws, "welcome")
        assert welcome["data"]["userId"] == "alice"
        ws.send_json({"type": "ping"})
        assert _receive(ws, "pong")["type"] == "pong"


def test_websocket_binary_frame_gets_an_error_and_connection_survives(client):
    with client.websocket_connect(f"/api/v1/ws/chat?token={_token('alice')}") as ws:
        _receive(ws, "welcome")
        ws.send_bytes(b"\x00\x01")
        assert _receive(ws, "error")["data"]["message"] == "Invalid message format"
        ws.send_json({"type": "ping"})
        assert _receive(ws, "pong")["type"] == "pong"


def test_websocket_binary_authenticate_frame_is_rejected(client):
    with client.websocket_connect("/api/v1/ws/chat") as ws:
        ws.send_bytes(b"\xff")
        with pytest.raises(WebSocketDisconnect) as ei:
            ws.receive_json()
    assert ei.value.code == 1008


def test_websocket_chat_round_trip(client):
    with client.websocket_connect(f"/api/v1/ws/chat?token={_token('alice')}") as alice:
        _receive(alice, "welcome")
        with client.websocket_connect(
            "/api/v1/ws/chat", headers={"Authorization": f"Bearer {_token('bob')}"}
        ) as bob:
            _receive(bob, "welcome")
            status = _receive(bob, "user_status_update")
            assert status["data"]["onlineUsers"] == ["alice", "bob"]

            alice.send_json({"type": "join_room", "data": {"roomId": "dm-ab", "chatType": "direct"}})
            # frames of one connection are handled in order: the pong means the join is done
            alice.send_json({"type": "ping"})
            _receive(alice, "pong")
            bob.send_json({"type": "join_room", "data": {"roomId": "dm-ab", "chatType": "direct"}})
            assert _receive(alice, "user_joined")["data"]["userId"] == "bob"

            alice.send_json({"type": "send_message", "data": {"roomId": "dm-ab", "chatType": "direct", "content": " hi bob "}})
            received = _receive(bob, "new_message")["data"]
            assert received["content"] == "hi bob"
            assert received["sender"]["id"] == "alice"
            assert _receive(alice, "new_message")["data"]["id"] == received["id"]

            bob.send_json({"type": "mark_as_read", "data": {"messageId": received["id"]}})
            read = _receive(alice, "message_read")["data"]
            assert read == {"messageId": received["id"], "userId": "bob", "readAt": read["readAt"]}

            bob.send_text("not json")
            assert _receive(bob, "error")["data"]["message"] == "Invalid message format"

            bob.send_json({"type": "typing", "data": {"roomId": "dm-ab", "isTyping": True}})
            assert _receive(alice, "user_typing")["data"]["userId"] == "bob"

        assert _receive(alice, "user_status_update")["data"]["onlineUsers"] == ["alice"]
