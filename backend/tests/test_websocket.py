"""Tests for the /api/ws endpoint: handshake auth, sync snapshot and frames."""

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

import rendezvous.dependencies.auth as auth_deps
from rendezvous.auth.strategy import issue_token
from rendezvous.websocket.dispatcher import dispatcher


@pytest.fixture
def ws_client(client: TestClient):
    """Create a WebSocket test client for the /api/ws endpoint."""
    with client.websocket_connect("/api/ws") as websocket:
        yield websocket


@pytest.fixture
def jwt_auth(monkeypatch):
    """Run the handshake through real token validation."""
    monkeypatch.setattr(auth_deps, "AUTH_DISABLED", False)


def test_connect_receives_sync_snapshot(ws_client):
    frame = ws_client.receive_json()

    assert frame["v"] == 1
    assert frame["type"] == "sync"
    assert frame["topic"].startswith("user:")
    assert frame["data"]["unread_messages"] == 0
    assert frame["data"]["unread_conversations"] == 0
    assert frame["data"]["notifications"]["total"] == 0


def test_ping_pong(ws_client):
    ws_client.receive_json()  # sync

    ws_client.send_json({"type": "ping", "req_id": "p-1", "data": {"timestamp": 123456789}})
    response = ws_client.receive_json()

    assert response["type"] == "pong"
    assert response["topic"] == "system"
    assert response["req_id"] == "p-1"
    assert response["data"]["timestamp"] == 123456789


def test_sync_on_request(ws_client):
    first = ws_client.receive_json()

    ws_client.send_json({"type": "sync", "req_id": "s-1"})
    again = ws_client.receive_json()

    assert again["type"] == "sync"
    assert again["req_id"] == "s-1"
    assert again["data"]["user_id"] == first["data"]["user_id"]


def test_unknown_and_malformed_frames_get_error_envelopes(ws_client):
    ws_client.receive_json()  # sync

    ws_client.send_json({"type": "subscribe", "req_id": "x-1"})
    unknown = ws_client.receive_json()
    assert unknown["type"] == "error"
    assert "Unknown message type" in unknown["data"]["error"]
    assert unknown["req_id"] == "x-1"

    ws_client.send_text("not json")
    bad_json = ws_client.receive_json()
    assert bad_json["type"] == "error"
    assert bad_json["data"]["error"] == "Invalid JSON payload"

    ws_client.send_json({"data": {}})
    missing_type = ws_client.receive_json()
    assert missing_type["data"]["error"] == "Invalid message format"


def test_subscription_released_on_disconnect(client):
    with client.websocket_connect("/api/ws") as websocket:
        websocket.receive_json()
        assert dispatcher.subscription_count() >= 1
    assert dispatcher.subscription_count() == 0


def test_handshake_without_token_is_rejected(client, jwt_auth):
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with client.websocket_connect("/api/ws"):
            pass
    assert exc_info.value.code == 4401


def test_handshake_with_bad_token_is_rejected(client, jwt_auth):
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with client.websocket_connect("/api/ws?token=garbage"):
            pass
    assert exc_info.value.code == 4401


def test_handshake_with_valid_token(client, jwt_auth, make_user):
    alice = make_user()
    token = issue_token(alice.id)

    with client.websocket_connect(f"/api/ws?token={token}") as websocket:
        frame = websocket.receive_json()

    assert frame["type"] == "sync"
    assert frame["topic"] == f"user:{alice.id}"
    assert frame["data"]["user_id"] == alice.id
