"""WebSocket endpoint tests — handshake auth, ping/pong, client events.

Learn: Starlette's TestClient drives the real /ws route. The lifespan
is not entered, so no Redis, no heartbeat loop, and the hub has no
session factory (presence writes are skipped).
"""

import json
import uuid

import pytest
from starlette.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from todolive.auth.jwt import create_access_token, create_refresh_token
from todolive.main import app


@pytest.fixture
def ws_client(hub):
    return TestClient(app)


@pytest.fixture
def user_id():
    return str(uuid.uuid4())


def test_missing_token_is_rejected(ws_client, hub):
    with pytest.raises(WebSocketDisconnect) as exc:
        with ws_client.websocket_connect("/ws"):
            pass
    assert exc.value.code == 4001
    assert hub.registry.connection_count() == 0


def test_invalid_token_is_rejected(ws_client):
    with pytest.raises(WebSocketDisconnect) as exc:
        with ws_client.websocket_connect("/ws?token=not-a-jwt"):
            pass
    assert exc.value.code == 4001


def test_refresh_token_is_rejected(ws_client, user_id):
    token = create_refresh_token(user_id)
    with pytest.raises(WebSocketDisconnect) as exc:
        with ws_client.websocket_connect(f"/ws?token={token}"):
            pass
    assert exc.value.code == 4001


def test_ping_pong(ws_client, user_id):
    token = create_access_token(user_id)
    with ws_client.websocket_connect(f"/ws?token={token}") as ws:
        ws.send_text(json.dumps({"type": "ping"}))
        frame = json.loads(ws.receive_text())
    assert frame["type"] == "pong"
    assert "timestamp" in frame["data"]


def test_bearer_header_is_accepted(ws_client, hub, user_id):
    token = create_access_token(user_id)
    with ws_client.websocket_connect(
        "/ws", headers={"Authorization": f"Bearer {token}"}
    ) as ws:
        ws.send_text(json.dumps({"type": "ping"}))
        assert json.loads(ws.receive_text())["type"] == "pong"
        assert hub.registry.is_online(user_id)
        assert hub.registry.connection_count() == 1


def test_client_event_is_relayed_to_own_room(ws_client, user_id):
    token = create_access_token(user_id)
    with ws_client.websocket_connect(f"/ws?token={token}") as ws:
        ws.send_text(json.dumps({"type": "user_activity", "data": {"action": "typing"}}))
        frame = json.loads(ws.receive_text())

    assert frame["type"] == "user_activity"
    assert frame["data"]["action"] == "typing"
    assert frame["data"]["user_id"] == user_id
    assert "timestamp" in frame["data"]


def test_malformed_and_unknown_frames_are_ignored(ws_client, user_id):
    token = create_access_token(user_id)
    with ws_client.websocket_connect(f"/ws?token={token}") as ws:
        ws.send_text("{not json")
        ws.send_text(json.dumps(["a", "list"]))
        ws.send_text(json.dumps({"type": "drop_database"}))
        ws.send_text(json.dumps({"type": "ping"}))
        # The first frame back is the pong: nothing was sent for the junk
        assert json.loads(ws.receive_text())["type"] == "pong"
