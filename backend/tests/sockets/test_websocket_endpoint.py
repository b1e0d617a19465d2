from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from edupath.main import app
from edupath.realtime.messages import AuthenticatedMessage, ConnectedMessage, parse_outbound

ADMIN_HEADERS = {"X-Admin-Token": "test-admin-token"}


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


def test_connect_and_authenticate(client, jwt_service):
    with client.websocket_connect("/ws") as websocket:
        connected = parse_outbound(websocket.receive_json())
        assert isinstance(connected, ConnectedMessage)

        websocket.send_json({"type": "authenticate", "token": jwt_service.sign({"userId": "student-1"})})
        authenticated = parse_outbound(websocket.receive_json())
        assert isinstance(authenticated, AuthenticatedMessage)
        assert authenticated.user_id == "student-1"

        websocket.send_json({"type": "ping"})
        assert websocket.receive_json()["type"] == "pong"

        stats = client.get("/ws/stats", headers=ADMIN_HEADERS).json()
        assert stats["totalConnections"] == 1
        assert stats["authenticatedConnections"] == 1


def test_invalid_token_closes_socket(client):
    with client.websocket_connect("/ws") as websocket:
        websocket.receive_json()
        websocket.send_json({"type": "authenticate", "token": "forged.token.value"})

        assert websocket.receive_json() == {"type": "auth_error", "message": "Invalid authentication token"}
        with pytest.raises(WebSocketDisconnect) as excinfo:
            websocket.receive_json()
        assert excinfo.value.code == 1008


def test_malformed_text_keeps_socket_open(client):
    with client.websocket_connect("/ws") as websocket:
        websocket.receive_json()
        websocket.send_text("definitely not json")
        assert websocket.receive_json() == {"type": "error", "message": "Invalid message format"}
        websocket.send_json({"type": "subscribe", "topic": "applications"})
        assert websocket.receive_json()["topic"] == "applications"


def test_forum_events_flow_to_sockets(client, jwt_service):
    service = app.state.forum_service
    with client.websocket_connect("/ws") as websocket:
        websocket.receive_json()
        websocket.send_json({"type": "authenticate", "token": jwt_service.sign({"userId": "student-1"})})
        websocket.receive_json()

        post = client.portal.call(lambda: service.create_post(author_id="student-2", content="Visa interview tips"))

        created = websocket.receive_json()
        assert created["type"] == "forum_post_created"
        assert created["data"]["post"]["id"] == post.id


def test_health_and_metrics(client):
    assert client.get("/health/live").json() == {"status": "ok"}
    assert client.get("/metrics").status_code == 403
    response = client.get("/metrics", headers=ADMIN_HEADERS)
    assert response.status_code == 200
    assert "edupath_ws_connections" in response.text


def test_stats_require_admin(client):
    assert client.get("/ws/stats").status_code == 403
