# tests/test_websocket.py — Connection registry, WebSocket stats, health and security
import pytest
from httpx import AsyncClient

from notification_sink import PendingPush, publish
from realtime import ConnectionManager, manager
from tests.conftest import FakeWebSocket, get_auth_headers


def _push(user_id, channels=("in-app",)):
    return PendingPush(
        notification_id="n1", user_id=user_id, channels=channels,
        payload={"type": "notification", "data": {"id": "n1"}},
    )


@pytest.mark.asyncio
async def test_connect_and_disconnect_tracks_workspace():
    registry = ConnectionManager()
    ws = FakeWebSocket()
    conn_id = await registry.connect(ws, "w1", "u1")

    assert ws.accepted
    assert registry.connection_count("w1") == 1
    assert registry.get_online_users("w1") == ["u1"]

    registry.disconnect("w1", conn_id)
    assert registry.connection_count("w1") == 0
    assert registry.get_stats() == {"total_connections": 0, "workspaces": 0}


@pytest.mark.asyncio
async def test_user_receives_on_every_connection_in_workspace_only():
    registry = ConnectionManager()
    tab1, tab2, other_ws, other_user = FakeWebSocket(), FakeWebSocket(), FakeWebSocket(), FakeWebSocket()
    await registry.connect(tab1, "w1", "u1")
    await registry.connect(tab2, "w1", "u1")
    await registry.connect(other_ws, "w2", "u1")
    await registry.connect(other_user, "w1", "u2")

    delivered = await registry.send_to_user("w1", "u1", {"type": "ping"})

    assert delivered == 2
    assert tab1.sent == tab2.sent == [{"type": "ping"}]
    assert other_ws.sent == []
    assert other_user.sent == []


@pytest.mark.asyncio
async def test_failed_socket_is_dropped():
    registry = ConnectionManager()
    await registry.connect(FakeWebSocket(fail=True), "w1", "u1")
    healthy = FakeWebSocket()
    await registry.connect(healthy, "w1", "u2")

    delivered = await registry.broadcast_to_workspace("w1", {"type": "hello"})

    assert delivered == 1
    assert registry.connection_count("w1") == 1
    assert registry.get_online_users("w1") == ["u2"]


@pytest.mark.asyncio
async def test_broadcast_excludes_sender():
    registry = ConnectionManager()
    sender, peer = FakeWebSocket(), FakeWebSocket()
    await registry.connect(sender, "w1", "u1")
    await registry.connect(peer, "w1", "u2")

    await registry.broadcast_to_workspace("w1", {"type": "user.online"}, exclude_user="u1")
    assert sender.sent == []
    assert peer.sent == [{"type": "user.online"}]


@pytest.mark.asyncio
async def test_publish_is_best_effort_and_channel_aware():
    ok = FakeWebSocket()
    await manager.connect(ok, "w1", "u1")
    await manager.connect(FakeWebSocket(fail=True), "w1", "u2")

    delivered = await publish("w1", [_push("u1"), _push("u2"), _push("u1", channels=("email",))])

    assert delivered == 1
    assert len(ok.sent) == 1


@pytest.mark.asyncio
async def test_websocket_stats(client: AsyncClient):
    await manager.connect(FakeWebSocket(), "w1", "u1")
    resp = await client.get("/ws/stats")
    assert resp.status_code == 200
    assert resp.json() == {"total_connections": 1, "workspaces": 1}


@pytest.mark.asyncio
async def test_health_endpoint(client: AsyncClient):
    """Health endpoint returns OK"""
    resp = await client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["version"] == "1.0.0"


@pytest.mark.asyncio
async def test_security_headers(client: AsyncClient):
    """Responses include security, request id and timing headers"""
    resp = await client.get("/health")
    assert resp.headers.get("X-Content-Type-Options") == "nosniff"
    assert resp.headers.get("X-Frame-Options") == "DENY"
    assert "x-request-id" in {k.lower() for k in resp.headers}
    assert "x-response-time" in {k.lower() for k in resp.headers}


@pytest.mark.asyncio
async def test_request_id_is_echoed(client: AsyncClient):
    resp = await client.get("/", headers={"X-Request-ID": "req-123"})
    assert resp.headers["X-Request-ID"] == "req-123"
    assert resp.json()["name"] == "Taskforge"


@pytest.mark.asyncio
async def test_invalid_token_rejected(client: AsyncClient):
    resp = await client.get("/api/v1/notifications", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_validation_error_carries_request_id(client: AsyncClient, task_list, owner):
    resp = await client.post(
        f"/api/v1/lists/{task_list.id}/tasks", json={"title": ""},
        headers={**get_auth_headers(owner), "X-Request-ID": "req-422"},
    )
    assert resp.status_code == 422
    body = resp.json()
    assert body["request_id"] == "req-422"
    assert body["detail"][0]["loc"] == ["body", "title"]
