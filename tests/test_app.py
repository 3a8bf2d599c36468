from concurrent.futures import ThreadPoolExecutor

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from switchboard.app import create_app
from switchboard.config import Config
from switchboard.journal import MemoryStore


@pytest.fixture
def client():
    with TestClient(create_app(Config(), store=MemoryStore())) as test_client:
        yield test_client


@pytest.fixture
def secured_client():
    with TestClient(create_app(Config(api_key="secret"), store=MemoryStore())) as test_client:
        yield test_client


def receive_until(ws, msg_type):
    while True:
        message = ws.receive_json()
        if message["type"] == msg_type:
            return message


# =============================================================================
# HTTP
# =============================================================================


def test_health(client) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["active_request"] is None
    assert body["backlog"] == 0
    assert body["queue_enabled"] is True


def test_root(client) -> None:
    body = client.get("/").json()
    assert body["service"] == "Agent Switchboard"
    assert body["endpoints"]["ask"] == "/api/ask"


def test_malformed_questions_return_error_value(client) -> None:
    body = client.post("/api/ask-questions", json={"questions": "not a list"}).json()
    assert body["value"] == '{"error": "Invalid questions input"}'
    assert body["cancelled"] is False

    body = client.post("/api/ask-questions", json={"questions": []}).json()
    assert body["value"] == '{"error": "No valid questions provided"}'


# =============================================================================
# Operator WebSocket
# =============================================================================


def test_queued_answer_serves_ask(client) -> None:
    with client.websocket_connect("/ws") as ws:
        assert ws.receive_json()["type"] == "state"

        ws.send_json({"type": "add_queue_prompt", "data": {"prompt": "use postgres"}})
        update = receive_until(ws, "update_queue")
        assert [item["prompt"] for item in update["data"]["queue"]] == ["use postgres"]

        body = client.post("/api/ask", json={"question": "Which database?"}).json()
        assert body["value"] == "use postgres"
        assert body["queue"] is True


def test_live_answer_resolves_blocked_ask(client) -> None:
    with client.websocket_connect("/ws") as ws:
        assert ws.receive_json()["type"] == "state"

        with ThreadPoolExecutor(max_workers=1) as pool:
            pending = pool.submit(client.post, "/api/ask", json={
                "question": "Pick a database:\n1. Postgres\n2. MySQL",
            })
            notification = receive_until(ws, "tool_call_pending")
            assert [c["label"] for c in notification["data"]["choices"]] == ["Postgres", "MySQL"]

            ws.send_json({"type": "resolve", "data": {"id": notification["data"]["id"], "value": "1"}})
            body = pending.result(timeout=5).json()

        assert body["value"] == "1"
        assert body["cancelled"] is False


def test_get_state_replies_to_sender(client) -> None:
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        ws.send_json({"type": "get_state"})
        state = receive_until(ws, "state")
        assert state["data"]["active_request"] is None
        assert state["data"]["backlog_count"] == 0


def test_bad_header_key_is_rejected(secured_client) -> None:
    with pytest.raises(WebSocketDisconnect) as exc:
        with secured_client.websocket_connect("/ws", headers={"Authorization": "Bearer wrong"}) as ws:
            ws.receive_json()
    assert exc.value.code == 4001


def test_header_auth_sends_state(secured_client) -> None:
    with secured_client.websocket_connect("/ws", headers={"Authorization": "Bearer secret"}) as ws:
        assert ws.receive_json()["type"] == "state"


def test_first_message_auth(secured_client) -> None:
    with secured_client.websocket_connect("/ws") as ws:
        ws.send_json({"type": "auth", "data": {"api_key": "secret"}})
        assert ws.receive_json()["type"] == "auth_success"
        assert ws.receive_json()["type"] == "state"


def test_unauthenticated_message_is_rejected(secured_client) -> None:
    with pytest.raises(WebSocketDisconnect) as exc:
        with secured_client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "get_state"})
            ws.receive_json()
    assert exc.value.code == 4001
