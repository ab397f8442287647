import pytest

fastapi = pytest.importorskip("fastapi")
pytest.importorskip("httpx")
from fastapi.testclient import TestClient

from duelmatch.backend.api import create_app
from duelmatch.backend.broker import BrokerService
from duelmatch.backend.config import BrokerSettings


def _client(broker: BrokerService | None = None) -> TestClient:
    service = broker if broker is not None else BrokerService(settings=BrokerSettings())
    return TestClient(create_app(broker=service, run_supervisor=False))


def test_health_reports_queue_depth_and_up_since() -> None:
    broker = BrokerService(settings=BrokerSettings())
    client = _client(broker)

    client.post("/api/queue/join", json={"identity": "a"})
    response = client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["queueDepth"] == 1
    assert data["upSince"] == broker.up_since


def test_join_without_identity_generates_one() -> None:
    client = _client()

    response = client.post("/api/queue/join", json={})

    assert response.status_code == 200
    data = response.json()
    assert data["identity"].startswith("anon-")
    assert data["status"] == "queued"
    assert data["position"] == 1
    assert data["match"] is None


def test_second_join_returns_match_for_the_guest() -> None:
    client = _client()

    client.post("/api/queue/join", json={"identity": "x"})
    response = client.post("/api/queue/join", json={"identity": "y"})

    data = response.json()
    assert data["status"] == "matched"
    assert data["position"] is None
    assert data["match"]["role"] == "guest"
    assert data["match"]["peerAddress"] == "x"
    assert data["match"]["sessionId"]


def test_duplicate_join_reports_already_queued() -> None:
    client = _client()

    client.post("/api/queue/join", json={"identity": "x"})
    response = client.post("/api/queue/join", json={"identity": "x"})

    assert response.json()["status"] == "already-queued"
    assert response.json()["position"] == 1


def test_leave_is_idempotent() -> None:
    client = _client()
    client.post("/api/queue/join", json={"identity": "x"})

    first = client.post("/api/queue/leave", json={"identity": "x"})
    second = client.post("/api/queue/leave", json={"identity": "x"})

    assert first.json() == {"status": "removed"}
    assert second.json() == {"status": "not-found"}


def test_position_lookup_returns_404_when_not_queued() -> None:
    client = _client()
    client.post("/api/queue/join", json={"identity": "x"})

    found = client.get("/api/queue/x")
    missing = client.get("/api/queue/y")

    assert found.json() == {"identity": "x", "status": "queued", "position": 1, "match": None}
    assert missing.status_code == 404


def test_first_joiner_can_look_up_its_match() -> None:
    client = _client()

    client.post("/api/queue/join", json={"identity": "x"})
    guest = client.post("/api/queue/join", json={"identity": "y"}).json()
    response = client.get("/api/queue/x")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "matched"
    assert data["position"] is None
    assert data["match"]["role"] == "host"
    assert data["match"]["peerAddress"] == "y"
    assert data["match"]["sessionId"] == guest["match"]["sessionId"]


def test_join_rejects_empty_identity() -> None:
    client = _client()

    response = client.post("/api/queue/join", json={"identity": ""})

    assert response.status_code == 422


def test_websocket_rejects_missing_identity() -> None:
    client = _client()

    with pytest.raises(Exception):
        with client.websocket_connect("/ws/queue"):
            pass


def test_websocket_pushes_positions_then_match() -> None:
    broker = BrokerService(settings=BrokerSettings())
    app = create_app(broker=broker, run_supervisor=False)

    with TestClient(app) as client:
        with client.websocket_connect("/ws/queue?identity=x") as ws_x:
            ws_x.send_text("not json")
            ws_x.send_json({"type": "join"})
            assert ws_x.receive_json() == {"type": "positionUpdate", "position": 1}

            with client.websocket_connect("/ws/queue?identity=y") as ws_y:
                ws_y.send_json({"type": "join"})
                y_position = ws_y.receive_json()
                y_match = ws_y.receive_json()
                x_position = ws_x.receive_json()
                x_match = ws_x.receive_json()

    assert y_position == {"type": "positionUpdate", "position": 2}
    assert x_position == {"type": "positionUpdate", "position": 1}
    assert x_match["type"] == "matched"
    assert x_match["role"] == "host"
    assert x_match["peerAddress"] == "y"
    assert y_match["role"] == "guest"
    assert y_match["sessionId"] == x_match["sessionId"]


def test_websocket_disconnect_leaves_queue() -> None:
    broker = BrokerService(settings=BrokerSettings())
    app = create_app(broker=broker, run_supervisor=False)

    with TestClient(app) as client:
        with client.websocket_connect("/ws/queue?identity=x") as ws_x:
            ws_x.send_json({"type": "join"})
            ws_x.receive_json()
            ws_x.send_json({"type": "ping"})
            ws_x.send_json({"type": "leave"})
            ws_x.send_json({"type": "join"})
            assert ws_x.receive_json() == {"type": "positionUpdate", "position": 1}
        response = client.get("/health")

    assert response.json()["queueDepth"] == 0
    assert broker.queue.history()[-1].kind == "removed"
