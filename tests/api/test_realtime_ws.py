import time

import pytest
from starlette.testclient import TestClient

from core.order_state import PREPARING
from main import app, registry
from services.token_service import TokenService


@pytest.fixture
def ws_client(session):
    with TestClient(app) as tc:
        yield tc


def wait_until(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def test_handshake_and_ping(ws_client):
    with ws_client.websocket_connect("/ws") as ws:
        hello = ws.receive_json()
        assert hello["type"] == "CONNECTION_ESTABLISHED"
        assert hello["payload"]["clientId"]

        ws.send_json({"type": "PING"})
        assert ws.receive_json()["type"] == "PONG"


def test_malformed_frame(ws_client):
    with ws_client.websocket_connect("/ws") as ws:
        ws.receive_json()
        ws.send_text("not json")
        error = ws.receive_json()
        assert error == {"type": "ERROR", "payload": {"message": "Malformed JSON"}}


def test_status_snapshot_and_push(ws_client, place_order, order_service, customer, admin, actor_for):
    order = place_order(customer)
    token = TokenService.create_access_token(user_id=customer.id, role=customer.role)

    with ws_client.websocket_connect("/ws") as ws:
        ws.receive_json()
        ws.send_json({"type": "auth", "token": token})
        assert ws.receive_json()["payload"] == {"userId": customer.id, "role": "customer"}

        ws.send_json({"type": "GET_ORDER_STATUS", "payload": {"orderId": order.id}})
        snapshot = ws.receive_json()
        assert snapshot["type"] == "ORDER_UPDATE"
        assert snapshot["payload"]["status"] == "pending"

        # Transition through the app's own engine so the push uses the app dispatcher
        response = ws_client.patch(
            f"/orders/{order.id}/status",
            headers={"Authorization": f"Bearer {TokenService.create_access_token(user_id=admin.id, role='admin')}"},
            json={"status": PREPARING}
        )
        assert response.status_code == 200

        update = ws.receive_json()
        assert update["type"] == "ORDER_UPDATE"
        assert update["payload"]["status"] == PREPARING
        assert update["payload"]["version"] > snapshot["payload"]["version"]


def test_disconnect_removes_channel(ws_client, customer):
    with ws_client.websocket_connect("/ws") as ws:
        client_id = ws.receive_json()["payload"]["clientId"]
        ws.send_json({"type": "auth", "userId": customer.id})
        ws.receive_json()
        assert client_id in registry

    assert wait_until(lambda: client_id not in registry)
    assert registry.channels_for_user(customer.id) == frozenset()
