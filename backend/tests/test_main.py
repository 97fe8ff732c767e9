from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from wsrelay import main
from wsrelay.db import InMemorySubscriptionStore, Store
from wsrelay.errors import StoreUnavailable
from wsrelay.models import ConnectionManager
from wsrelay.sender import Dispatcher, HttpPushChannel, MessageEnvelope
from wsrelay.utilities import utc_now


class FailingStore(InMemorySubscriptionStore):
    def batch_write(self, items):
        raise StoreUnavailable("table offline")


class BrokenRegistry(Store):
    def batch_put(self, connection_id, topics):
        if topics:
            raise RuntimeError("unexpected")


@pytest.fixture
def store():
    return InMemorySubscriptionStore()


@pytest.fixture
def client(store, sleeper, monkeypatch):
    monkeypatch.setattr(main, "REGISTRY", Store(store, sleep=sleeper))
    monkeypatch.setattr(main, "CONNECTIONS", ConnectionManager())
    with TestClient(main.app) as client:
        yield client


def test_connect_subscribes_initial_topics(client):
    with client.websocket_connect("/ws?topics=orders,users/123") as ws:
        hello = ws.receive_json()
        assert hello["type"] == "connected"
        assert hello["topics"] == ["orders", "users/123"]
        connection_id = hello["connection_id"]

        for topic in ["orders", "users/123"]:
            response = client.get(f"/topics/{topic}/connections")
            assert response.status_code == 200
            assert response.json()["connections"] == [connection_id]


def test_subscribe_frame(client):
    with client.websocket_connect("/ws") as ws:
        connection_id = ws.receive_json()["connection_id"]
        ws.send_json({"type": "subscribe", "topics": ["ab12"], "request_id": "r1"})
        ack = ws.receive_json()

        assert ack["type"] == "ack"
        assert ack["request_id"] == "r1"
        assert client.get("/topics/ab12/connections").json()["connections"] == [connection_id]


def test_subscribe_frame_requires_topics(client):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        ws.send_json({"type": "subscribe", "topics": [], "request_id": "r2"})
        err = ws.receive_json()
        assert err["type"] == "error"
        assert err["error"]["code"] == "BAD_REQUEST"


def test_ping_and_default_route(client):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        ws.send_json({"type": "ping", "request_id": "p1"})
        assert ws.receive_json()["type"] == "pong"
        ws.send_text("not json")
        assert ws.receive_json() == {"ok": True}
        ws.send_json({"type": "hello"})
        assert ws.receive_json() == {"ok": True}


def test_push_reaches_live_connection(client):
    with client.websocket_connect("/ws") as ws:
        connection_id = ws.receive_json()["connection_id"]
        response = client.post(f"/@connections/{connection_id}", content=b'{"n": 1}')

        assert response.status_code == 200
        assert ws.receive_text() == '{"n": 1}'


def test_push_to_unknown_connection_is_gone(client):
    assert client.post("/@connections/nobody", content=b"x").status_code == 410


def test_dispatcher_delivers_through_gateway(client):
    dispatcher = Dispatcher(HttpPushChannel("http://testserver", client=client))
    with client.websocket_connect("/ws?topics=orders") as ws:
        connection_id = ws.receive_json()["connection_id"]
        batch = [
            MessageEnvelope("m1", connection_id, b"first"),
            MessageEnvelope("m2", "stale-connection", b"second"),
            MessageEnvelope("m3", None, b"third"),
        ]

        report = dispatcher.dispatch(batch, deadline=utc_now() + timedelta(minutes=1))

        assert report == ["m2", "m3"]
        assert ws.receive_text() == "first"


def test_failed_connect_subscription_closes_socket(client, monkeypatch):
    monkeypatch.setattr(main, "REGISTRY", Store(FailingStore()))
    with client.websocket_connect("/ws?topics=orders") as ws:
        err = ws.receive_json()
        assert err["error"]["code"] == "SUBSCRIBE_FAILED"


def test_health(client):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        body = client.get("/health").json()
        assert body["connections"] == 1
        assert body["uptime_sec"] >= 0


def test_unexpected_error_sends_internal_frame(client, monkeypatch):
    monkeypatch.setattr(main, "REGISTRY", BrokenRegistry(InMemorySubscriptionStore()))
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        ws.send_json({"type": "subscribe", "topics": ["ab12"], "request_id": "r3"})
        err = ws.receive_json()

        assert err["type"] == "error"
        assert err["error"]["code"] == "INTERNAL"
