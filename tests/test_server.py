"""Tests for the WebSocket server endpoints."""

import asyncio
import json
import time

import pytest
from fastapi.testclient import TestClient

from handshake_engine.config import DisconnectPolicy, EngineConfig, TrackerConfig
from handshake_engine.correlator import HandshakeEvent
from handshake_engine.engine import HandshakeEngine
from handshake_engine.events import Disconnected, Paired
from handshake_engine.orientation import Quaternion
from handshake_engine.server import NetworkHub, app, broadcast, state


@pytest.fixture
def client():
    state.configure(EngineConfig())
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c
    state.running = False


@pytest.fixture
def reset_client():
    state.configure(EngineConfig(
        disconnect_policy=DisconnectPolicy.RESET,
        tracker=TrackerConfig(timeout_ticks=100_000),
    ))
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c
    state.running = False


class FakeObserver:
    def __init__(self, joiner=None, fail=False):
        self.sent = []
        self.joiner = joiner
        self.fail = fail

    async def send_text(self, payload):
        if self.joiner is not None:
            state.clients.add(self.joiner)
        await asyncio.sleep(0)
        if self.fail:
            raise ConnectionError("gone")
        self.sent.append(json.loads(payload))


def wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


class TestRESTEndpoints:
    def test_api_status(self, client):
        resp = client.get("/api/status")
        assert resp.status_code == 200
        data = resp.json()
        assert data["running"] is True
        assert data["tick_ms"] == 10
        assert data["disconnect_policy"] == "persist"
        assert data["handshakes"] == 0
        assert "clients" in data
        assert "profiler" in data

    def test_ticks_advance(self, client):
        assert wait_for(lambda: client.get("/api/status").json()["ticks"] > 3)

    def test_api_devices_empty(self, client):
        resp = client.get("/api/devices")
        assert resp.status_code == 200
        assert resp.json() == {"devices": []}

    def test_metrics_endpoint(self, client):
        resp = client.get("/metrics")
        assert resp.status_code == 200
        assert "handshake_engine_ticks_total" in resp.text
        assert "handshake_engine_active_connections 0" in resp.text


class TestObserverSocket:
    def test_ws_connect(self, client):
        with client.websocket_connect("/ws") as ws:
            msg = ws.receive_json()
            assert msg["type"] == "connected"
            assert msg["tick_ms"] == 10
            assert msg["devices"] == 0

    def test_ping(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json({"type": "ping"})
            assert ws.receive_json()["type"] == "pong"

    def test_handshake_broadcast(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            state.handshakes.append(HandshakeEvent(1, 2, 40, 44, tick=66))
            msg = ws.receive_json()
            assert msg["type"] == "handshake"
            assert msg["devices"] == [1, 2]
            assert msg["amplitudes"] == [40, 44]
            assert "timestamp" in msg
        assert client.get("/api/status").json()["last_handshake"]["tick"] == 66


class TestDeviceSocket:
    def test_pair_over_socket(self, client):
        with client.websocket_connect("/ws/device") as ws:
            ws.send_json({"type": "paired", "device": "arm-1"})
            assert ws.receive_json() == {"type": "accepted", "event": "paired"}
            ws.send_json({"type": "orientation", "device": "arm-1", "quaternion": [1, 0, 0, 0]})
            assert ws.receive_json()["event"] == "orientation"

            assert wait_for(lambda: client.get("/api/devices").json()["devices"])
            device = client.get("/api/devices").json()["devices"][0]
            assert device["device"] == 1
            assert device["handle"] == "arm-1"

            with client.websocket_connect("/ws") as observer:
                observer.receive_json()
                observer.send_json({"type": "get_devices"})
                msg = observer.receive_json()
                assert msg["type"] == "devices"
                assert msg["devices"][0]["handle"] == "arm-1"

    def test_bad_messages(self, client):
        with client.websocket_connect("/ws/device") as ws:
            ws.send_text("not json")
            assert ws.receive_json()["type"] == "error"
            ws.send_json({"type": "wave", "device": "arm-1"})
            msg = ws.receive_json()
            assert msg["type"] == "error"
            assert "wave" in msg["detail"]
            ws.send_json({"type": "tick"})
            assert ws.receive_json()["type"] == "error"

    def test_notification_routed_to_device(self, client):
        with client.websocket_connect("/ws/device") as ws:
            ws.send_json({"type": "paired", "device": "arm-1"})
            ws.receive_json()
            state.hub.notify_user_action("arm-1")
            assert ws.receive_json() == {"type": "notify_user_action", "device": "arm-1"}


class TestNetworkHub:
    def test_drains_in_order(self):
        hub = NetworkHub()
        engine = HandshakeEngine()
        hub.push(Paired("b"))
        hub.push(Paired("a"))
        assert hub.pending == 2

        hub.run(10, engine)
        assert hub.pending == 0
        assert engine.registry.lookup("b") == 1
        assert engine.registry.lookup("a") == 2

    def test_outbox(self):
        hub = NetworkHub()
        hub.notify_user_action("arm-1")
        assert hub.outbox == [{"type": "notify_user_action", "device": "arm-1"}]
        assert not hub.exhausted


class TestBroadcast:
    def teardown_method(self):
        state.clients = set()

    def test_client_joins_mid_broadcast(self):
        late = FakeObserver()
        early = FakeObserver(joiner=late)
        state.clients = {early}
        asyncio.run(broadcast({"type": "handshake", "tick": 66}))
        assert early.sent == [{"type": "handshake", "tick": 66}]
        assert state.clients == {early, late}

    def test_dead_client_dropped(self):
        alive = FakeObserver()
        dead = FakeObserver(fail=True)
        state.clients = {alive, dead}
        asyncio.run(broadcast({"type": "handshake"}))
        assert alive.sent == [{"type": "handshake"}]
        assert state.clients == {alive}


class TestTickLoop:
    def test_survives_failed_tick(self, client, monkeypatch):
        real_step = state.driver.step
        calls = []

        def flaky_step():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("hub fault")
            return real_step()

        monkeypatch.setattr(state.driver, "step", flaky_step)
        start = client.get("/api/status").json()["ticks"]
        assert wait_for(lambda: client.get("/api/status").json()["ticks"] > start + 3)
        assert client.get("/api/status").json()["running"] is True


class TestDeviceDrop:
    def test_dropped_socket_disconnects_devices(self, client, monkeypatch):
        pushed = []
        real_push = state.hub.push

        def spy(event):
            pushed.append(event)
            real_push(event)

        monkeypatch.setattr(state.hub, "push", spy)
        with client.websocket_connect("/ws/device") as ws:
            for handle in ("arm-1", "arm-2"):
                ws.send_json({"type": "paired", "device": handle})
                ws.receive_json()
            assert client.get("/api/status").json()["devices_connected"] == 2

        assert wait_for(lambda: Disconnected("arm-1") in pushed and Disconnected("arm-2") in pushed)
        assert wait_for(lambda: client.get("/api/status").json()["devices_connected"] == 0)

    def test_explicit_disconnect_not_repeated(self, client, monkeypatch):
        pushed = []
        real_push = state.hub.push

        def spy(event):
            pushed.append(event)
            real_push(event)

        monkeypatch.setattr(state.hub, "push", spy)
        with client.websocket_connect("/ws/device") as ws:
            ws.send_json({"type": "paired", "device": "arm-1"})
            ws.receive_json()
            ws.send_json({"type": "disconnected", "device": "arm-1"})
            assert ws.receive_json()["event"] == "disconnected"

        time.sleep(0.1)
        assert pushed.count(Disconnected("arm-1")) == 1

    def test_reset_policy_applies_to_dropped_socket(self, reset_client):
        client = reset_client
        with client.websocket_connect("/ws/device") as ws:
            ws.send_json({"type": "paired", "device": "arm-1"})
            ws.receive_json()
            assert wait_for(lambda: client.get("/api/devices").json()["devices"][0]["analyzing"])
            # Out of the band, so the reset tracker cannot warm up again
            ws.send_json({
                "type": "orientation",
                "device": "arm-1",
                "quaternion": Quaternion.from_pitch(0).to_list(),
            })
            ws.receive_json()

        assert wait_for(lambda: not client.get("/api/devices").json()["devices"][0]["analyzing"])
        assert client.get("/api/devices").json()["devices"][0]["arc_counter"] == 0
