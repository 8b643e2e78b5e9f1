"""WebSocket server for networked armbands.

Devices (or a bridge process next to the vendor hub) stream their events
as JSON over ``/ws/device``; observers on ``/ws`` receive every recognized
handshake. A background task ticks the engine at the configured cadence.

Endpoints:
- GET  /api/status    engine counters and cadence
- GET  /api/devices   per-device gesture state
- GET  /metrics       Prometheus text format
- WS   /ws            handshake broadcast
- WS   /ws/device     device event ingest; receives haptic notifications

Usage:
    handshake-engine serve
    # or
    uvicorn handshake_engine.server:app --host 0.0.0.0 --port 8766
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from collections import deque
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Hashable, Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import PlainTextResponse

from handshake_engine import __version__
from handshake_engine.config import EngineConfig
from handshake_engine.correlator import HandshakeEvent
from handshake_engine.driver import DeviceHub, HubDriver
from handshake_engine.engine import HandshakeEngine
from handshake_engine.events import (
    Disconnected,
    Event,
    EventConsumer,
    EventDecodeError,
    Tick,
    event_from_dict,
    event_type,
)
from handshake_engine.metrics import MetricsCollector
from handshake_engine.plugins import PluginManager

logger = logging.getLogger("handshake_engine.server")

CONFIG_ENV = "HANDSHAKE_ENGINE_CONFIG"


@asynccontextmanager
async def lifespan(app: FastAPI):
    if state.engine is None:
        path = os.environ.get(CONFIG_ENV)
        state.configure(EngineConfig.from_yaml(path) if path else None)
    state.running = True
    task = asyncio.create_task(tick_loop())
    try:
        yield
    finally:
        state.running = False
        await task


app = FastAPI(title="HandshakeEngine", version=__version__, lifespan=lifespan)


class NetworkHub(DeviceHub):
    """Buffers events received over WebSockets until the next tick drains them."""

    def __init__(self):
        self._inbox: deque[Event] = deque()
        self.outbox: list[dict] = []

    def push(self, event: Event):
        self._inbox.append(event)

    def run(self, duration_ms: int, consumer: EventConsumer):
        while self._inbox:
            consumer.consume(self._inbox.popleft())

    def notify_user_action(self, handle: Hashable):
        self.outbox.append({"type": "notify_user_action", "device": handle})

    @property
    def pending(self) -> int:
        return len(self._inbox)


# --- State ---

class ServerState:
    def __init__(self):
        self.clients: set[WebSocket] = set()
        self.device_sockets: dict[Hashable, WebSocket] = {}
        self.config: EngineConfig = EngineConfig()
        self.metrics = MetricsCollector()
        self.hub = NetworkHub()
        self.engine: Optional[HandshakeEngine] = None
        self.driver: Optional[HubDriver] = None
        self.plugin_manager: Optional[PluginManager] = None
        self.handshakes: list[HandshakeEvent] = []
        self.last_handshake: Optional[dict] = None
        self.running = False
        self.started_at = 0.0

    def configure(self, config: Optional[EngineConfig] = None):
        """(Re)build engine and driver; ids and gesture state start empty."""
        if config is not None:
            self.config = config

        self.plugin_manager = PluginManager()
        if self.config.plugin_dir:
            loaded = self.plugin_manager.load_directory(self.config.plugin_dir)
            logger.info("Loaded %d plugins from %s", loaded, self.config.plugin_dir)

        self.metrics = MetricsCollector()
        self.hub = NetworkHub()
        self.engine = HandshakeEngine(self.config, metrics=self.metrics, plugins=self.plugin_manager)
        self.engine.on_handshake(self.handshakes.append)
        self.driver = HubDriver(self.hub, self.engine)
        self.plugin_manager.startup({"engine": self.engine})


state = ServerState()


# --- API endpoints ---

@app.get("/api/status")
async def api_status():
    stats = state.engine.stats if state.engine else None
    return {
        "running": state.running,
        "tick_ms": state.config.tick_ms,
        "disconnect_policy": state.config.disconnect_policy.value,
        "clients": len(state.clients),
        "devices_connected": len(state.device_sockets),
        "ticks": stats.ticks if stats else 0,
        "handshakes": stats.handshakes if stats else 0,
        "timeouts": stats.timeouts if stats else 0,
        "last_handshake": state.last_handshake,
        "overruns": stats.overruns if stats else 0,
        "profiler": stats.profiler_summary if stats else {},
        "plugins": state.plugin_manager.plugin_names if state.plugin_manager else [],
    }


@app.get("/api/devices")
async def api_devices():
    return {"devices": state.engine.snapshot() if state.engine else []}


@app.get("/metrics")
async def metrics():
    state.metrics.set_connections(len(state.clients) + len(state.device_sockets))
    return PlainTextResponse(
        state.metrics.render(),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )


# --- WebSocket: observers ---

@app.websocket("/ws")
async def websocket_endpoint(ws: WebSocket):
    await ws.accept()
    state.clients.add(ws)
    logger.info("Client connected (%d total)", len(state.clients))

    try:
        await ws.send_json({
            "type": "connected",
            "tick_ms": state.config.tick_ms,
            "devices": len(state.engine.registry) if state.engine else 0,
        })

        while True:
            try:
                msg = await asyncio.wait_for(ws.receive_text(), timeout=30)
                data = json.loads(msg)
                if data.get("type") == "ping":
                    await ws.send_json({"type": "pong", "server_time": time.time()})
                elif data.get("type") == "get_devices":
                    await ws.send_json({
                        "type": "devices",
                        "devices": state.engine.snapshot() if state.engine else [],
                    })
            except asyncio.TimeoutError:
                await ws.send_json({"type": "ping"})
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.debug("WebSocket error: %s", e)
    finally:
        state.clients.discard(ws)
        logger.info("Client disconnected (%d total)", len(state.clients))


# --- WebSocket: device ingest ---

@app.websocket("/ws/device")
async def device_endpoint(ws: WebSocket):
    await ws.accept()
    handles: set[Hashable] = set()

    try:
        while True:
            msg = await ws.receive_text()
            try:
                event = event_from_dict(json.loads(msg))
            except (json.JSONDecodeError, EventDecodeError) as e:
                logger.warning("Rejected device message: %s", e)
                await ws.send_json({"type": "error", "detail": str(e)})
                continue

            if isinstance(event, Tick):
                await ws.send_json({"type": "error", "detail": "ticks are generated by the server"})
                continue

            if event.handle not in handles:
                handles.add(event.handle)
                state.device_sockets[event.handle] = ws

            state.hub.push(event)
            if isinstance(event, Disconnected):
                handles.discard(event.handle)
                if state.device_sockets.get(event.handle) is ws:
                    del state.device_sockets[event.handle]
            await ws.send_json({"type": "accepted", "event": event_type(event)})
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.debug("Device WS error: %s", e)
    finally:
        for handle in handles:
            if state.device_sockets.get(handle) is ws:
                del state.device_sockets[handle]
                state.hub.push(Disconnected(handle))


async def broadcast(message: dict):
    """Send message to all observer clients."""
    if not state.clients:
        return
    dead = set()
    payload = json.dumps(message)
    for ws in list(state.clients):
        try:
            await ws.send_text(payload)
        except Exception:
            dead.add(ws)
    state.clients -= dead


async def flush_notifications():
    """Deliver queued haptic notifications to the owning device sockets."""
    outbox, state.hub.outbox = state.hub.outbox, []
    for message in outbox:
        ws = state.device_sockets.get(message["device"])
        if ws is None:
            logger.warning("No connection for device %r, dropping notification", message["device"])
            continue
        try:
            await ws.send_json(message)
        except Exception as e:
            logger.debug("Notification to %r failed: %s", message["device"], e)


# --- Tick loop ---

async def tick_loop():
    """Drain ingest buffer, tick, then push results out, once per interval."""
    interval = state.config.tick_ms / 1000.0
    state.started_at = time.time()
    logger.info("Tick loop started (%d ms cadence)", state.config.tick_ms)

    deadline = time.monotonic()
    try:
        while state.running:
            try:
                state.driver.step()

                while state.handshakes:
                    event = state.handshakes.pop(0)
                    message = {**event.to_dict(), "timestamp": time.time()}
                    state.last_handshake = message
                    await broadcast(message)
                await flush_notifications()
            except Exception:
                logger.exception("Tick failed; continuing")

            deadline += interval
            delay = deadline - time.monotonic()
            if delay <= 0:
                deadline = time.monotonic()
                delay = 0
            await asyncio.sleep(delay)
    finally:
        state.running = False
        if state.plugin_manager:
            state.plugin_manager.shutdown()
        logger.info("Tick loop stopped")


def main():
    import argparse
    import uvicorn

    parser = argparse.ArgumentParser(description="HandshakeEngine WebSocket Server")
    parser.add_argument("--host", default="0.0.0.0", help="Bind address")
    parser.add_argument("--port", type=int, default=8766, help="Port")
    parser.add_argument("--config", default=None, help="Path to engine YAML config")
    parser.add_argument("--log-level", default="info")
    args = parser.parse_args()

    if args.config:
        state.configure(EngineConfig.from_yaml(Path(args.config)))
    uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level)


if __name__ == "__main__":
    main()
