"""Device bridge: forwards a local hub's events to a remote server.

Runs next to the armbands (or a simulation) and streams every device event
to ``/ws/device`` on a HandshakeEngine server. Haptic notifications that
come back are handed to the local hub. The server owns the clock, so ticks
are never forwarded.

Usage:
    bridge = DeviceBridge(SimulatedHub.handshake_pair(), "ws://localhost:8766/ws/device")
    asyncio.run(bridge.run())
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Hashable, Optional

import websockets

from handshake_engine.driver import DeviceHub
from handshake_engine.events import Event, EventConsumer, Tick, event_to_dict

logger = logging.getLogger("handshake_engine.bridge")

DEFAULT_URL = "ws://localhost:8766/ws/device"


class DeviceBridge(EventConsumer):
    """Pumps one hub over a WebSocket connection, one tick at a time."""

    def __init__(self, hub: DeviceHub, url: str = DEFAULT_URL, tick_ms: int = 10):
        self.hub = hub
        self.url = url
        self.tick_ms = tick_ms
        self.sent = 0
        self.rejected = 0
        self.notifications: list[Hashable] = []
        self._outgoing: list[dict] = []

    def consume(self, event: Event):
        if isinstance(event, Tick):
            return
        self._outgoing.append(event_to_dict(event))

    async def run(self, max_ticks: Optional[int] = None) -> int:
        """Connect and pump until the hub runs dry or ``max_ticks`` is reached."""
        async with websockets.connect(self.url) as ws:
            logger.info("Bridge connected to %s", self.url)
            return await self.pump(ws, max_ticks)

    async def pump(self, ws, max_ticks: Optional[int] = None) -> int:
        """Drive an already open connection. Returns ticks forwarded."""
        interval = self.tick_ms / 1000.0
        ticks = 0
        while not self.hub.exhausted:
            if max_ticks is not None and ticks >= max_ticks:
                break
            self.hub.run(self.tick_ms, self)
            outgoing, self._outgoing = self._outgoing, []
            for message in outgoing:
                await ws.send(json.dumps(message))
                await self._await_reply(ws)
            ticks += 1
            await self._idle(ws, interval)
        return ticks

    async def _await_reply(self, ws):
        """Read until the server acknowledges the last message."""
        while True:
            if self._handle(json.loads(await ws.recv())):
                return

    async def _idle(self, ws, seconds: float):
        """Sleep out the tick while still delivering notifications."""
        deadline = time.monotonic() + seconds
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return
            try:
                message = await asyncio.wait_for(ws.recv(), timeout=remaining)
            except asyncio.TimeoutError:
                return
            self._handle(json.loads(message))

    def _handle(self, reply: dict) -> bool:
        """Process one server message; True if it acknowledged an event."""
        kind = reply.get("type")
        if kind == "notify_user_action":
            self._deliver(reply.get("device"))
            return False
        if kind == "error":
            self.rejected += 1
            logger.warning("Server rejected event: %s", reply.get("detail"))
            return True
        if kind == "accepted":
            self.sent += 1
            return True
        logger.debug("Ignoring server message: %r", reply)
        return False

    def _deliver(self, handle: Hashable):
        self.notifications.append(handle)
        try:
            self.hub.notify_user_action(handle)
        except Exception as e:
            logger.error("Feedback to %r failed: %s", handle, e)
