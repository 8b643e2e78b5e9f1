"""Hub polling loop and device hubs.

A DeviceHub is whatever delivers armband events: a vendor SDK bridge, the
WebSocket ingest endpoint, a scripted simulation or a recorded session.
HubDriver polls it at a fixed cadence and, strictly after each drain,
ticks the engine. Recognized handshakes are sent back to both devices as
a user-action notification (a haptic pulse on real hardware).
"""

from __future__ import annotations

import logging
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Hashable, Iterator, Optional

from handshake_engine.correlator import HandshakeEvent
from handshake_engine.devices import Pose
from handshake_engine.engine import HandshakeEngine
from handshake_engine.events import (
    Connected,
    EventConsumer,
    OrientationSample,
    Paired,
    PoseChanged,
    Tick,
)
from handshake_engine.orientation import Quaternion

if TYPE_CHECKING:
    from handshake_engine.recorder import SessionPlayer, SessionRecorder

logger = logging.getLogger("handshake_engine.driver")


class DeviceHub(ABC):
    """Source of device events and sink for user feedback."""

    @abstractmethod
    def run(self, duration_ms: int, consumer: EventConsumer):
        """Deliver pending events to ``consumer`` for up to ``duration_ms``."""

    @abstractmethod
    def notify_user_action(self, handle: Hashable):
        """Signal the wearer of ``handle`` (haptic pulse)."""

    @property
    def exhausted(self) -> bool:
        """True when the hub will never deliver another event."""
        return False


class HubDriver:
    """Fixed-cadence loop: drain hub, tick engine, send feedback."""

    def __init__(
        self,
        hub: DeviceHub,
        engine: HandshakeEngine,
        tick_ms: Optional[int] = None,
        recorder: Optional[SessionRecorder] = None,
    ):
        self.hub = hub
        self.engine = engine
        self.tick_ms = tick_ms or engine.config.tick_ms
        self._consumer: EventConsumer = recorder.wrap(engine) if recorder else engine
        self._running = False
        self.engine.on_handshake(self._send_feedback)

    def step(self):
        """One full tick: event drain, then tracker advance and correlation."""
        with self.engine.profiler.stage("drain"):
            self.hub.run(self.tick_ms, self._consumer)
        self._consumer.consume(Tick())

    def run(self, max_ticks: Optional[int] = None, realtime: bool = True) -> int:
        """Loop until stopped, ``max_ticks`` reached or the hub runs dry.

        Returns the number of ticks processed.
        """
        self._running = True
        interval = self.tick_ms / 1000.0
        deadline = time.monotonic()
        ticks = 0

        try:
            while self._running and not self.hub.exhausted:
                if max_ticks is not None and ticks >= max_ticks:
                    break
                self.step()
                ticks += 1

                if realtime:
                    deadline += interval
                    delay = deadline - time.monotonic()
                    if delay > 0:
                        time.sleep(delay)
                    else:
                        deadline = time.monotonic()
        finally:
            self._running = False

        return ticks

    def stop(self):
        self._running = False

    def _send_feedback(self, event: HandshakeEvent):
        for device_id in event.devices:
            handle = self.engine.registry.handle_of(device_id)
            try:
                self.hub.notify_user_action(handle)
            except Exception as e:
                logger.error("Feedback to device %d failed: %s", device_id, e)


# --- Simulation ---

@dataclass
class ScriptedDevice:
    """Synthetic armband performing one handshake motion.

    Arm hangs at ``rest_pitch`` until ``start_tick``, then swings around
    level with peak-to-peak ``amplitude`` degrees for ``duration`` ticks,
    closing into a fist ``fist_after`` ticks into the motion.
    """
    handle: str
    amplitude: int = 40
    start_tick: int = 0
    duration: int = 100
    fist_after: int = 40
    period: int = 30
    rest_pitch: int = 20

    def pitch_at(self, step: int) -> int:
        t = step - self.start_tick
        if t < 0 or t >= self.duration:
            return self.rest_pitch
        return int(round(90 + self.amplitude / 2 * math.sin(2 * math.pi * t / self.period)))

    def pose_at(self, step: int) -> Pose:
        t = step - self.start_tick
        if self.fist_after <= t < self.duration:
            return Pose.FIST
        return Pose.REST


class SimulatedHub(DeviceHub):
    """Hub driven by ScriptedDevice motion scripts, one sample per tick."""

    def __init__(self, devices: list[ScriptedDevice], length: Optional[int] = None):
        self.devices = devices
        self.length = length
        self.notifications: list[Hashable] = []
        self._step = 0
        self._poses: dict[str, Pose] = {}

    def run(self, duration_ms: int, consumer: EventConsumer):
        if self._step == 0:
            for dev in self.devices:
                consumer.consume(Paired(dev.handle))
            for dev in self.devices:
                consumer.consume(Connected(dev.handle))

        for dev in self.devices:
            q = Quaternion.from_pitch(dev.pitch_at(self._step))
            consumer.consume(OrientationSample(dev.handle, q))

            pose = dev.pose_at(self._step)
            if self._poses.get(dev.handle) != pose:
                self._poses[dev.handle] = pose
                consumer.consume(PoseChanged(dev.handle, pose))

        self._step += 1

    def notify_user_action(self, handle: Hashable):
        logger.info("Haptic pulse -> %s", handle)
        self.notifications.append(handle)

    @property
    def exhausted(self) -> bool:
        return self.length is not None and self._step >= self.length

    @classmethod
    def handshake_pair(cls, amplitude: int = 40, offset: int = 5) -> SimulatedHub:
        """Two devices performing matching handshakes ``offset`` ticks apart."""
        return cls([
            ScriptedDevice("arm-1", amplitude=amplitude, start_tick=10),
            ScriptedDevice("arm-2", amplitude=amplitude + 6, start_tick=10 + offset),
        ], length=220)


class ReplayHub(DeviceHub):
    """Feeds a recorded session back tick by tick."""

    def __init__(self, player: SessionPlayer):
        self._ticks: Iterator[list] = player.play()
        self._next: Optional[list] = next(self._ticks, None)
        self.notifications: list[Hashable] = []

    def run(self, duration_ms: int, consumer: EventConsumer):
        if self._next is None:
            return
        for event in self._next:
            consumer.consume(event)
        self._next = next(self._ticks, None)

    def notify_user_action(self, handle: Hashable):
        logger.info("Haptic pulse -> %s", handle)
        self.notifications.append(handle)

    @property
    def exhausted(self) -> bool:
        return self._next is None
