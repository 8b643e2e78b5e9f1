"""Handshake engine: device events in, handshake events out.

Owns the device registry, one GestureTracker per device and the
correlator. Hubs push events through ``consume``; a ``Tick`` advances
every tracker and runs one correlation pass.

Usage:
    engine = HandshakeEngine()
    engine.on_handshake(lambda evt: print(evt.devices))

    engine.consume(Paired("arm-1"))
    engine.consume(OrientationSample("arm-1", Quaternion.from_pitch(90)))
    engine.consume(Tick())
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Hashable, Optional

from handshake_engine.config import DisconnectPolicy, EngineConfig
from handshake_engine.correlator import HandshakeCorrelator, HandshakeEvent
from handshake_engine.devices import UNKNOWN_DEVICE, DeviceRegistry
from handshake_engine.events import (
    Connected,
    Disconnected,
    Event,
    EventConsumer,
    OrientationSample,
    Paired,
    PoseChanged,
    Tick,
    event_type,
)
from handshake_engine.metrics import MetricsCollector
from handshake_engine.orientation import pitch_of
from handshake_engine.plugins import PluginEvent, PluginManager
from handshake_engine.profiler import TickProfiler
from handshake_engine.tracker import GestureTracker

logger = logging.getLogger("handshake_engine.engine")


@dataclass
class EngineStats:
    """Runtime counters."""
    ticks: int
    handshakes: int
    timeouts: int
    devices: int
    analyzing: int
    ready: int
    overruns: int = 0
    profiler_summary: dict = field(default_factory=dict)


class HandshakeEngine(EventConsumer):
    """Tick-driven handshake detection across any number of devices."""

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        metrics: Optional[MetricsCollector] = None,
        plugins: Optional[PluginManager] = None,
        enable_profiling: bool = True,
    ):
        self.config = config or EngineConfig()
        self.registry = DeviceRegistry()
        self.correlator = HandshakeCorrelator(self.config.correlator)
        self.metrics = metrics or MetricsCollector()
        self.plugins = plugins
        self.profiler = TickProfiler(budget_ms=self.config.tick_ms)
        self.profiler.enabled = enable_profiling

        self._trackers: list[GestureTracker] = []
        self._callbacks: list[Callable[[HandshakeEvent], None]] = []
        self._tick_count = 0
        self._handshake_count = 0
        self._timeout_count = 0

    def on_handshake(self, callback: Callable[[HandshakeEvent], None]):
        """Register a callback for handshake events."""
        self._callbacks.append(callback)

    # --- Event intake ---

    def consume(self, event: Event):
        self.metrics.record_event(event_type(event))

        if isinstance(event, Tick):
            self.tick()
        elif isinstance(event, Paired):
            self.pair(event.handle)
        elif isinstance(event, OrientationSample):
            tracker = self._resolve(event.handle, "orientation")
            if tracker:
                tracker.update_pitch(pitch_of(event.quaternion))
        elif isinstance(event, PoseChanged):
            tracker = self._resolve(event.handle, "pose")
            if tracker:
                tracker.update_pose(event.pose)
        elif isinstance(event, Connected):
            logger.info("Device %d has connected", self.registry.lookup(event.handle))
        elif isinstance(event, Disconnected):
            self._on_disconnect(event.handle)

    def pair(self, handle: Hashable) -> int:
        """Register a device; repeated pairing returns the existing id."""
        known = len(self.registry)
        device_id = self.registry.identify(handle)
        if len(self.registry) > known:
            self._trackers.append(GestureTracker(
                device_id, self.registry.state(device_id), self.config.tracker,
            ))
            if self.plugins:
                self.plugins.dispatch(PluginEvent(
                    "pair", tick=self._tick_count,
                    data={"device": device_id, "handle": handle},
                ))
        return device_id

    def _resolve(self, handle: Hashable, what: str) -> Optional[GestureTracker]:
        device_id = self.registry.lookup(handle)
        if device_id == UNKNOWN_DEVICE:
            logger.warning("Dropping %s event from unpaired device %r", what, handle)
            return None
        return self._trackers[device_id - 1]

    def _on_disconnect(self, handle: Hashable):
        device_id = self.registry.lookup(handle)
        logger.info("Device %d has disconnected", device_id)
        if device_id == UNKNOWN_DEVICE:
            return
        if self.config.disconnect_policy is DisconnectPolicy.RESET:
            self._trackers[device_id - 1].reset()
            logger.debug("Device %d: gesture state reset on disconnect", device_id)

    # --- Tick processing ---

    def tick(self) -> list[HandshakeEvent]:
        """Advance all trackers, then correlate. Returns matches made."""
        t0 = time.perf_counter()
        self._tick_count += 1

        with self.profiler.stage("total"):
            with self.profiler.stage("advance"):
                for tracker in self._trackers:
                    if tracker.advance():
                        self._on_timeout(tracker)

            with self.profiler.stage("correlate"):
                events = self.correlator.correlate(self._trackers, tick=self._tick_count)

        for event in events:
            self._handshake_count += 1
            self.metrics.record_handshake()
            self._notify(event)

        analyzing = sum(1 for t in self._trackers if t.state.analyzing)
        ready = sum(1 for t in self._trackers if t.ready)
        self.metrics.record_tick(time.perf_counter() - t0, len(self._trackers), analyzing, ready)
        return events

    def _on_timeout(self, tracker: GestureTracker):
        self._timeout_count += 1
        self.metrics.record_timeout()
        if self.plugins:
            self.plugins.dispatch(PluginEvent(
                "timeout", tick=self._tick_count,
                data={"device": tracker.device_id},
            ))

    def _notify(self, event: HandshakeEvent):
        for cb in self._callbacks:
            try:
                cb(event)
            except Exception as e:
                logger.error("Handshake callback failed: %s", e)

        if self.plugins:
            self.plugins.dispatch(PluginEvent(
                "handshake", tick=event.tick,
                data={
                    "devices": [event.first, event.second],
                    "amplitudes": [event.first_amplitude, event.second_amplitude],
                },
            ))

    # --- Introspection ---

    def tracker(self, device_id: int) -> GestureTracker:
        self.registry.state(device_id)  # raises UnknownDeviceError
        return self._trackers[device_id - 1]

    @property
    def trackers(self) -> list[GestureTracker]:
        return list(self._trackers)

    @property
    def tick_count(self) -> int:
        return self._tick_count

    @property
    def stats(self) -> EngineStats:
        return EngineStats(
            ticks=self._tick_count,
            handshakes=self._handshake_count,
            timeouts=self._timeout_count,
            devices=len(self._trackers),
            analyzing=sum(1 for t in self._trackers if t.state.analyzing),
            ready=sum(1 for t in self._trackers if t.ready),
            overruns=self.profiler.overruns,
            profiler_summary=self.profiler.summary(),
        )

    def snapshot(self) -> list[dict]:
        """Per-device state for status output."""
        return [
            {"device": t.device_id, "handle": str(self.registry.handle_of(t.device_id)), **t.state.to_dict()}
            for t in self._trackers
        ]

    def reset(self):
        """Return every tracker to idle and clear counters. Ids are kept."""
        for tracker in self._trackers:
            tracker.reset()
        self._tick_count = 0
        self._handshake_count = 0
        self._timeout_count = 0
        self.profiler.reset()
