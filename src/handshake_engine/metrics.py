"""Prometheus text-format metrics for HandshakeEngine.

Rendered directly; served by the server's ``/metrics`` endpoint.

Counters: handshakes_total, timeouts_total, ticks_total, events_total{type}
Gauges: devices_registered, devices_analyzing, devices_ready,
        active_connections, uptime_seconds
Histogram: tick_latency_seconds
"""

from __future__ import annotations

import threading
import time
from collections import Counter

import numpy as np

PREFIX = "handshake_engine"

# Default tick budget is 10 ms; buckets straddle it
LATENCY_BUCKETS = (0.0001, 0.0005, 0.001, 0.002, 0.005, 0.010, 0.020, 0.050)

_HELP = {
    "handshakes_total": ("counter", "Total handshakes recognized"),
    "timeouts_total": ("counter", "Analysis windows that expired without a match"),
    "ticks_total": ("counter", "Total ticks processed"),
    "devices_registered": ("gauge", "Devices paired since start"),
    "devices_analyzing": ("gauge", "Devices currently tracking swing amplitude"),
    "devices_ready": ("gauge", "Devices ready to match after the last tick"),
    "active_connections": ("gauge", "Current WebSocket connections"),
}


class _Histogram:
    """Fixed-bucket histogram; the last slot counts values above every bound."""

    def __init__(self, bounds):
        self.bounds = sorted(float(b) for b in bounds)
        self._edges = np.asarray(self.bounds)
        self._slots = np.zeros(len(self.bounds) + 1, dtype=np.int64)
        self.total = 0.0
        self._lock = threading.Lock()

    def observe(self, value: float):
        slot = int(np.searchsorted(self._edges, value, side="left"))
        with self._lock:
            self._slots[slot] += 1
            self.total += value

    def render(self, name: str, help_text: str) -> str:
        with self._lock:
            cumulative = np.cumsum(self._slots)
            total = self.total
        out = [f"# HELP {name} {help_text}", f"# TYPE {name} histogram"]
        for bound, n in zip(self.bounds, cumulative):
            out.append(f'{name}_bucket{{le="{bound}"}} {n}')
        out.append(f'{name}_bucket{{le="+Inf"}} {cumulative[-1]}')
        out.append(f"{name}_sum {total:.6f}")
        out.append(f"{name}_count {cumulative[-1]}")
        return "\n".join(out)


class MetricsCollector:
    """Thread-safe counters and gauges fed by the engine and server."""

    def __init__(self):
        self._values: dict[str, float] = {name: 0 for name in _HELP}
        self._events: Counter = Counter()
        self._latency = _Histogram(LATENCY_BUCKETS)
        self._started = time.time()
        self._lock = threading.Lock()

    def _add(self, name: str, amount: int = 1):
        with self._lock:
            self._values[name] += amount

    def record_event(self, event_type: str):
        with self._lock:
            self._events[event_type] += 1

    def record_handshake(self):
        self._add("handshakes_total")

    def record_timeout(self):
        self._add("timeouts_total")

    def record_tick(self, latency_seconds: float, registered: int, analyzing: int, ready: int):
        with self._lock:
            self._values["ticks_total"] += 1
            self._values["devices_registered"] = registered
            self._values["devices_analyzing"] = analyzing
            self._values["devices_ready"] = ready
        self._latency.observe(latency_seconds)

    def set_connections(self, count: int):
        with self._lock:
            self._values["active_connections"] = count

    def render(self) -> str:
        """Prometheus text exposition of every metric."""
        with self._lock:
            values = dict(self._values)
            events = sorted(self._events.items())

        blocks = [_scalar("uptime_seconds", "gauge", "Time since engine start",
                          f"{time.time() - self._started:.1f}")]
        for name, (kind, help_text) in _HELP.items():
            blocks.append(_scalar(name, kind, help_text, values[name]))

        event_lines = [
            f"# HELP {PREFIX}_events_total Device events consumed by type",
            f"# TYPE {PREFIX}_events_total counter",
        ]
        event_lines += [f'{PREFIX}_events_total{{type="{t}"}} {n}' for t, n in events]
        blocks.append("\n".join(event_lines))

        blocks.append(self._latency.render(
            f"{PREFIX}_tick_latency_seconds", "Tick processing latency in seconds",
        ))
        return "\n\n".join(blocks) + "\n"

    @property
    def handshakes_total(self) -> int:
        return self._values["handshakes_total"]

    @property
    def ticks_total(self) -> int:
        return self._values["ticks_total"]

    @property
    def event_counts(self) -> dict[str, int]:
        with self._lock:
            return dict(self._events)


def _scalar(name: str, kind: str, help_text: str, value) -> str:
    full = f"{PREFIX}_{name}"
    return f"# HELP {full} {help_text}\n# TYPE {full} {kind}\n{full} {value}"
