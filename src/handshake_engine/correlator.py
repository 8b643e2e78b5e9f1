"""Cross-device handshake matching.

Runs once per tick after every tracker has advanced. Two ready devices
shake hands when the first has swung far enough and their swing amplitudes
are within tolerance of each other. Matching is strictly pairwise and a
device takes part in at most one handshake per tick.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from handshake_engine.config import CorrelatorConfig
from handshake_engine.tracker import GestureTracker

logger = logging.getLogger("handshake_engine.correlator")


@dataclass
class HandshakeEvent:
    """Two devices recognized as shaking hands."""
    first: int  # device ids, first < second in registry order
    second: int
    first_amplitude: int
    second_amplitude: int
    tick: int

    @property
    def devices(self) -> tuple[int, int]:
        return (self.first, self.second)

    def to_dict(self) -> dict:
        return {
            "type": "handshake",
            "devices": [self.first, self.second],
            "amplitudes": [self.first_amplitude, self.second_amplitude],
            "tick": self.tick,
        }


class HandshakeCorrelator:
    """Pairs ready trackers whose swing amplitudes agree."""

    def __init__(self, config: Optional[CorrelatorConfig] = None):
        self.config = config or CorrelatorConfig()

    def is_match(self, a: GestureTracker, b: GestureTracker) -> bool:
        amp_a = a.swing_amplitude
        amp_b = b.swing_amplitude
        return (
            amp_a > self.config.min_amplitude
            and abs(amp_a - amp_b) < self.config.amplitude_tolerance
        )

    def correlate(self, trackers: list[GestureTracker], tick: int = 0) -> list[HandshakeEvent]:
        """Match ready trackers and reset the matched ones.

        ``trackers`` must be in registry order; the lowest device id wins
        when several partners are available.
        """
        ready = [t for t in trackers if t.ready]
        if len(ready) < 2:
            return []

        consumed: set[int] = set()
        events: list[HandshakeEvent] = []

        for a in ready:
            if a.device_id in consumed:
                continue
            for b in ready:
                if b is a or b.device_id in consumed:
                    continue
                if not self.is_match(a, b):
                    continue

                first, second = sorted((a, b), key=lambda t: t.device_id)
                event = HandshakeEvent(
                    first=first.device_id,
                    second=second.device_id,
                    first_amplitude=first.swing_amplitude,
                    second_amplitude=second.swing_amplitude,
                    tick=tick,
                )
                logger.info(
                    "Handshake recognized: device %d (amp %d) <-> device %d (amp %d)",
                    event.first, event.first_amplitude,
                    event.second, event.second_amplitude,
                )
                consumed.update((a.device_id, b.device_id))
                a.reset()
                b.reset()
                events.append(event)
                break

        return events
