"""Device identity and per-device gesture state.

Every armband handle seen by the hub gets a small sequential id, starting
at 1, in the order devices are first observed. Ids are never reassigned or
recycled, so a linear walk over ``registry`` is always safe.

Usage:
    registry = DeviceRegistry()
    device_id = registry.identify(handle)
    registry.state(device_id).pitch = 92
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Hashable, Iterator, Optional

logger = logging.getLogger("handshake_engine.devices")

UNKNOWN_DEVICE = 0
NEUTRAL_PITCH = 90


class UnknownDeviceError(KeyError):
    """Raised when state is requested for an id the registry never issued."""


class Pose(Enum):
    """Discrete hand poses reported by the armband."""
    UNKNOWN = "unknown"
    REST = "rest"
    FIST = "fist"
    WAVE_IN = "wave_in"
    WAVE_OUT = "wave_out"
    FINGERS_SPREAD = "fingers_spread"
    DOUBLE_TAP = "double_tap"


@dataclass
class GestureState:
    """Mutable gesture-tracking record for one device."""
    pitch: int = NEUTRAL_PITCH
    pose: Pose = Pose.UNKNOWN
    arc_counter: int = 0  # in-band ticks, then analysis ticks
    analyzing: bool = False
    range_high: Optional[int] = None
    range_low: Optional[int] = None
    ready: bool = False

    @property
    def swing_amplitude(self) -> int:
        if self.range_high is None or self.range_low is None:
            return 0
        return self.range_high - self.range_low

    def clear(self):
        """Back to idle. Pitch and pose are sensor readings and survive."""
        self.arc_counter = 0
        self.analyzing = False
        self.range_high = None
        self.range_low = None
        self.ready = False

    def to_dict(self) -> dict:
        return {
            "pitch": self.pitch,
            "pose": self.pose.value,
            "arc_counter": self.arc_counter,
            "analyzing": self.analyzing,
            "range_high": self.range_high,
            "range_low": self.range_low,
            "swing_amplitude": self.swing_amplitude,
            "ready": self.ready,
        }


class DeviceRegistry:
    """Maps device handles to stable ids and owns their gesture state.

    Handles only need to be hashable; two handles that compare equal are
    the same device. State lives in a list indexed by ``device_id - 1``.
    """

    def __init__(self):
        self._ids: dict[Hashable, int] = {}
        self._handles: list[Hashable] = []
        self._states: list[GestureState] = []

    def identify(self, handle: Hashable) -> int:
        """Return the id for ``handle``, registering it on first sight."""
        device_id = self._ids.get(handle)
        if device_id is not None:
            return device_id

        self._handles.append(handle)
        self._states.append(GestureState())
        device_id = len(self._handles)
        self._ids[handle] = device_id
        logger.info("Paired with %r as device %d", handle, device_id)
        return device_id

    def lookup(self, handle: Hashable) -> int:
        """Return the id for a registered handle, or UNKNOWN_DEVICE."""
        return self._ids.get(handle, UNKNOWN_DEVICE)

    def state(self, device_id: int) -> GestureState:
        if not 1 <= device_id <= len(self._states):
            raise UnknownDeviceError(device_id)
        return self._states[device_id - 1]

    def handle_of(self, device_id: int) -> Hashable:
        if not 1 <= device_id <= len(self._handles):
            raise UnknownDeviceError(device_id)
        return self._handles[device_id - 1]

    def __len__(self) -> int:
        return len(self._handles)

    def __iter__(self) -> Iterator[int]:
        return iter(range(1, len(self._handles) + 1))

    def __contains__(self, handle: object) -> bool:
        return handle in self._ids
