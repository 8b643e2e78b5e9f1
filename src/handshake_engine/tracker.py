"""Per-device handshake gesture state machine.

Phases:
    idle       pitch outside the raised-arm band, counter at 0
    raising    pitch inside the band, counter climbing toward warmup
    analyzing  swing range tracked; device may become ready to match

A device is ready to match while its pose is FIST and the analysis counter
sits strictly inside (ready_after, timeout_ticks). Reaching timeout_ticks
drops it back to idle whatever the pose.

One tick of analysis at the default 10 ms cadence is 10 ms, so warmup is
about 250 ms of sustained raise and a candidate stays eligible for at most
2 s.
"""

from __future__ import annotations

import logging
from typing import Optional

from handshake_engine.config import TrackerConfig
from handshake_engine.devices import GestureState, Pose

logger = logging.getLogger("handshake_engine.tracker")


class GestureTracker:
    """Advances one device's GestureState once per tick."""

    def __init__(
        self,
        device_id: int,
        state: GestureState,
        config: Optional[TrackerConfig] = None,
    ):
        self.device_id = device_id
        self.state = state
        self.config = config or TrackerConfig()

    @property
    def ready(self) -> bool:
        return self.state.ready

    @property
    def swing_amplitude(self) -> int:
        return self.state.swing_amplitude

    def update_pitch(self, pitch: int):
        self.state.pitch = pitch

    def update_pose(self, pose: Pose):
        self.state.pose = pose

    def advance(self) -> bool:
        """Run one tick. Returns True if the analysis window timed out."""
        s = self.state
        cfg = self.config

        if not s.analyzing:
            if cfg.band_low < s.pitch < cfg.band_high:
                s.arc_counter += 1
            else:
                s.arc_counter = 0

            if s.arc_counter < cfg.warmup_ticks:
                return False

            s.analyzing = True
            logger.debug("Device %d: analysis started (pitch=%d)", self.device_id, s.pitch)

        self._track_range()

        s.ready = s.pose == Pose.FIST and cfg.ready_after < s.arc_counter < cfg.timeout_ticks

        if s.arc_counter == cfg.timeout_ticks:
            logger.debug(
                "Device %d: analysis timed out (amplitude=%d)",
                self.device_id, s.swing_amplitude,
            )
            self.reset()
            return True

        s.arc_counter += 1
        return False

    def _track_range(self):
        s = self.state
        cfg = self.config
        if s.range_high is None or s.range_low is None:
            s.range_high = s.range_low = s.pitch
            return

        if s.pitch < cfg.outlier_high:
            s.range_high = max(s.range_high, s.pitch)
        if s.pitch > cfg.outlier_low:
            s.range_low = min(s.range_low, s.pitch)

    def reset(self):
        """Return to idle; the next gesture starts from scratch."""
        self.state.clear()

    def __repr__(self) -> str:
        s = self.state
        return (
            f"GestureTracker(device={self.device_id}, analyzing={s.analyzing}, "
            f"arc={s.arc_counter}, amplitude={s.swing_amplitude}, ready={s.ready})"
        )
