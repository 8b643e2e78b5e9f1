"""Orientation samples and pitch conversion.

The armband reports attitude as a unit quaternion. Only pitch (tilt about
the lateral axis) matters for handshake detection, expressed as integer
degrees on [0, 180] with 90 meaning a level forearm.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence

import numpy as np

PITCH_MIN = 0
PITCH_MAX = 180


@dataclass(frozen=True)
class Quaternion:
    """Attitude sample in (w, x, y, z) order."""
    w: float = 1.0
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    @classmethod
    def from_sequence(cls, values: Sequence[float]) -> Quaternion:
        if len(values) != 4:
            raise ValueError(f"Quaternion needs 4 components, got {len(values)}")
        w, x, y, z = (float(v) for v in values)
        return cls(w=w, x=x, y=y, z=z)

    @classmethod
    def from_pitch(cls, degrees: float) -> Quaternion:
        """Rotation about the lateral axis whose pitch_of() is ``degrees``."""
        theta = math.radians(degrees) - math.pi / 2
        return cls(w=math.cos(theta / 2), y=math.sin(theta / 2))

    def as_array(self) -> np.ndarray:
        return np.array([self.w, self.x, self.y, self.z], dtype=np.float64)

    def to_list(self) -> list[float]:
        return [self.w, self.x, self.y, self.z]


def pitch_of(q: Quaternion) -> int:
    """Map an orientation sample to integer pitch degrees on [0, 180]."""
    s = 2.0 * (q.w * q.y - q.z * q.x)
    pitch = math.asin(max(-1.0, min(1.0, s)))
    return int(round((pitch + math.pi / 2) / math.pi * 180))


def pitch_series(quaternions: np.ndarray) -> np.ndarray:
    """Vectorized pitch_of over an (N, 4) array of w, x, y, z rows."""
    q = np.asarray(quaternions, dtype=np.float64)
    if q.ndim != 2 or q.shape[1] != 4:
        raise ValueError(f"Expected shape (N, 4), got {q.shape}")
    s = 2.0 * (q[:, 0] * q[:, 2] - q[:, 3] * q[:, 1])
    pitch = np.arcsin(np.clip(s, -1.0, 1.0))
    return np.rint((pitch + np.pi / 2) / np.pi * 180).astype(np.int64)
