"""Session recording and replay.

Records the device events delivered during each tick so a session can be
replayed deterministically, without hardware:
- Reproducible tests for tuning thresholds
- Headless CI runs
- Demo sessions that play back identically

File layout (JSON):
    {"version": 1, "tick_ms": 10, "tick_count": N,
     "ticks": [[event, ...], ...]}
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Hashable, Iterator, Optional

import numpy as np

from handshake_engine.events import (
    Event,
    EventConsumer,
    EventDecodeError,
    OrientationSample,
    Tick,
    event_from_dict,
    event_to_dict,
)
from handshake_engine.orientation import pitch_series

FORMAT_VERSION = 1


class _Tee(EventConsumer):
    def __init__(self, recorder: SessionRecorder, target: EventConsumer):
        self._recorder = recorder
        self._target = target

    def consume(self, event: Event):
        self._recorder.consume(event)
        self._target.consume(event)


class SessionRecorder(EventConsumer):
    """Captures events grouped by tick.

    Usage:
        recorder = SessionRecorder(tick_ms=10)
        driver = HubDriver(hub, engine, recorder=recorder)
        driver.run(max_ticks=500)
        recorder.save("session.json")
    """

    def __init__(self, tick_ms: int = 10):
        self.tick_ms = tick_ms
        self._ticks: list[list[dict]] = []
        self._pending: list[dict] = []

    def wrap(self, target: EventConsumer) -> EventConsumer:
        """Consumer that records each event, then forwards it to ``target``."""
        return _Tee(self, target)

    def consume(self, event: Event):
        if isinstance(event, Tick):
            self._ticks.append(self._pending)
            self._pending = []
            return

        data = event_to_dict(event)
        if isinstance(data["device"], bool) or not isinstance(data["device"], (str, int)):
            data["device"] = str(data["device"])
        self._pending.append(data)

    @property
    def tick_count(self) -> int:
        return len(self._ticks)

    @property
    def event_count(self) -> int:
        return sum(len(t) for t in self._ticks) + len(self._pending)

    def save(self, path: str | Path):
        """Write completed ticks to JSON. Events after the last tick are dropped."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "version": FORMAT_VERSION,
            "tick_ms": self.tick_ms,
            "tick_count": len(self._ticks),
            "ticks": self._ticks,
        }
        with open(path, "w") as f:
            json.dump(data, f)


class SessionPlayer:
    """Replays a recorded session.

    Usage:
        player = SessionPlayer.load("session.json")
        for events in player.play():
            for event in events:
                engine.consume(event)
            engine.consume(Tick())
    """

    def __init__(self, ticks: list[list[Event]], tick_ms: int = 10):
        self._ticks = ticks
        self.tick_ms = tick_ms

    @classmethod
    def load(cls, path: str | Path) -> SessionPlayer:
        """Load a recording; raises EventDecodeError on malformed content."""
        with open(path) as f:
            data = json.load(f)

        if not isinstance(data, dict) or data.get("version") != FORMAT_VERSION:
            raise EventDecodeError(f"{path}: unsupported recording format")

        ticks = [[event_from_dict(e) for e in tick] for tick in data.get("ticks", [])]
        return cls(ticks, tick_ms=int(data.get("tick_ms", 10)))

    @property
    def tick_count(self) -> int:
        return len(self._ticks)

    @property
    def duration(self) -> float:
        """Session length in seconds at the recorded cadence."""
        return len(self._ticks) * self.tick_ms / 1000.0

    def play(self) -> Iterator[list[Event]]:
        for tick in self._ticks:
            yield list(tick)

    def get_tick(self, index: int) -> Optional[list[Event]]:
        if 0 <= index < len(self._ticks):
            return list(self._ticks[index])
        return None

    def pitch_traces(self) -> dict[Hashable, np.ndarray]:
        """Pitch readings per device across the session, in arrival order."""
        rows: dict[Hashable, list[np.ndarray]] = {}
        for tick in self._ticks:
            for event in tick:
                if isinstance(event, OrientationSample):
                    rows.setdefault(event.handle, []).append(event.quaternion.as_array())
        return {handle: pitch_series(np.stack(samples)) for handle, samples in rows.items()}
