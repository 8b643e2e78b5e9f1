"""Inbound device events and their JSON codec.

Hubs translate whatever their transport delivers into these variants and
hand them to an EventConsumer. The dict form is used by recordings and by
the WebSocket ingest endpoint:

    {"type": "orientation", "device": "arm-1", "quaternion": [w, x, y, z]}
    {"type": "pose", "device": "arm-1", "pose": "fist"}
    {"type": "paired", "device": "arm-1"}
    {"type": "tick"}
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Hashable, Union

from handshake_engine.devices import Pose
from handshake_engine.orientation import Quaternion


class EventDecodeError(ValueError):
    """Raised when an event dict cannot be decoded."""


@dataclass(frozen=True)
class Paired:
    """First event for any device; registers it."""
    handle: Hashable


@dataclass(frozen=True)
class Connected:
    handle: Hashable


@dataclass(frozen=True)
class Disconnected:
    handle: Hashable


@dataclass(frozen=True)
class OrientationSample:
    handle: Hashable
    quaternion: Quaternion


@dataclass(frozen=True)
class PoseChanged:
    handle: Hashable
    pose: Pose


@dataclass(frozen=True)
class Tick:
    """Fixed-cadence clock signal; advances every tracker."""


DeviceEvent = Union[Paired, Connected, Disconnected, OrientationSample, PoseChanged]
Event = Union[DeviceEvent, Tick]

_TYPE_NAMES = {
    Paired: "paired",
    Connected: "connected",
    Disconnected: "disconnected",
    OrientationSample: "orientation",
    PoseChanged: "pose",
    Tick: "tick",
}
_TYPES_BY_NAME = {v: k for k, v in _TYPE_NAMES.items()}


class EventConsumer(ABC):
    """Anything that accepts device events from a hub."""

    @abstractmethod
    def consume(self, event: Event):
        ...


def event_type(event: Event) -> str:
    try:
        return _TYPE_NAMES[type(event)]
    except KeyError:
        raise TypeError(f"Unsupported event: {event!r}") from None


def event_to_dict(event: Event) -> dict:
    data: dict = {"type": event_type(event)}
    if isinstance(event, Tick):
        return data
    data["device"] = event.handle
    if isinstance(event, OrientationSample):
        data["quaternion"] = event.quaternion.to_list()
    elif isinstance(event, PoseChanged):
        data["pose"] = event.pose.value
    return data


def event_from_dict(data: dict) -> Event:
    """Decode a dict produced by event_to_dict (or sent by a client)."""
    if not isinstance(data, dict):
        raise EventDecodeError(f"Event must be an object, got {type(data).__name__}")

    name = data.get("type")
    cls = _TYPES_BY_NAME.get(name)
    if cls is None:
        raise EventDecodeError(f"Unknown event type: {name!r}")
    if cls is Tick:
        return Tick()

    handle = data.get("device")
    if isinstance(handle, bool) or not isinstance(handle, (str, int)):
        raise EventDecodeError(f"'{name}' event needs a string or int 'device'")

    if cls is OrientationSample:
        try:
            q = Quaternion.from_sequence(data["quaternion"])
        except (KeyError, TypeError, ValueError) as e:
            raise EventDecodeError(f"Bad quaternion: {e}") from e
        return OrientationSample(handle=handle, quaternion=q)

    if cls is PoseChanged:
        try:
            pose = Pose(data["pose"])
        except (KeyError, ValueError) as e:
            raise EventDecodeError(f"Bad pose: {data.get('pose')!r}") from e
        return PoseChanged(handle=handle, pose=pose)

    return cls(handle=handle)
