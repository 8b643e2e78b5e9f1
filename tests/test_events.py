"""Tests for inbound event variants and their dict codec."""

import pytest

from handshake_engine.devices import Pose
from handshake_engine.events import (
    Connected,
    Disconnected,
    EventDecodeError,
    OrientationSample,
    Paired,
    PoseChanged,
    Tick,
    event_from_dict,
    event_to_dict,
    event_type,
)
from handshake_engine.orientation import Quaternion


class TestEventCodec:
    def test_orientation_dict(self):
        evt = OrientationSample("arm-1", Quaternion(w=1.0, y=0.25))
        assert event_to_dict(evt) == {
            "type": "orientation",
            "device": "arm-1",
            "quaternion": [1.0, 0.0, 0.25, 0.0],
        }

    def test_pose_dict(self):
        assert event_to_dict(PoseChanged(3, Pose.FIST)) == {"type": "pose", "device": 3, "pose": "fist"}

    def test_tick_dict(self):
        assert event_to_dict(Tick()) == {"type": "tick"}
        assert event_from_dict({"type": "tick"}) == Tick()

    @pytest.mark.parametrize("evt", [
        Paired("a"), Connected("a"), Disconnected("a"),
        PoseChanged("a", Pose.WAVE_IN), OrientationSample("a", Quaternion.from_pitch(30)),
    ])
    def test_decode_inverts_encode(self, evt):
        assert event_from_dict(event_to_dict(evt)) == evt

    def test_event_type_names(self):
        assert event_type(Paired("x")) == "paired"
        assert event_type(Disconnected("x")) == "disconnected"

    def test_client_message(self):
        evt = event_from_dict({"type": "orientation", "device": "phone", "quaternion": [1, 0, 0, 0]})
        assert isinstance(evt, OrientationSample)
        assert evt.quaternion == Quaternion()


class TestDecodeErrors:
    @pytest.mark.parametrize("data", [
        {"type": "teleport", "device": "a"},
        {"device": "a"},
        {"type": "paired"},
        {"type": "paired", "device": [1, 2]},
        {"type": "paired", "device": True},
        {"type": "paired", "device": False},
        {"type": "orientation", "device": "a"},
        {"type": "orientation", "device": "a", "quaternion": [1, 0]},
        {"type": "orientation", "device": "a", "quaternion": ["w", "x", "y", "z"]},
        {"type": "pose", "device": "a", "pose": "thumbs_up"},
        {"type": "pose", "device": "a"},
        ["paired", "a"],
    ])
    def test_rejects(self, data):
        with pytest.raises(EventDecodeError):
            event_from_dict(data)

    def test_is_value_error(self):
        with pytest.raises(ValueError):
            event_from_dict({"type": None})

    def test_int_handle_distinct_from_bool(self):
        assert event_from_dict({"type": "paired", "device": 1}) == Paired(1)
        with pytest.raises(EventDecodeError, match="device"):
            event_from_dict({"type": "paired", "device": True})
