"""HandshakeEngine - Two-party handshake detection across motion-sensing armbands."""

__version__ = "0.1.0"

from handshake_engine.config import CorrelatorConfig, DisconnectPolicy, EngineConfig, TrackerConfig
from handshake_engine.devices import DeviceRegistry, GestureState, Pose, UNKNOWN_DEVICE
from handshake_engine.orientation import Quaternion, pitch_of, pitch_series
from handshake_engine.tracker import GestureTracker
from handshake_engine.correlator import HandshakeCorrelator, HandshakeEvent
from handshake_engine.events import (
    Connected, Disconnected, EventConsumer, OrientationSample, Paired, PoseChanged, Tick,
)
from handshake_engine.engine import HandshakeEngine, EngineStats
from handshake_engine.driver import DeviceHub, HubDriver, ReplayHub, ScriptedDevice, SimulatedHub
from handshake_engine.recorder import SessionPlayer, SessionRecorder
from handshake_engine.profiler import TickProfiler
from handshake_engine.plugins import HandshakePlugin, PluginManager, PluginEvent
from handshake_engine.metrics import MetricsCollector
