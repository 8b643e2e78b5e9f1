"""Engine configuration.

All gesture thresholds are tick counts or pitch degrees. Defaults reproduce
the reference tuning for a 10 ms polling cadence. Load overrides from YAML:

    tick_ms: 10
    disconnect_policy: reset
    tracker:
      warmup_ticks: 25
      timeout_ticks: 200
    correlator:
      min_amplitude: 15
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields, replace
from enum import Enum
from pathlib import Path
from typing import Any, Optional

import yaml


class ConfigError(ValueError):
    """Raised for unknown keys or out-of-range values."""


class DisconnectPolicy(Enum):
    PERSIST = "persist"  # reconnecting device resumes mid-gesture
    RESET = "reset"  # tracker returns to idle on disconnect


@dataclass
class TrackerConfig:
    band_low: int = 60  # raised-arm band, exclusive
    band_high: int = 120
    warmup_ticks: int = 25
    ready_after: int = 50  # readiness window, exclusive
    timeout_ticks: int = 200
    outlier_high: int = 130  # readings at/above never raise range_high
    outlier_low: int = 50  # readings at/below never lower range_low

    def validate(self):
        if not 0 <= self.band_low < self.band_high <= 180:
            raise ConfigError(f"Invalid pitch band ({self.band_low}, {self.band_high})")
        if not 0 < self.warmup_ticks <= self.ready_after < self.timeout_ticks:
            raise ConfigError(
                "Tick thresholds must satisfy 0 < warmup_ticks <= ready_after < timeout_ticks"
            )
        if self.outlier_low >= self.outlier_high:
            raise ConfigError("outlier_low must be below outlier_high")


@dataclass
class CorrelatorConfig:
    min_amplitude: int = 15  # exclusive
    amplitude_tolerance: int = 20  # exclusive

    def validate(self):
        if self.min_amplitude < 0 or self.amplitude_tolerance <= 0:
            raise ConfigError("Correlator thresholds must be positive")


@dataclass
class EngineConfig:
    tick_ms: int = 10
    disconnect_policy: DisconnectPolicy = DisconnectPolicy.PERSIST
    plugin_dir: Optional[str] = None
    tracker: TrackerConfig = field(default_factory=TrackerConfig)
    correlator: CorrelatorConfig = field(default_factory=CorrelatorConfig)

    def validate(self) -> EngineConfig:
        if self.tick_ms <= 0:
            raise ConfigError("tick_ms must be positive")
        self.tracker.validate()
        self.correlator.validate()
        return self

    def with_overrides(self, **kwargs: Any) -> EngineConfig:
        """Copy with top-level fields replaced; ``None`` values are ignored."""
        changes = {k: v for k, v in kwargs.items() if v is not None}
        if "disconnect_policy" in changes:
            changes["disconnect_policy"] = _parse_policy(changes["disconnect_policy"])
        unknown = set(changes) - {f.name for f in fields(self)}
        if unknown:
            raise ConfigError(f"Unknown config keys: {sorted(unknown)}")
        _check_types(EngineConfig, changes, "engine")
        return replace(self, **changes).validate()

    def to_dict(self) -> dict:
        data = asdict(self)
        data["disconnect_policy"] = self.disconnect_policy.value
        return data

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> EngineConfig:
        data = dict(data or {})
        tracker = _build(TrackerConfig, data.pop("tracker", None), "tracker")
        correlator = _build(CorrelatorConfig, data.pop("correlator", None), "correlator")
        if "disconnect_policy" in data:
            data["disconnect_policy"] = _parse_policy(data["disconnect_policy"])
        config = _build(cls, data, "engine")
        config.tracker = tracker
        config.correlator = correlator
        return config.validate()

    @classmethod
    def from_yaml(cls, path: str | Path) -> EngineConfig:
        """Load configuration from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f)
        if data is not None and not isinstance(data, dict):
            raise ConfigError(f"{path}: top level must be a mapping")
        return cls.from_dict(data)

    def to_yaml(self, path: str | Path):
        with open(path, "w") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)


def _parse_policy(value: Any) -> DisconnectPolicy:
    if isinstance(value, DisconnectPolicy):
        return value
    try:
        return DisconnectPolicy(str(value).lower())
    except ValueError:
        raise ConfigError(f"Unknown disconnect_policy: {value!r}") from None


def _check_types(cls, data: dict, section: str):
    """Integer thresholds must be real ints; optional paths must be strings."""
    defaults = cls()
    for name, value in data.items():
        default = getattr(defaults, name)
        if isinstance(default, int):
            if isinstance(value, bool) or not isinstance(value, int):
                raise ConfigError(f"'{section}.{name}' must be an integer, got {value!r}")
        elif default is None and value is not None and not isinstance(value, str):
            raise ConfigError(f"'{section}.{name}' must be a string, got {value!r}")


def _build(cls, data: Optional[dict], section: str):
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ConfigError(f"Section '{section}' must be a mapping")
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ConfigError(f"Unknown keys in '{section}': {sorted(unknown)}")
    _check_types(cls, data, section)
    return cls(**data)
