"""Engine plugins.

Plugins react to engine events, typically to drive extra feedback (sound,
lights, a scoreboard) or to log sessions. Drop a .py file defining a
HandshakePlugin subclass, or a module-level ``plugin`` instance, into the
plugin directory.

    class Scoreboard(HandshakePlugin):
        name = "scoreboard"

        def on_handshake(self, event):
            print("Devices", event.devices, "shook hands at tick", event.tick)

Handlers can also be attached to an instance:

    plugin = HandshakePlugin(name="simple")

    @plugin.handler("pair")
    def greet(event):
        print("hello", event.data["device"])

A plugin whose hooks keep raising is disabled after ``max_errors`` failures.
"""

from __future__ import annotations

import importlib.util
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

logger = logging.getLogger("handshake_engine.plugins")

EVENT_TYPES = ("handshake", "pair", "timeout")


@dataclass
class PluginEvent:
    """Engine occurrence delivered to plugins."""
    type: str  # one of EVENT_TYPES
    tick: int = 0
    data: dict = field(default_factory=dict)

    @property
    def devices(self) -> list[int]:
        if "devices" in self.data:
            return list(self.data["devices"])
        if "device" in self.data:
            return [self.data["device"]]
        return []


class HandshakePlugin:
    """Base class; override the hooks you need."""

    name: str = "unnamed"
    version: str = "1.0.0"
    description: str = ""

    def __init__(self, name: Optional[str] = None):
        if name:
            self.name = name
        self._handlers: dict[str, list[Callable[[PluginEvent], None]]] = {}

    def handler(self, event_type: str = "*"):
        """Decorator attaching ``fn`` to one event type, or all with ``*``."""
        def decorator(fn: Callable[[PluginEvent], None]):
            self._handlers.setdefault(event_type, []).append(fn)
            return fn
        return decorator

    def emit(self, event: PluginEvent):
        """Run attached handlers. Errors propagate to the manager."""
        for fn in self._handlers.get(event.type, []) + self._handlers.get("*", []):
            fn(event)

    def on_handshake(self, event: PluginEvent):
        self.emit(event)

    def on_pair(self, event: PluginEvent):
        self.emit(event)

    def on_timeout(self, event: PluginEvent):
        self.emit(event)

    def on_startup(self, context: dict):
        """``context`` holds references such as the engine."""

    def on_shutdown(self):
        pass


def load_plugin_file(path: Path) -> Optional[HandshakePlugin]:
    """Import ``path`` and return the plugin it defines, if any."""
    module_name = f"handshake_plugin_{path.stem}"
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        return None

    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    spec.loader.exec_module(module)

    instance = getattr(module, "plugin", None)
    if isinstance(instance, HandshakePlugin):
        return instance

    for value in vars(module).values():
        if (
            isinstance(value, type)
            and issubclass(value, HandshakePlugin)
            and value is not HandshakePlugin
            and value.__module__ == module_name
        ):
            return value()
    return None


class PluginManager:
    """Holds plugins and fans engine events out to them.

    Usage:
        manager = PluginManager()
        manager.load_directory("plugins/")
        manager.startup({"engine": engine})
        engine = HandshakeEngine(plugins=manager)
        ...
        manager.shutdown()
    """

    def __init__(self, max_errors: int = 5):
        self.max_errors = max_errors
        self._plugins: dict[str, HandshakePlugin] = {}
        self._errors: dict[str, int] = {}

    def register(self, plugin: HandshakePlugin):
        if plugin.name in self._plugins:
            logger.warning("Plugin '%s' already registered, replacing", plugin.name)
        self._plugins[plugin.name] = plugin
        self._errors[plugin.name] = 0
        logger.info("Registered plugin: %s v%s", plugin.name, plugin.version)

    def unregister(self, name: str):
        plugin = self._plugins.pop(name, None)
        self._errors.pop(name, None)
        if plugin:
            self._call(plugin, plugin.on_shutdown)

    def load_directory(self, path: str | Path) -> int:
        """Load every public .py file in ``path``. Returns plugins loaded."""
        path = Path(path)
        if not path.is_dir():
            logger.debug("Plugin directory %s does not exist", path)
            return 0

        loaded = 0
        for py_file in sorted(path.glob("*.py")):
            if py_file.name.startswith("_"):
                continue
            try:
                plugin = load_plugin_file(py_file)
            except Exception as e:
                logger.error("Failed to load plugin %s: %s", py_file.name, e)
                continue
            if plugin is None:
                logger.warning("No HandshakePlugin found in %s", py_file.name)
                continue
            self.register(plugin)
            loaded += 1
        return loaded

    def startup(self, context: dict):
        for plugin in list(self._plugins.values()):
            self._call(plugin, plugin.on_startup, context)

    def shutdown(self):
        for plugin in list(self._plugins.values()):
            self._call(plugin, plugin.on_shutdown)

    def dispatch(self, event: PluginEvent):
        """Call ``on_<event.type>`` on every enabled plugin."""
        if event.type not in EVENT_TYPES:
            raise ValueError(f"Unknown plugin event type: {event.type!r}")
        for plugin in list(self._plugins.values()):
            self._call(plugin, getattr(plugin, f"on_{event.type}"), event)

    def _call(self, plugin: HandshakePlugin, hook: Callable, *args):
        try:
            hook(*args)
        except Exception as e:
            count = self._errors.get(plugin.name, 0) + 1
            self._errors[plugin.name] = count
            logger.error("Plugin %s %s error: %s", plugin.name, hook.__name__, e)
            if count >= self.max_errors and plugin.name in self._plugins:
                logger.warning("Disabling plugin %s after %d errors", plugin.name, count)
                del self._plugins[plugin.name]

    def error_count(self, name: str) -> int:
        return self._errors.get(name, 0)

    @property
    def plugins(self) -> dict[str, HandshakePlugin]:
        return dict(self._plugins)

    @property
    def plugin_names(self) -> list[str]:
        return list(self._plugins)
