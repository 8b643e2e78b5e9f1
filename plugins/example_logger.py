"""Example HandshakeEngine plugin: handshake event logger.

This plugin appends every handshake to a JSON-lines file and keeps running
counts per device. Drop this file in the plugins/ directory to auto-load it.

Demonstrates:
- Subclassing HandshakePlugin
- Using on_startup/on_shutdown lifecycle
- Registering handlers via decorator
"""

from __future__ import annotations

import json
import logging
from collections import Counter
from pathlib import Path

from handshake_engine.plugins import HandshakePlugin, PluginEvent

logger = logging.getLogger("handshake_engine.plugins.example_logger")


class HandshakeLoggerPlugin(HandshakePlugin):
    """Logs handshakes to a file with per-device counts."""

    name = "handshake_logger"
    version = "1.0.0"
    description = "Logs handshakes to a JSON-lines file with counts"

    def __init__(self):
        super().__init__()
        self._counts: Counter = Counter()
        self._log_path = Path("handshakes.jsonl")
        self._log_file = None

        @self.handler("pair")
        def on_new_device(event: PluginEvent):
            logger.info("🤝 Device %s joined", event.data.get("device"))

    def on_startup(self, context: dict):
        """Open the log file. ``context["log_path"]`` overrides the default."""
        self._log_path = Path(context.get("log_path", self._log_path))
        try:
            self._log_file = open(self._log_path, "a")
            logger.info("HandshakeLogger: writing to %s", self._log_path)
        except OSError as e:
            logger.warning("HandshakeLogger: could not open log file: %s", e)

    def on_shutdown(self):
        if self._log_file:
            self._log_file.close()
            self._log_file = None
        if self._counts:
            logger.info("HandshakeLogger summary: %s", dict(self._counts))

    def on_handshake(self, event: PluginEvent):
        for device in event.data.get("devices", []):
            self._counts[device] += 1
        self._write_log(event)
        super().on_handshake(event)

    def on_timeout(self, event: PluginEvent):
        self._write_log(event)
        super().on_timeout(event)

    def _write_log(self, event: PluginEvent):
        if not self._log_file:
            return
        record = {"type": event.type, "tick": event.tick, **event.data}
        try:
            self._log_file.write(json.dumps(record) + "\n")
            self._log_file.flush()
        except (OSError, TypeError) as e:
            logger.warning("HandshakeLogger: could not write record: %s", e)

    @property
    def counts(self) -> dict[int, int]:
        """Handshakes per device id."""
        return dict(self._counts)
