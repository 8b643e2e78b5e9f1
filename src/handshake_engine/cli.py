"""HandshakeEngine CLI - the main entry point for all operations.

Usage:
    handshake-engine simulate    - Run scripted armbands through the engine
    handshake-engine replay      - Replay a recorded session
    handshake-engine serve       - Start the WebSocket server
    handshake-engine bridge      - Stream simulated armbands to a server
    handshake-engine benchmark   - Measure per-tick latency
    handshake-engine config      - Print or write the default configuration
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Optional

import typer
import yaml

from handshake_engine.config import ConfigError, EngineConfig

app = typer.Typer(
    name="handshake-engine",
    help="🤝 Handshake detection across motion-sensing armbands.",
    add_completion=False,
)


@app.callback()
def main_options(
    log_level: str = typer.Option("warning", help="Log level"),
):
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.WARNING),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )


def _load_config(path: Optional[str], **overrides) -> EngineConfig:
    try:
        config = EngineConfig.from_yaml(path) if path else EngineConfig()
        return config.with_overrides(**overrides)
    except (OSError, ConfigError, yaml.YAMLError) as e:
        typer.echo(f"❌ Invalid configuration: {e}", err=True)
        raise typer.Exit(1)


def _print_handshake(event):
    typer.echo(
        f"   🤝 Handshake recognized: device {event.first} (amp {event.first_amplitude}) "
        f"<-> device {event.second} (amp {event.second_amplitude}) at tick {event.tick}"
    )


@app.command()
def simulate(
    amplitude: int = typer.Option(40, help="Swing amplitude of the first device (degrees)"),
    offset: int = typer.Option(5, help="Ticks between the two devices starting"),
    ticks: int = typer.Option(220, help="Ticks to run"),
    realtime: bool = typer.Option(False, help="Pace ticks at the configured cadence"),
    record: Optional[str] = typer.Option(None, "--record", help="Save the session to this file"),
    config: Optional[str] = typer.Option(None, help="Path to engine YAML config"),
    disconnect_policy: Optional[str] = typer.Option(None, help="persist or reset"),
):
    """Run two scripted armbands performing a handshake."""
    from handshake_engine.driver import HubDriver, SimulatedHub
    from handshake_engine.engine import HandshakeEngine
    from handshake_engine.recorder import SessionRecorder

    cfg = _load_config(config, disconnect_policy=disconnect_policy)
    engine = HandshakeEngine(cfg)
    hub = SimulatedHub.handshake_pair(amplitude=amplitude, offset=offset)
    recorder = SessionRecorder(tick_ms=cfg.tick_ms) if record else None
    driver = HubDriver(hub, engine, recorder=recorder)
    engine.on_handshake(_print_handshake)

    typer.echo(f"▶️  Simulating {len(hub.devices)} devices for {ticks} ticks ({cfg.tick_ms} ms cadence)")
    driver.run(max_ticks=ticks, realtime=realtime)

    stats = engine.stats
    typer.echo(f"\n✅ {stats.ticks} ticks, {stats.handshakes} handshake(s), {stats.timeouts} timeout(s)")

    if recorder:
        recorder.save(record)
        typer.echo(f"💾 Saved {recorder.tick_count} ticks to: {record}")


@app.command()
def replay(
    recording: str = typer.Argument(..., help="Path to recording file"),
    realtime: bool = typer.Option(False, help="Play at the recorded cadence"),
    config: Optional[str] = typer.Option(None, help="Path to engine YAML config"),
):
    """Replay a recorded session through the engine."""
    from handshake_engine.driver import HubDriver, ReplayHub
    from handshake_engine.engine import HandshakeEngine
    from handshake_engine.events import EventDecodeError
    from handshake_engine.recorder import SessionPlayer

    path = Path(recording)
    if not path.exists():
        typer.echo(f"❌ Recording not found: {recording}", err=True)
        raise typer.Exit(1)

    try:
        player = SessionPlayer.load(path)
    except (ValueError, EventDecodeError) as e:
        typer.echo(f"❌ Could not read recording: {e}", err=True)
        raise typer.Exit(1)

    cfg = _load_config(config, tick_ms=player.tick_ms)
    engine = HandshakeEngine(cfg)
    engine.on_handshake(_print_handshake)
    driver = HubDriver(ReplayHub(player), engine)

    typer.echo(f"▶️  Replaying {path.name} ({player.tick_count} ticks, {player.duration:.1f}s)")
    driver.run(realtime=realtime)
    typer.echo(f"\n✅ Replay complete. {engine.stats.handshakes} handshake(s) recognized.")
    for handle, trace in player.pitch_traces().items():
        typer.echo(f"   📈 {handle}: {len(trace)} samples, pitch {trace.min()}-{trace.max()}")


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", help="Bind address"),
    port: int = typer.Option(8766, help="Port"),
    config: Optional[str] = typer.Option(None, help="Path to engine YAML config"),
    plugins: Optional[str] = typer.Option(None, help="Plugin directory"),
    log_level: str = typer.Option("info", help="Server log level"),
):
    """Start the WebSocket handshake server."""
    import uvicorn
    from handshake_engine.server import app as fastapi_app, state

    state.configure(_load_config(config, plugin_dir=plugins))
    typer.echo(f"🚀 Starting HandshakeEngine server on {host}:{port}")
    typer.echo(f"   Devices stream to ws://{host}:{port}/ws/device")
    uvicorn.run(fastapi_app, host=host, port=port, log_level=log_level)


@app.command()
def bridge(
    url: str = typer.Option("ws://localhost:8766/ws/device", help="Server device endpoint"),
    amplitude: int = typer.Option(40, help="Swing amplitude of the first device (degrees)"),
    offset: int = typer.Option(5, help="Ticks between the two devices starting"),
    ticks: Optional[int] = typer.Option(None, help="Stop after this many ticks"),
):
    """Stream two scripted armbands to a running server."""
    import asyncio
    import websockets
    from handshake_engine.bridge import DeviceBridge
    from handshake_engine.driver import SimulatedHub

    hub = SimulatedHub.handshake_pair(amplitude=amplitude, offset=offset)
    device_bridge = DeviceBridge(hub, url)

    typer.echo(f"🔌 Streaming {len(hub.devices)} devices to {url}")
    try:
        count = asyncio.run(device_bridge.run(max_ticks=ticks))
    except (OSError, websockets.exceptions.WebSocketException) as e:
        typer.echo(f"❌ Could not reach server: {e}", err=True)
        raise typer.Exit(1)

    typer.echo(
        f"\n✅ {count} ticks, {device_bridge.sent} events accepted, "
        f"{device_bridge.rejected} rejected, {len(hub.notifications)} notification(s)"
    )


@app.command()
def benchmark(
    devices: int = typer.Option(16, help="Simulated devices"),
    ticks: int = typer.Option(2000, help="Ticks to run"),
):
    """Measure per-tick processing cost against the polling interval."""
    from handshake_engine.driver import HubDriver, ScriptedDevice, SimulatedHub
    from handshake_engine.engine import HandshakeEngine

    scripts = [
        ScriptedDevice(f"arm-{i + 1}", amplitude=30 + (i % 5) * 4, start_tick=(i * 7) % 60)
        for i in range(devices)
    ]
    engine = HandshakeEngine()
    driver = HubDriver(SimulatedHub(scripts), engine)

    typer.echo(f"⚡ Running benchmark: {ticks} ticks, {devices} device(s)")
    t0 = time.perf_counter()
    driver.run(max_ticks=ticks, realtime=False)
    elapsed = time.perf_counter() - t0

    typer.echo(f"\n📊 Results:")
    typer.echo(f"   Average tick:  {elapsed / ticks * 1000:.3f} ms (budget {engine.config.tick_ms} ms)")
    typer.echo(f"   Handshakes:    {engine.stats.handshakes}")
    typer.echo(f"   Overruns:      {engine.profiler.overruns}")

    typer.echo(f"\n📈 Stage breakdown:")
    for name, stats in engine.profiler.summary().items():
        typer.echo(f"   {name:12s} avg={stats['avg_ms']:.3f}ms  p95={stats['p95_ms']:.3f}ms")


@app.command("config")
def show_config(
    output: Optional[str] = typer.Option(None, "-o", help="Write to this YAML file instead of stdout"),
):
    """Print the default engine configuration as YAML."""
    cfg = EngineConfig()
    if output:
        cfg.to_yaml(output)
        typer.echo(f"💾 Saved to {output}")
    else:
        typer.echo(yaml.dump(cfg.to_dict(), default_flow_style=False, sort_keys=False))


def main():
    app()


if __name__ == "__main__":
    main()
