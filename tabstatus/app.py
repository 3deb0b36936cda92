"""``tab-status`` command line entry point.

Runs the plugin against an in-memory host so index discovery can be
watched end to end:

    tab-status --tabs 4 --gaps 2 5
    tab-status --tabs 3 --close 0 --pipe '{"pane_id": 1, "action": "set_status", "emoji": "🤖"}'
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

import yaml
from rich.console import Console
from rich.table import Table

from tabstatus import __version__
from tabstatus.adapters.event_bus import EventBus
from tabstatus.adapters.host import SimulatedHost
from tabstatus.adapters.runtime import PluginRuntime
from tabstatus.engine.config import EngineConfig
from tabstatus.engine.dispatcher import Dispatcher
from tabstatus.engine.yaml_config import load_yaml_config

logger = logging.getLogger(__name__)

DEFAULT_LOG_FILE = Path.home() / ".tab-status" / "logs" / "tab-status.log"


def configure_logging(level_name: str, log_file: str | Path | None) -> Path:
    """Root logger: rotating file plus stderr."""
    log_path = Path(log_file).expanduser() if log_file else DEFAULT_LOG_FILE
    log_path.parent.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name.upper(), logging.INFO))
    root.handlers.clear()
    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s [pid=%(process)d] %(message)s"
    )
    file_handler = RotatingFileHandler(
        log_path, maxBytes=2_000_000, backupCount=5, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    root.addHandler(file_handler)
    root.addHandler(stream_handler)
    return log_path


def build_host(host: SimulatedHost, tabs: int, gaps: list[int]) -> None:
    """Open *tabs* surviving tabs, leaving the *gaps* indices closed."""
    gaps = sorted(set(gaps))
    for _ in range(tabs + len(gaps)):
        host.open_tab()
    for index in reversed(gaps):
        for position, tab in enumerate(host.tabs):
            if tab.index == index:
                host.close_tab(position)
                break
        else:
            logger.warning("build_host: no tab with index %d to close", index)


def render(console: Console, host: SimulatedHost, dispatcher: Dispatcher) -> bool:
    """Print host truth against the discovered table. True when they agree."""
    table = Table(title="Tab indices")
    table.add_column("Position", justify="right")
    table.add_column("Name")
    table.add_column("Host index", justify="right")
    table.add_column("Discovered", justify="right")
    table.add_column("")

    discovered = dispatcher.table.indices
    agree = len(discovered) == len(host.tabs)
    for position, tab in enumerate(host.tabs):
        found = discovered[position] if position < len(discovered) else None
        ok = found == tab.index
        agree = agree and ok
        table.add_row(
            str(position),
            tab.name,
            str(tab.index),
            "-" if found is None else str(found),
            "[green]ok[/green]" if ok else "[red]mismatch[/red]",
        )
    console.print(table)
    return agree


async def run(args: argparse.Namespace, config: EngineConfig, console: Console) -> int:
    bus = EventBus()
    host = SimulatedHost(bus.make_callback())
    build_host(host, args.tabs, args.gaps)
    host.drop_renames = args.drop

    dispatcher = Dispatcher(config)
    runtime = PluginRuntime(dispatcher, host, bus)
    consumer = asyncio.create_task(runtime.run())
    try:
        await host.publish()
        if not await runtime.wait_ready(args.timeout):
            console.print(f"[red]Discovery did not finish within {args.timeout:.0f}s[/red]")
            return 1

        for position in args.close:
            if position >= len(host.tabs):
                console.print(f"[yellow]No tab at position {position}, skipping close[/yellow]")
                continue
            closed = host.close_tab(position)
            console.print(f"Closed tab index {closed.index} at position {position}")
            await host.publish()
            await runtime.settle()

        for _ in range(args.open):
            opened = host.open_tab()
            console.print(f"Opened tab index {opened.index}")
            await host.publish()
            await runtime.settle()

        for payload in args.pipe:
            sent = len(host.outputs)
            await host.send_pipe(config.pipe_name, payload)
            await runtime.settle()
            for _, output in host.outputs[sent:]:
                console.print(f"pipe {payload} -> {output!r}")

        agree = render(console, host, dispatcher)
        if args.debug:
            console.print_json(json.dumps(dispatcher.diagnostics(), ensure_ascii=False))
        return 0 if agree else 1
    finally:
        runtime.close()
        await consumer


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="tab-status",
        description="Tab index discovery and status annotation (simulated host)",
    )
    parser.add_argument(
        "--tabs", type=int, default=3,
        help="Number of open tabs when the plugin starts (default: 3)",
    )
    parser.add_argument(
        "--gaps", type=int, nargs="*", default=[], metavar="INDEX",
        help="Persistent indices closed before the plugin starts",
    )
    parser.add_argument(
        "--close", type=int, action="append", default=[], metavar="POSITION",
        help="Close the tab at POSITION after discovery (repeatable)",
    )
    parser.add_argument(
        "--open", type=int, default=0, metavar="N",
        help="Open N new tabs after discovery",
    )
    parser.add_argument(
        "--pipe", action="append", default=[], metavar="JSON",
        help="Pipe payload sent after discovery (repeatable)",
    )
    parser.add_argument(
        "--drop", type=int, default=0, metavar="N",
        help="Make the host silently drop the next N renames",
    )
    parser.add_argument(
        "--probe-timeout", type=float, default=None, metavar="SECONDS",
        help="Override the probe timeout (default: from config)",
    )
    parser.add_argument(
        "--timeout", type=float, default=60.0,
        help="Give up waiting for discovery after this many seconds",
    )
    parser.add_argument(
        "--config", metavar="PATH",
        help="YAML config file (engine and logging sections)",
    )
    parser.add_argument(
        "--debug", action="store_true",
        help="Print the dispatcher's diagnostic dump",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    args = parser.parse_args()

    try:
        config = load_yaml_config(args.config) if args.config else EngineConfig.from_env()
    except (OSError, ValueError, yaml.YAMLError) as exc:
        print(f"Error: could not load config: {exc}", file=sys.stderr)
        sys.exit(2)
    if args.probe_timeout is not None:
        config.probe_timeout_seconds = args.probe_timeout
    if args.verbose:
        config.log_level = "DEBUG"

    log_path = configure_logging(config.log_level, config.log_file)
    logger.info(
        "Starting tab-status %s tabs=%d gaps=%s config=%s log=%s",
        __version__, args.tabs, args.gaps, args.config or "<none>", log_path,
    )

    console = Console()
    try:
        code = asyncio.run(run(args, config, console))
    except KeyboardInterrupt:
        print("\nInterrupted.")
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
