"""dungeon-link command line client.

Connects to a game server, logs every connection event, and sends one JSON
command per stdin line until EOF, SIGINT or SIGTERM.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import signal
import sys
import threading
from functools import partial
from pathlib import Path

import uvloop

from dungeon_link.config import LinkConfig, load_config
from dungeon_link.const import (
    DLINK_CONFIG_FILE_PATH,
    DLINK_DEBUG,
    DLINK_METRICS_PORT,
    DLINK_SERVERS_FILE_PATH,
    DLINK_VERSION,
)
from dungeon_link.correlation import correlation_context
from dungeon_link.directory.service import YamlServerDirectory
from dungeon_link.events import (
    DisconnectedEvent,
    ErrorEvent,
    LinkEvent,
    MessageEvent,
    ReconnectAttemptEvent,
    StateChangeEvent,
)
from dungeon_link.logging_abstraction import get_logger
from dungeon_link.metrics.registry import start_metrics_server
from dungeon_link.protocol.commands import parse_command
from dungeon_link.protocol.exceptions import CommandEncodeError
from dungeon_link.session import GameSession
from dungeon_link.transport.exceptions import LinkConnectionError

logger = get_logger(__name__)


def parse_cli(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="dungeon-link", description="dungeon-link game client")
    target = parser.add_mutually_exclusive_group()
    _ = target.add_argument("--url", help="Websocket URL to connect to directly")
    _ = target.add_argument("--server", help="Server id from the servers file")
    _ = parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help=f"Link config YAML (default: {DLINK_CONFIG_FILE_PATH} if it exists)",
    )
    _ = parser.add_argument("--servers", type=Path, default=Path(DLINK_SERVERS_FILE_PATH), help="Servers YAML file")
    _ = parser.add_argument("--token", default=None, help="Auth token to log in with")
    _ = parser.add_argument(
        "--metrics-port",
        type=int,
        default=DLINK_METRICS_PORT,
        help="Serve Prometheus metrics on this port (0 disables)",
    )
    _ = parser.add_argument("-D", "--debug", action="store_true", help="Enable debug mode")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> LinkConfig:
    overrides: dict[str, object] = {}
    if args.token:
        overrides["auth_token"] = args.token
    if args.debug:
        overrides["debug_logging"] = True

    config_path = args.config or Path(DLINK_CONFIG_FILE_PATH).expanduser()
    if args.config is not None or config_path.exists():
        return load_config(config_path, **overrides)
    return LinkConfig(**overrides)


def attach_event_logging(session: GameSession) -> None:
    def on_state(event: StateChangeEvent) -> None:
        logger.info("State: %s -> %s", event.previous.value, event.current.value)

    def on_message(event: MessageEvent) -> None:
        message = event.data
        logger.info("Message: %s", getattr(message, "type", type(message).__name__))
        logger.debug("Message payload", extra={"raw": event.raw if isinstance(event.raw, str) else repr(event.raw)})

    def on_error(event: ErrorEvent) -> None:
        logger.warning("Error (%s): %s", event.kind, event.message)

    def on_reconnect(event: ReconnectAttemptEvent) -> None:
        logger.info("Reconnect attempt %d/%d in %.0fms", event.attempt, event.max_attempts, event.delay_ms)

    def on_disconnected(event: DisconnectedEvent) -> None:
        logger.info("Disconnected (%s) code=%s %s", event.reason.value, event.code, event.reason_text)

    session.on(LinkEvent.STATE_CHANGE, on_state)
    session.on(LinkEvent.MESSAGE, on_message)
    session.on(LinkEvent.ERROR, on_error)
    session.on(LinkEvent.RECONNECT_ATTEMPT, on_reconnect)
    session.on(LinkEvent.DISCONNECTED, on_disconnected)


def _read_stdin(loop: asyncio.AbstractEventLoop, lines: asyncio.Queue[str | None]) -> None:
    """Forward stdin lines to the loop (runs in a daemon thread)."""
    with contextlib.suppress(RuntimeError):  # loop closed while blocked on stdin
        for line in sys.stdin:
            loop.call_soon_threadsafe(lines.put_nowait, line)
        loop.call_soon_threadsafe(lines.put_nowait, None)


async def pump_stdin(session: GameSession) -> None:
    """Send one JSON command per stdin line until EOF."""
    lines: asyncio.Queue[str | None] = asyncio.Queue()
    reader = threading.Thread(target=_read_stdin, args=(asyncio.get_running_loop(), lines), daemon=True)
    reader.start()
    while True:
        line = await lines.get()
        if line is None:
            logger.info("stdin closed")
            return
        line = line.strip()
        if not line:
            continue
        try:
            command = parse_command(json.loads(line))
        except (ValueError, CommandEncodeError) as e:
            logger.warning("Ignoring invalid command", extra={"line": line, "error": str(e)})
            continue
        result = session.send(command)
        logger.info("Command %s: %s", command.action, result.status.value)


def _request_stop(stop: asyncio.Event, signum: int) -> None:
    logger.info("Intercepted signal: %s (%s)", signal.Signals(signum).name, signum)
    stop.set()


async def run(args: argparse.Namespace) -> int:
    config = build_config(args)
    directory = YamlServerDirectory(args.servers)
    session = GameSession(directory, config)
    attach_event_logging(session)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGINT, partial(_request_stop, stop, signal.SIGINT))
    loop.add_signal_handler(signal.SIGTERM, partial(_request_stop, stop, signal.SIGTERM))

    try:
        state = await session.start(endpoint_id=args.server, url=args.url)
    except (KeyError, LinkConnectionError) as e:
        logger.error("✗ Cannot start session", extra={"error": str(e)})
        return 1
    logger.info("Initial connection settled", extra={"state": state.value})

    stdin_task = asyncio.create_task(pump_stdin(session))
    stop_task = asyncio.create_task(stop.wait())
    try:
        _ = await asyncio.wait({stdin_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        stop_task.cancel()
        stdin_task.cancel()
        await session.close()
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the dungeon-link client."""
    args = parse_cli(argv)
    with correlation_context():
        logger.info("Starting dungeon-link", extra={"version": DLINK_VERSION})

        if args.debug or DLINK_DEBUG:
            logger.set_level(logging.DEBUG)
            for handler in logger.handlers:
                handler.setLevel(logging.DEBUG)
            logger.info("Debug mode enabled")

        if args.metrics_port:
            start_metrics_server(args.metrics_port)
            logger.info("Metrics exporter listening", extra={"port": args.metrics_port})

        try:
            exit_code = uvloop.run(run(args))
        except KeyboardInterrupt:
            logger.info("Keyboard interrupt received, shutting down...")
            exit_code = 130
        except Exception as e:
            logger.exception("Fatal error in main loop", extra={"error": str(e)})
            exit_code = 1
        else:
            logger.info("dungeon-link stopped gracefully")
        return exit_code


if __name__ == "__main__":
    sys.exit(main())
