"""mew — console front-end for the assistant session bridge."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from mew.adapters.event_bus import EventBus
from mew.adapters.events import (
    BridgeEvent,
    FirstSendFailed,
    SessionInterrupted,
    StreamChunk,
    StreamError,
)
from mew.engine.config import (
    CredentialConfig,
    EngineConfig,
    SessionConfig,
    sanitize_session,
)
from mew.engine.errors import TransportError
from mew.engine.models import ApprovalMode
from mew.engine.session_manager import SessionManager
from mew.engine.yaml_config import BridgeConfig, discover_config_path, load_yaml_config
from mew.shared.ansi import strip_ansi

logger = logging.getLogger(__name__)

EMPTY_INPUT_HINT = "Say something~"
THINKING_HINT = "thinking…"
RETRY_FAILED_HINT = "Retry failed. Run the assistant in a terminal, finish logging in, then try again."


def _configure_logging(verbose: bool) -> Path:
    """File log under ~/.mew/logs plus warnings (or everything) on stderr."""
    log_level = "DEBUG" if verbose else os.getenv("MEW_LOG_LEVEL", "INFO").upper()
    log_dir = Path.home() / ".mew" / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "mew.log"

    root = logging.getLogger()
    root.setLevel(getattr(logging, log_level, logging.INFO))
    root.handlers.clear()
    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s [pid=%(process)d] %(message)s"
    )
    file_handler = RotatingFileHandler(
        log_file, maxBytes=2_000_000, backupCount=5, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    stream_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    root.addHandler(file_handler)
    root.addHandler(stream_handler)
    return log_file


def _resolve_config(args: argparse.Namespace) -> BridgeConfig:
    """Env defaults, then YAML (explicit or discovered), then CLI flags."""
    config_path = Path(args.config) if args.config else discover_config_path()
    if config_path is not None:
        logger.info("Using config: %s", config_path)
        bridge_config = load_yaml_config(config_path)
    else:
        logger.info("No config file found; using environment defaults")
        bridge_config = BridgeConfig(engine=EngineConfig.from_env())

    if args.command:
        bridge_config.engine.command = args.command
    if args.transport:
        bridge_config.engine.transport = args.transport
    bridge_config.engine.validate()

    if args.cwd or args.approval_mode:
        current = bridge_config.session or SessionConfig()
        bridge_config.session = sanitize_session({
            "working_directory": args.cwd or current.working_directory,
            "approval_mode": args.approval_mode or current.approval_mode,
        })
    return bridge_config


class ConsoleFrontend:
    """Renders bridge events; plays the UI role for the session manager."""

    def __init__(self, console: Console, *, strip_escapes: bool = False) -> None:
        self._console = console
        self._strip_escapes = strip_escapes
        self.current_round = 0

    def start_round(self, round_id: int) -> None:
        self.current_round = max(self.current_round, round_id)
        self._console.print(Text(THINKING_HINT, style="dim"))

    def render(self, event: BridgeEvent) -> None:
        if isinstance(event, StreamChunk):
            # Late output from a superseded round is ignored.
            if event.round_id < self.current_round:
                return
            self.current_round = event.round_id
            text = strip_ansi(event.chunk) if self._strip_escapes else event.chunk
            if text:
                self._console.out(text, end="", highlight=False)
        elif isinstance(event, StreamError):
            if event.round_id < self.current_round:
                return
            self._console.print(
                Text.assemble((f"\n✗ {event.kind}: ", "bold red"), event.message)
            )
        elif isinstance(event, SessionInterrupted):
            self._console.print(Text(f"\n⚠ {event.message}", style="yellow"))
        elif isinstance(event, FirstSendFailed):
            self._console.print(Panel(
                Text(f"{event.message}\n\nType /retry to try again."),
                title=event.title,
                border_style="red",
            ))

    async def consume(self, bus: EventBus) -> None:
        async for event in bus.consume():
            self.render(event)


async def _run_console(
    manager: SessionManager,
    bus: EventBus,
    console: Console,
    frontend: ConsoleFrontend,
    credentials: CredentialConfig | None,
    session: SessionConfig | None,
) -> None:
    consumer = asyncio.create_task(frontend.consume(bus))
    try:
        while True:
            try:
                raw = await asyncio.to_thread(console.input, "\n[bold cyan]you ›[/] ")
            except (EOFError, KeyboardInterrupt):
                break
            text = raw.strip()
            if not text:
                console.print(Text(EMPTY_INPUT_HINT, style="dim"))
                continue
            if text in ("/quit", "/exit"):
                break
            if text == "/status":
                running = manager.status().running
                console.print(f"running: {'yes' if running else 'no'}")
                continue
            if text == "/retry":
                ack = await manager.retry_last()
                if ack.resent and ack.round_id is not None:
                    frontend.start_round(ack.round_id)
                elif not ack.ok:
                    console.print(Text(RETRY_FAILED_HINT, style="red"))
                else:
                    console.print(Text("Nothing to retry.", style="dim"))
                continue
            try:
                ack = await manager.send(raw, credentials, session)
            except TransportError as exc:
                console.print(Text(f"send failed: {exc}", style="red"))
                continue
            frontend.start_round(ack.round_id)
    finally:
        await manager.shutdown()
        bus.close()
        await consumer


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="mew",
        description="mew — chat with a local assistant CLI through a session bridge",
    )
    parser.add_argument(
        "--transport", choices=["pipe", "terminal"], default=None,
        help="pipe: one process per round (default); terminal: persistent pty session",
    )
    parser.add_argument(
        "--command", metavar="BIN", default=None,
        help="Assistant binary (default: qwen, or MEW_COMMAND)",
    )
    parser.add_argument(
        "--cwd", metavar="DIR", default=None,
        help="Working directory handed to the assistant",
    )
    parser.add_argument(
        "--approval-mode", choices=[m.value for m in ApprovalMode], default=None,
        help="Approval mode handed to the assistant",
    )
    parser.add_argument(
        "--config", metavar="PATH",
        help="YAML config file (default: .mew/mew.yaml or mew.yaml if present)",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Enable debug logging on stderr",
    )
    args = parser.parse_args()

    log_file = _configure_logging(args.verbose)
    try:
        bridge_config = _resolve_config(args)
    except (OSError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)

    logger.info(
        "Starting mew transport=%s command=%s log=%s",
        bridge_config.engine.transport, bridge_config.engine.command, log_file,
    )

    console = Console()
    bus = EventBus()
    manager = SessionManager.from_config(
        bridge_config.engine,
        event_callback=bus.make_callback(),
        decoder_policy=bridge_config.decoder,
    )
    frontend = ConsoleFrontend(
        console,
        strip_escapes=bridge_config.engine.transport == "terminal",
    )
    console.print(Text(
        f"mew · {bridge_config.engine.command} via {bridge_config.engine.transport} "
        "· /retry /status /quit",
        style="bold",
    ))
    try:
        asyncio.run(_run_console(
            manager,
            bus,
            console,
            frontend,
            bridge_config.credentials,
            bridge_config.session,
        ))
    except KeyboardInterrupt:
        print("\nInterrupted.")
        sys.exit(1)


if __name__ == "__main__":
    main()
