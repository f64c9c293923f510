"""Transport selection — maps transport names to Transport instances."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .base import Transport

if TYPE_CHECKING:
    from ..config import EngineConfig, EventCallback
    from ..decoder import DecoderPolicy

logger = logging.getLogger(__name__)


def build_transport(
    config: EngineConfig,
    event_callback: EventCallback | None = None,
    decoder_policy: DecoderPolicy | None = None,
) -> Transport:
    """Build the transport named by ``config.transport``.

    Logs a warning when the assistant binary is not on PATH; the first
    send will then fail with a SpawnError and surface first_send_failed.
    """
    from .pipe import PipeTransport
    from .terminal import TerminalTransport

    config.validate()
    transport: Transport
    if config.transport == "pipe":
        transport = PipeTransport(
            command=config.command,
            event_callback=event_callback,
            decoder_policy=decoder_policy,
            stderr_tail_lines=config.stderr_tail_lines,
        )
    else:
        transport = TerminalTransport(
            command=config.command,
            event_callback=event_callback,
            read_timeout=config.terminal_read_timeout,
            dimensions=(config.terminal_rows, config.terminal_cols),
        )

    if transport.is_available():
        logger.info(
            "Transport selected: %s (command=%s)", transport.name, transport.command,
        )
    else:
        logger.warning(
            "Transport selected: %s, but command '%s' was not found on PATH",
            transport.name, transport.command,
        )
    return transport
