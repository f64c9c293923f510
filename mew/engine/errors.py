"""Exception hierarchy for the session bridge.

Transport errors are raised synchronously from send/retry so the caller
can react right away. Failures after a round has been dispatched are
reported as stream_error events instead (see models.StreamErrorKind).
"""
from __future__ import annotations


class BridgeError(Exception):
    """Base exception for all bridge errors."""


class TransportError(BridgeError):
    """A transport could not dispatch a round."""
    def __init__(self, transport: str, reason: str):
        self.transport = transport
        self.reason = reason
        super().__init__(reason)


class SpawnError(TransportError):
    """The assistant process or its terminal could not be started."""
    def __init__(self, transport: str, command: str, reason: str):
        self.command = command
        super().__init__(
            transport,
            f"failed to start {command} ({transport}): {reason}",
        )


class CaptureError(TransportError):
    """A stdout/stderr handle was not available after spawn."""
    def __init__(self, transport: str, stream: str):
        self.stream = stream
        super().__init__(transport, f"failed to capture {stream}")


class WriteError(TransportError):
    """Writing input to a persistent process failed."""
    def __init__(self, transport: str, reason: str):
        super().__init__(transport, f"failed to write input: {reason}")
